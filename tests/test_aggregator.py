"""
CompScan - Comparable Aggregator Tests (Section 4.3)

Sparsity fallback across alternative queries, the uncategorized last resort,
failure semantics, cache-only mode and the shielded upstream call.
"""

from __future__ import annotations

import asyncio
from decimal import Decimal
from typing import Any

import pytest

from compscan.errors import UpstreamRateLimited, UpstreamTransientFailure
from compscan.models.listing import AttemptOutcome, Listing
from compscan.pipeline.aggregator import ComparableAggregator, MarketplaceGateway
from compscan.utils.cache import ResultCache
from compscan.utils.rate_limiter import SlidingWindowRateLimiter
from tests.conftest import FakeClock, build_listing, distinct_listings

CATEGORY = "261328"
RATES = {"USD": Decimal("1.00"), "CAD": Decimal("0.74")}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class FakeSource:
    """Marketplace search stand-in keyed by (query, category_id)."""

    def __init__(self, responses: dict[tuple[str, str | None], Any]) -> None:
        self.responses = responses
        self.calls: list[tuple[str, str | None]] = []

    async def __call__(
        self,
        query: str,
        category_id: str | None = None,
        limit: int | None = None,
    ) -> list[Listing]:
        self.calls.append((query, category_id))
        result = self.responses.get((query, category_id), [])
        if isinstance(result, Exception):
            raise result
        return list(result)


def _aggregator(
    cache: ResultCache,
    limiter: SlidingWindowRateLimiter,
    source: FakeSource,
    category_id: str | None = None,
    **kwargs: Any,
) -> ComparableAggregator:
    options: dict[str, Any] = dict(
        sparsity_threshold=5,
        listing_cap=50,
        percentile_min_sample=10,
        uncategorized_fallback=True,
        currency_rates=RATES,
    )
    options.update(kwargs)
    return ComparableAggregator(cache, limiter, source=source, category_id=category_id, **options)


# ---------------------------------------------------------------------------
# Query fallback
# ---------------------------------------------------------------------------


class TestQueryFallback:
    @pytest.mark.asyncio
    async def test_dense_primary_needs_one_call(self, cache, limiter) -> None:
        source = FakeSource({("primary", None): distinct_listings(6)})

        result = await _aggregator(cache, limiter, source).aggregate("primary", ["alt"])

        assert source.calls == [("primary", None)]
        assert result.query_used == "primary"
        assert result.stats.count == 6

    @pytest.mark.asyncio
    async def test_sparse_primary_walks_alternatives_until_dense(self, cache, limiter) -> None:
        source = FakeSource({
            ("primary", None): distinct_listings(2),
            ("alt1", None): distinct_listings(3),
            ("alt2", None): distinct_listings(6),
            ("alt3", None): distinct_listings(10),
        })

        result = await _aggregator(cache, limiter, source).aggregate(
            "primary", ["alt1", "alt2", "alt3"],
        )

        assert [q for q, _ in source.calls] == ["primary", "alt1", "alt2"]
        assert result.query_used == "alt2"
        assert [a.count for a in result.attempts] == [2, 3, 6]

    @pytest.mark.asyncio
    async def test_ties_keep_the_earlier_query(self, cache, limiter) -> None:
        source = FakeSource({
            ("primary", None): distinct_listings(2),
            ("alt", None): distinct_listings(2, base_price=50),
        })

        result = await _aggregator(cache, limiter, source).aggregate("primary", ["alt"])

        assert result.query_used == "primary"
        assert result.stats.low == Decimal("10.00")

    @pytest.mark.asyncio
    async def test_duplicate_alternatives_queried_once(self, cache, limiter) -> None:
        source = FakeSource({})

        await _aggregator(cache, limiter, source).aggregate("Primary", ["primary ", "", "alt"])

        assert [q for q, _ in source.calls] == ["Primary", "alt"]

    @pytest.mark.asyncio
    async def test_junk_does_not_count_toward_density(self, cache, limiter) -> None:
        junk = [
            build_listing(5 + i, title=f"Lot of {i + 2} rookie cards") for i in range(6)
        ]
        source = FakeSource({
            ("primary", None): junk,
            ("alt", None): distinct_listings(5),
        })

        result = await _aggregator(cache, limiter, source).aggregate("primary", ["alt"])

        assert result.attempts[0].count == 0
        assert result.query_used == "alt"


# ---------------------------------------------------------------------------
# Uncategorized fallback
# ---------------------------------------------------------------------------


class TestUncategorizedFallback:
    @pytest.mark.asyncio
    async def test_adopted_on_strict_improvement(self, cache, limiter) -> None:
        source = FakeSource({
            ("primary", CATEGORY): distinct_listings(2),
            ("alt", CATEGORY): distinct_listings(3),
            ("alt", None): distinct_listings(8),
        })

        result = await _aggregator(cache, limiter, source, category_id=CATEGORY).aggregate(
            "primary", ["alt"],
        )

        assert source.calls[-1] == ("alt", None)
        assert result.query_used == "alt"
        assert result.stats.count == 8
        assert result.attempts[-1].category_id is None

    @pytest.mark.asyncio
    async def test_kept_categorized_when_not_better(self, cache, limiter) -> None:
        source = FakeSource({
            ("primary", CATEGORY): distinct_listings(3),
            ("primary", None): distinct_listings(3, base_price=90),
        })

        result = await _aggregator(cache, limiter, source, category_id=CATEGORY).aggregate("primary")

        assert len(result.attempts) == 2
        assert result.stats.low == Decimal("10.00")

    @pytest.mark.asyncio
    async def test_disabled(self, cache, limiter) -> None:
        source = FakeSource({("primary", CATEGORY): distinct_listings(1)})

        await _aggregator(
            cache, limiter, source, category_id=CATEGORY, uncategorized_fallback=False,
        ).aggregate("primary")

        assert source.calls == [("primary", CATEGORY)]


# ---------------------------------------------------------------------------
# Failure semantics
# ---------------------------------------------------------------------------


class TestFailures:
    @pytest.mark.asyncio
    async def test_transient_failure_moves_to_next_query(self, cache, limiter) -> None:
        source = FakeSource({
            ("primary", None): UpstreamTransientFailure("primary", "HTTP 503"),
            ("alt", None): distinct_listings(6),
        })

        result = await _aggregator(cache, limiter, source).aggregate("primary", ["alt"])

        assert result.attempts[0].outcome == AttemptOutcome.FAILED
        assert result.query_used == "alt"

    @pytest.mark.asyncio
    async def test_all_queries_failing_is_empty_result(self, cache, limiter) -> None:
        source = FakeSource({
            ("primary", None): UpstreamTransientFailure("primary", "HTTP 503"),
            ("alt", None): UpstreamTransientFailure("alt", "timeout"),
        })

        result = await _aggregator(cache, limiter, source).aggregate("primary", ["alt"])

        assert result.listings == []
        assert result.query_used is None
        assert result.stats.count == 0
        assert len(result.attempts) == 2

    @pytest.mark.asyncio
    async def test_failures_are_not_cached(self, cache, limiter) -> None:
        source = FakeSource({("primary", None): UpstreamTransientFailure("primary", "HTTP 503")})
        aggregator = _aggregator(cache, limiter, source)

        await aggregator.aggregate("primary")
        await aggregator.aggregate("primary")

        assert len(source.calls) == 2

    @pytest.mark.asyncio
    async def test_rate_limit_propagates(self, cache, limiter) -> None:
        source = FakeSource({("primary", None): UpstreamRateLimited(5000)})

        with pytest.raises(UpstreamRateLimited):
            await _aggregator(cache, limiter, source).aggregate("primary", ["alt"])

        assert source.calls == [("primary", None)]


# ---------------------------------------------------------------------------
# Cache and rate limiting
# ---------------------------------------------------------------------------


class TestCacheAndLimiter:
    @pytest.mark.asyncio
    async def test_repeat_served_from_cache(self, cache, limiter) -> None:
        source = FakeSource({("primary", None): distinct_listings(6)})
        aggregator = _aggregator(cache, limiter, source)

        await aggregator.aggregate("primary")
        result = await aggregator.aggregate("PRIMARY")

        assert len(source.calls) == 1
        assert result.attempts[0].outcome == AttemptOutcome.CACHED
        assert result.stats.count == 6

    @pytest.mark.asyncio
    async def test_empty_results_are_cached(self, cache, limiter) -> None:
        source = FakeSource({})
        aggregator = _aggregator(cache, limiter, source)

        await aggregator.aggregate("primary")
        await aggregator.aggregate("primary")

        assert len(source.calls) == 1

    @pytest.mark.asyncio
    async def test_cache_only_mode_never_calls_upstream(self, cache, limiter) -> None:
        source = FakeSource({("primary", None): distinct_listings(6)})

        result = await _aggregator(cache, limiter, source).aggregate(
            "primary", ["alt"], allow_upstream=False,
        )

        assert source.calls == []
        assert [a.outcome for a in result.attempts] == [AttemptOutcome.SKIPPED] * 2
        assert result.listings == []

    @pytest.mark.asyncio
    async def test_cache_only_mode_serves_cached(self, cache, limiter) -> None:
        source = FakeSource({("primary", None): distinct_listings(6)})
        aggregator = _aggregator(cache, limiter, source)
        await aggregator.aggregate("primary")

        result = await aggregator.aggregate("primary", allow_upstream=False)

        assert result.stats.count == 6
        assert len(source.calls) == 1

    @pytest.mark.asyncio
    async def test_upstream_calls_are_spaced_by_limiter(
        self, cache, limiter, clock: FakeClock,
    ) -> None:
        source = FakeSource({})

        await _aggregator(cache, limiter, source).aggregate("primary", ["alt1", "alt2"])

        assert len(source.calls) == 3
        assert len(clock.sleeps) == 2


# ---------------------------------------------------------------------------
# Post-processing
# ---------------------------------------------------------------------------


class TestPostProcessing:
    @pytest.mark.asyncio
    async def test_filters_dedupes_and_normalizes(self, cache, limiter) -> None:
        listings = distinct_listings(3) + [
            build_listing(99, title="Lot of 10 assorted rookie cards"),
            build_listing("10.20", title="Jacob Wilson RC card 0"),
            build_listing(100, title="Jacob Wilson RC Canada", currency="CAD"),
        ]
        source = FakeSource({("primary", None): listings})

        result = await _aggregator(cache, limiter, source, sparsity_threshold=1).aggregate("primary")

        assert result.stats.count == 4
        assert result.stats.high == Decimal("74.00")
        cad = next(listing for listing in result.listings if listing.currency == "CAD")
        assert cad.normalized_price == Decimal("74.00")
        assert cad.price == Decimal("100")

    @pytest.mark.asyncio
    async def test_capped_to_most_recent(self, cache, limiter) -> None:
        source = FakeSource({("primary", None): distinct_listings(8)})

        result = await _aggregator(cache, limiter, source, listing_cap=3).aggregate("primary")

        assert [listing.sold_date for listing in result.listings] == [
            "2025-01-06", "2025-01-07", "2025-01-08",
        ]

    @pytest.mark.asyncio
    async def test_percentiles_need_min_sample(self, cache, limiter) -> None:
        source = FakeSource({("primary", None): distinct_listings(12)})

        result = await _aggregator(cache, limiter, source).aggregate("primary")

        assert result.stats.p10 is not None
        assert result.stats.p90 is not None


# ---------------------------------------------------------------------------
# Gateway
# ---------------------------------------------------------------------------


class TestGateway:
    def test_cache_key(self, cache, limiter) -> None:
        gateway = MarketplaceGateway(cache, limiter, limit=20)
        assert gateway.cache_key("  Jacob WILSON ", None) == "jacob wilson|*|20"
        assert gateway.cache_key("Jacob Wilson", CATEGORY) == "jacob wilson|261328|20"

    @pytest.mark.asyncio
    async def test_cancelled_caller_still_populates_cache(self, cache, limiter) -> None:
        started = asyncio.Event()
        release = asyncio.Event()
        listings = distinct_listings(2)

        async def slow_source(query: str, category_id: str | None = None, limit: int | None = None):
            started.set()
            await release.wait()
            return listings

        gateway = MarketplaceGateway(cache, limiter, limit=20)
        caller = asyncio.create_task(gateway.fetch(slow_source, "primary", None))
        await started.wait()
        caller.cancel()
        with pytest.raises(asyncio.CancelledError):
            await caller

        release.set()
        key = gateway.cache_key("primary", None)
        for _ in range(10):
            if cache.get_query(key) is not None:
                break
            await asyncio.sleep(0)

        assert cache.get_query(key) == listings
