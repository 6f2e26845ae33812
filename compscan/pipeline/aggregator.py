"""
CompScan - Comparable Aggregator (Section 4.3)

Fetches marketplace results for a primary query, falls back through the
alternatives while results are sparse, optionally drops the category filter as
a last resort, then filters, deduplicates, normalizes currency, caps by
recency and computes statistics.

All upstream traffic goes through MarketplaceGateway, which consults the
result cache first and the rate limiter second. Attempts are strictly
sequential.

Failure semantics:
- UpstreamTransientFailure for one query: logged, recorded, next query tried
- UpstreamRateLimited / ConfigurationMissing: propagated to the caller
"""

from __future__ import annotations

import asyncio
from decimal import Decimal
from typing import Awaitable, Iterable, Mapping, NamedTuple, Protocol

import structlog

from compscan.config import settings
from compscan.engine.listing_filter import dedupe_listings, sort_and_cap, usable_listings
from compscan.engine.stats import compute_stats
from compscan.errors import UpstreamTransientFailure
from compscan.models.listing import AttemptOutcome, CompsResult, Listing, QueryAttempt
from compscan.utils.cache import ResultCache, normalize_query_key
from compscan.utils.forex import normalize_listings
from compscan.utils.rate_limiter import SlidingWindowRateLimiter

logger = structlog.get_logger(__name__)


class SearchSource(Protocol):
    def __call__(
        self,
        query: str,
        category_id: str | None = None,
        limit: int | None = None,
    ) -> Awaitable[list[Listing]]: ...


# Sentinel: "use the configured category" as opposed to an explicit None.
DEFAULT_CATEGORY = "__default__"


class FetchResult(NamedTuple):
    listings: list[Listing]
    outcome: AttemptOutcome


def _log_orphan_failure(task: asyncio.Task) -> None:
    # The caller was cancelled; nobody else awaits this task.
    if not task.cancelled() and task.exception() is not None:
        logger.warning(
            "marketplace_orphan_call_failed",
            error=str(task.exception()),
            source="gateway",
        )


class MarketplaceGateway:
    """Cache-first, rate-limited access to a marketplace search source."""

    def __init__(
        self,
        cache: ResultCache,
        limiter: SlidingWindowRateLimiter,
        limit: int | None = None,
    ) -> None:
        self.cache = cache
        self.limiter = limiter
        self.limit = limit if limit is not None else settings.EBAY_RESULTS_PER_QUERY

    def cache_key(self, query: str, category_id: str | None) -> str:
        return f"{normalize_query_key(query)}|{category_id or '*'}|{self.limit}"

    async def _call_and_store(
        self,
        source: SearchSource,
        query: str,
        category_id: str | None,
        key: str,
    ) -> list[Listing]:
        listings = await source(query, category_id=category_id, limit=self.limit)
        self.cache.set_query(key, listings)
        return listings

    async def fetch(
        self,
        source: SearchSource | None,
        query: str,
        category_id: str | None,
        allow_upstream: bool = True,
    ) -> FetchResult:
        """
        Cached listings for (query, category), else one rate-limited upstream call.

        The upstream call is shielded: if the caller is cancelled mid-call the
        request still completes and populates the cache.
        """
        key = self.cache_key(query, category_id)
        cached = self.cache.get_query(key)
        if cached is not None:
            return FetchResult(list(cached), AttemptOutcome.CACHED)
        if not allow_upstream or source is None:
            return FetchResult([], AttemptOutcome.SKIPPED)

        await self.limiter.acquire()
        task = asyncio.ensure_future(self._call_and_store(source, query, category_id, key))
        try:
            listings = await asyncio.shield(task)
        except asyncio.CancelledError:
            task.add_done_callback(_log_orphan_failure)
            raise
        return FetchResult(listings, AttemptOutcome.OK)


class _Candidate(NamedTuple):
    query: str
    category_id: str | None
    listings: list[Listing]
    usable: int


class ComparableAggregator:
    """
    Multi-query comparable retrieval with sparsity fallback.

    Usage:
        aggregator = ComparableAggregator(cache, limiter, source=client.search)
        comps = await aggregator.aggregate(queries.primary, queries.alternatives)
    """

    def __init__(
        self,
        cache: ResultCache,
        limiter: SlidingWindowRateLimiter,
        source: SearchSource | None = None,
        category_id: str | None = DEFAULT_CATEGORY,
        sparsity_threshold: int | None = None,
        listing_cap: int | None = None,
        percentile_min_sample: int | None = None,
        uncategorized_fallback: bool | None = None,
        junk_keywords: Iterable[str] | None = None,
        currency_rates: Mapping[str, Decimal] | None = None,
        limit: int | None = None,
    ) -> None:
        self.gateway = MarketplaceGateway(cache, limiter, limit)
        self.source = source
        self.category_id = (
            (settings.EBAY_CATEGORY_ID or None) if category_id == DEFAULT_CATEGORY else category_id
        )
        self.sparsity_threshold = (
            sparsity_threshold if sparsity_threshold is not None else settings.SPARSITY_THRESHOLD
        )
        self.listing_cap = listing_cap if listing_cap is not None else settings.LISTING_CAP
        self.percentile_min_sample = (
            percentile_min_sample if percentile_min_sample is not None
            else settings.PERCENTILE_MIN_SAMPLE
        )
        self.uncategorized_fallback = (
            uncategorized_fallback if uncategorized_fallback is not None
            else settings.ENABLE_UNCATEGORIZED_FALLBACK
        )
        self.junk_keywords = tuple(junk_keywords) if junk_keywords is not None else None
        self.currency_rates = currency_rates

    def _usable_count(self, listings: list[Listing]) -> int:
        return len(usable_listings(listings, self.junk_keywords))

    async def _attempt(
        self,
        source: SearchSource | None,
        query: str,
        category_id: str | None,
        allow_upstream: bool,
        attempts: list[QueryAttempt],
    ) -> _Candidate | None:
        try:
            fetched = await self.gateway.fetch(source, query, category_id, allow_upstream)
        except UpstreamTransientFailure as e:
            logger.warning(
                "comps_query_failed",
                query=query,
                category_id=category_id,
                reason=e.reason,
                source="aggregator",
            )
            attempts.append(QueryAttempt(
                query=query, category_id=category_id, outcome=AttemptOutcome.FAILED,
            ))
            return None

        usable = self._usable_count(fetched.listings)
        attempts.append(QueryAttempt(
            query=query, category_id=category_id, count=usable, outcome=fetched.outcome,
        ))
        logger.info(
            "comps_query_complete",
            query=query,
            category_id=category_id,
            count=usable,
            outcome=fetched.outcome.value,
            source="aggregator",
        )
        if fetched.outcome == AttemptOutcome.SKIPPED:
            return None
        return _Candidate(query, category_id, fetched.listings, usable)

    async def aggregate(
        self,
        primary: str,
        alternatives: Iterable[str] = (),
        source: SearchSource | None = None,
        allow_upstream: bool = True,
    ) -> CompsResult:
        """
        Comparable sales for ``primary``, falling back to ``alternatives``.

        ``allow_upstream=False`` serves only what is already cached.
        """
        search = source if source is not None else self.source
        attempts: list[QueryAttempt] = []
        best: _Candidate | None = None

        seen: set[str] = set()
        for query in [primary, *alternatives]:
            if not query or normalize_query_key(query) in seen:
                continue
            seen.add(normalize_query_key(query))
            candidate = await self._attempt(search, query, self.category_id, allow_upstream, attempts)
            # Ties keep the earlier query.
            if candidate is not None and (best is None or candidate.usable > best.usable):
                best = candidate
            if best is not None and best.usable >= self.sparsity_threshold:
                break

        best_count = best.usable if best is not None else 0
        if best_count < self.sparsity_threshold and self.uncategorized_fallback and self.category_id:
            fallback_query = best.query if best is not None else primary
            logger.info(
                "comps_uncategorized_fallback",
                query=fallback_query,
                count=best_count,
                source="aggregator",
            )
            candidate = await self._attempt(search, fallback_query, None, allow_upstream, attempts)
            if candidate is not None and candidate.usable > best_count:
                best = candidate

        if best is None:
            logger.warning("comps_no_results", primary=primary, attempts=len(attempts), source="aggregator")
            return CompsResult(stats=compute_stats([], self.percentile_min_sample), attempts=attempts)

        listings = usable_listings(best.listings, self.junk_keywords)
        listings = dedupe_listings(listings)
        listings = normalize_listings(listings, self.currency_rates)
        listings = sort_and_cap(listings, self.listing_cap)
        stats = compute_stats(listings, self.percentile_min_sample)

        logger.info(
            "comps_aggregated",
            query_used=best.query,
            category_id=best.category_id,
            count=stats.count,
            median=str(stats.median) if stats.median is not None else None,
            attempts=len(attempts),
            source="aggregator",
        )
        return CompsResult(
            listings=listings,
            stats=stats,
            query_used=best.query,
            attempts=attempts,
        )


