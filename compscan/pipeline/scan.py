"""
CompScan - Scan Pipeline (Sections 2 and 5)

One capture end to end:
    text -> extract_identity -> (optional LLM enrichment) -> build_queries
         -> ComparableAggregator (bounded by COMPS_TIMEOUT_SECONDS) -> ScanResult

The comps half never raises for quota or latency problems; it reports them
through ScanResult.status instead:
- duplicate     same OCR text seen within FINGERPRINT_TTL_SECONDS; cache only
- retry_later   end-to-end timeout expired; the capture is not remembered and an
                in-flight call still fills the query cache
- rate_limited  upstream quota exhausted; retry_after_ms carries the hint and the
                capture is not remembered
- skipped       comps not requested, or no marketplace source configured

ConfigurationMissing is the one error that propagates.
"""

from __future__ import annotations

import asyncio
from typing import Any, Mapping

import structlog

from compscan.config import SearchApi, settings
from compscan.engine.query_builder import build_queries
from compscan.errors import UpstreamRateLimited
from compscan.identity.coerce import coerce_identity
from compscan.identity.extractor import extract_identity
from compscan.identity.llm_normalizer import enrich_identity
from compscan.models.identity import CardIdentity, QuerySet
from compscan.models.scan import (
    IdentitySource,
    ScanResult,
    ScanStatus,
    UsageStats,
)
from compscan.pipeline.aggregator import ComparableAggregator, SearchSource
from compscan.pipeline.ebay import eBayBrowseClient
from compscan.pipeline.ebay_finding import eBayFindingClient
from compscan.utils.cache import ResultCache
from compscan.utils.rate_limiter import SlidingWindowRateLimiter

logger = structlog.get_logger(__name__)


def open_marketplace_client() -> eBayFindingClient | eBayBrowseClient:
    """
    Marketplace client selected by EBAY_SEARCH_API.

    Usage:
        async with open_marketplace_client() as client:
            pipeline = ScanPipeline(source=client.search)
    """
    if settings.EBAY_SEARCH_API == SearchApi.BROWSE:
        return eBayBrowseClient()
    return eBayFindingClient()


def _merge_alternatives(queries: QuerySet, extra: list[str]) -> QuerySet:
    seen = {q.lower() for q in queries.all_queries}
    merged = list(queries.alternatives)
    for query in extra:
        if query and query.lower() not in seen:
            seen.add(query.lower())
            merged.append(query)
    return QuerySet(primary=queries.primary, alternatives=merged)


def build_recommendations(usage: UsageStats) -> list[str]:
    """Plain-language hints derived from limiter and cache state."""
    tips: list[str] = []
    limiter = usage.rate_limit
    if limiter.current_requests >= limiter.max_requests:
        tips.append("Rate limit reached: wait before making more marketplace calls")
    if limiter.next_available_ms > 0:
        seconds = -(-limiter.next_available_ms // 1000)
        tips.append(f"Next marketplace call available in {seconds} seconds")
    if usage.cache.query_entries > 0:
        tips.append(f"{usage.cache.query_entries} queries cached")
    if usage.cache.fingerprint_entries > 0:
        tips.append(f"{usage.cache.fingerprint_entries} unique OCR texts processed")
    return tips


class ScanPipeline:
    """
    Identity resolution plus comparable retrieval for single captures.

    The cache and limiter are meant to be shared process-wide; pass the same
    instances to every pipeline.
    """

    def __init__(
        self,
        source: SearchSource | None = None,
        cache: ResultCache | None = None,
        limiter: SlidingWindowRateLimiter | None = None,
        timeout_seconds: float | None = None,
        aggregator: ComparableAggregator | None = None,
        llm_client: Any = None,
    ) -> None:
        self.cache = cache if cache is not None else ResultCache()
        self.limiter = limiter if limiter is not None else SlidingWindowRateLimiter()
        self.aggregator = (
            aggregator if aggregator is not None
            else ComparableAggregator(self.cache, self.limiter, source=source)
        )
        self.source = source
        self.timeout_seconds = (
            timeout_seconds if timeout_seconds is not None else settings.COMPS_TIMEOUT_SECONDS
        )
        self._llm_client = llm_client

    async def scan_text(
        self,
        text: str,
        hint: str | None = None,
        with_comps: bool = True,
    ) -> ScanResult:
        """Resolve identity from OCR text and (optionally) fetch comparables."""
        identity = extract_identity(text, hint=hint)
        source_label = IdentitySource.HEURISTIC

        enrichment = await enrich_identity(text, identity, client=self._llm_client)
        if enrichment.enriched:
            identity = enrichment.identity
            source_label = IdentitySource.LLM
        else:
            logger.debug("llm_enrichment_skipped", reason=enrichment.reason, source="scan")

        queries = build_queries(identity)
        return await self._with_comps(identity, queries, source_label, text, with_comps)

    async def scan_vision(
        self,
        raw: str | Mapping[str, Any],
        with_comps: bool = True,
    ) -> ScanResult:
        """Coerce a generative-vision identity payload and fetch comparables."""
        coerced = coerce_identity(raw)
        queries = _merge_alternatives(build_queries(coerced.identity), coerced.alt_queries)
        return await self._with_comps(
            coerced.identity, queries, IdentitySource.VISION, None, with_comps,
        )

    async def _with_comps(
        self,
        identity: CardIdentity,
        queries: QuerySet,
        source_label: IdentitySource,
        text: str | None,
        with_comps: bool,
    ) -> ScanResult:
        result = ScanResult(identity=identity, queries=queries, identity_source=source_label)
        if not with_comps or (self.source is None and self.aggregator.source is None):
            result.status = ScanStatus.SKIPPED
            return result

        duplicate = bool(text and text.strip()) and self.cache.has_seen_text(text)
        if text and text.strip() and not duplicate:
            self.cache.remember_text(text)

        try:
            result.comps = await asyncio.wait_for(
                self.aggregator.aggregate(
                    queries.primary,
                    queries.alternatives,
                    allow_upstream=not duplicate,
                ),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            if text and not duplicate:
                # A call still in flight fills the query cache for the retry.
                self.cache.forget_text(text)
            result.status = ScanStatus.RETRY_LATER
            result.retry_after_ms = self.limiter.retry_after_ms()
            logger.warning(
                "comps_timeout",
                primary=queries.primary,
                timeout_seconds=self.timeout_seconds,
                source="scan",
            )
            return result
        except UpstreamRateLimited as e:
            if text and not duplicate:
                # Let the same capture try again once the quota recovers.
                self.cache.forget_text(text)
            result.status = ScanStatus.RATE_LIMITED
            result.retry_after_ms = e.retry_after_ms
            logger.warning(
                "comps_rate_limited",
                primary=queries.primary,
                retry_after_ms=e.retry_after_ms,
                source="scan",
            )
            return result

        result.status = ScanStatus.DUPLICATE if duplicate else ScanStatus.OK
        logger.info(
            "scan_complete",
            canonical_name=identity.canonical_name,
            confidence=identity.confidence,
            status=result.status.value,
            comps=result.comps.stats.count,
            identity_source=source_label.value,
            source="scan",
        )
        return result

    def usage(self) -> UsageStats:
        usage = UsageStats(rate_limit=self.limiter.snapshot(), cache=self.cache.stats())
        usage.recommendations = build_recommendations(usage)
        return usage
