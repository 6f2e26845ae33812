"""
CompScan - eBay Finding API Client (sold listings)

Marketplace source backed by findCompletedItems with SoldItemsOnly, sorted
EndTimeSoonest. Needs only EBAY_APP_ID (sent as SECURITY-APPNAME).

The Finding API reports quota exhaustion in the response body as error id
10001, not as HTTP 429. On that error every client in the process enters a
cooldown of EBAY_COOLDOWN_SECONDS and fails fast with UpstreamRateLimited
until it expires. Any other ``ack: Failure`` means "no comps", not an error.
"""

from __future__ import annotations

import time
from typing import Any, Callable

import httpx
import structlog

from compscan.config import settings
from compscan.engine.listing_filter import to_iso_date
from compscan.errors import ConfigurationMissing, UpstreamRateLimited, UpstreamTransientFailure
from compscan.models.listing import Listing
from compscan.pipeline.ebay import get_with_retry, json_object, parse_items, retry_after_ms

logger = structlog.get_logger(__name__)

RATE_LIMIT_ERROR_ID = "10001"


class Cooldown:
    """Process-wide 'do not call until' marker."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._until = 0.0

    def start(self, seconds: float) -> None:
        self._until = self._clock() + seconds

    def remaining_ms(self) -> int:
        return max(0, int((self._until - self._clock()) * 1000))

    def clear(self) -> None:
        self._until = 0.0


cooldown = Cooldown()


def _first(value: Any) -> Any:
    # Finding API JSON wraps every scalar in a one-element list.
    if isinstance(value, list):
        return value[0] if value else None
    return value


def _object(value: Any) -> dict[str, Any]:
    value = _first(value)
    return value if isinstance(value, dict) else {}


def _array(value: Any) -> list[Any]:
    return value if isinstance(value, list) else []


def truncate_keywords(query: str, max_length: int | None = None) -> str:
    limit = max_length if max_length is not None else settings.EBAY_MAX_KEYWORDS_LENGTH
    return " ".join(query.split())[:limit].strip()


def parse_finding_item(item: dict[str, Any]) -> Listing:
    selling = _object(item.get("sellingStatus"))
    price = _object(selling.get("currentPrice"))
    listing_info = _object(item.get("listingInfo"))
    return Listing(
        price=price.get("__value__"),
        currency=price.get("@currencyId") or "USD",
        title=_first(item.get("title")) or "",
        url=_first(item.get("viewItemURL")) or "",
        sold_date=to_iso_date(_first(listing_info.get("endTime"))),
        source="ebay",
        item_id=_first(item.get("itemId")),
    )


def _error_ids(payload: dict[str, Any]) -> list[str]:
    ids: list[str] = []
    for message in _array(payload.get("errorMessage")):
        for error in _array(_object(message).get("error")):
            error_id = _first(_object(error).get("errorId"))
            if error_id is not None:
                ids.append(str(error_id))
    return ids


def _quota_exceeded(data: dict[str, Any]) -> bool:
    body = _object(data.get("findCompletedItemsResponse"))
    return RATE_LIMIT_ERROR_ID in _error_ids(data) + _error_ids(body)


def _retry_unless_quota(response: httpx.Response) -> bool:
    # eBay reports the quota error as HTTP 500; retrying it only burns more quota.
    try:
        data = response.json()
    except ValueError:
        return True
    return not (isinstance(data, dict) and _quota_exceeded(data))


class eBayFindingClient:
    """
    eBay Finding API marketplace source (completed, sold items).

    Usage:
        async with eBayFindingClient() as client:
            listings = await client.search("2023 Topps Chrome Jacob Wilson RC")
    """

    def __init__(
        self,
        app_id: str | None = None,
        http_client: httpx.AsyncClient | None = None,
        cooldown_state: Cooldown | None = None,
    ) -> None:
        self._app_id = app_id
        self._client = http_client
        self._owns_client = http_client is None
        self._cooldown = cooldown_state if cooldown_state is not None else cooldown

    async def __aenter__(self) -> "eBayFindingClient":
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=settings.EBAY_HTTP_TIMEOUT_SECONDS,
                headers={
                    "User-Agent": settings.EBAY_USER_AGENT,
                    "Accept": "application/json",
                },
            )
        return self

    async def __aexit__(self, *args: Any) -> None:
        if self._client and self._owns_client:
            await self._client.aclose()
            self._client = None

    @property
    def app_id(self) -> str:
        return self._app_id if self._app_id is not None else settings.EBAY_APP_ID

    def _params(self, keywords: str, category_id: str | None, limit: int) -> dict[str, str]:
        params = {
            "OPERATION-NAME": "findCompletedItems",
            "SERVICE-VERSION": "1.13.0",
            "SECURITY-APPNAME": self.app_id,
            "RESPONSE-DATA-FORMAT": "JSON",
            "REST-PAYLOAD": "true",
            "GLOBAL-ID": settings.EBAY_GLOBAL_ID,
            "keywords": keywords,
            "paginationInput.entriesPerPage": str(limit),
            "itemFilter(0).name": "SoldItemsOnly",
            "itemFilter(0).value": "true",
            "sortOrder": "EndTimeSoonest",
        }
        if category_id:
            params["categoryId"] = category_id
        return params

    async def search(
        self,
        query: str,
        category_id: str | None = None,
        limit: int | None = None,
    ) -> list[Listing]:
        """Sold listings for ``query``, most recently ended first."""
        if self._client is None:
            raise RuntimeError("eBayFindingClient must be used as an async context manager")
        if not self.app_id:
            raise ConfigurationMissing("EBAY_APP_ID")

        remaining = self._cooldown.remaining_ms()
        if remaining > 0:
            raise UpstreamRateLimited(remaining, "marketplace cooldown active")

        keywords = truncate_keywords(query)
        if not keywords:
            return []

        response = await get_with_retry(
            self._client,
            settings.EBAY_FINDING_URL,
            query,
            "ebay_finding",
            is_retryable=_retry_unless_quota,
            params=self._params(keywords, category_id, limit or settings.EBAY_RESULTS_PER_QUERY),
        )
        if response.status_code == 429:
            raise UpstreamRateLimited(retry_after_ms(response, settings.EBAY_COOLDOWN_SECONDS))

        data = json_object(response, query)
        body = _object(data.get("findCompletedItemsResponse"))
        error_ids = _error_ids(data) + _error_ids(body)
        if _quota_exceeded(data):
            self._cooldown.start(settings.EBAY_COOLDOWN_SECONDS)
            logger.warning(
                "ebay_quota_exceeded",
                query=query,
                cooldown_seconds=settings.EBAY_COOLDOWN_SECONDS,
                source="ebay_finding",
            )
            raise UpstreamRateLimited(settings.EBAY_COOLDOWN_SECONDS * 1000, "exceeded allowed calls")

        if response.status_code >= 400:
            raise UpstreamTransientFailure(query, f"HTTP {response.status_code}")

        ack = _first(body.get("ack"))
        if ack == "Failure":
            logger.warning(
                "ebay_ack_failure",
                query=query,
                error_ids=error_ids,
                source="ebay_finding",
            )
            return []

        result = _object(body.get("searchResult"))
        listings = parse_items(result.get("item"), parse_finding_item, "ebay_finding")
        logger.info(
            "ebay_search_complete",
            query=query,
            category_id=category_id,
            ack=ack,
            result_count=len(listings),
            source="ebay_finding",
        )
        return listings
