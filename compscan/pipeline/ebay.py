"""
CompScan - eBay Browse API Client (Section 6)

Marketplace source backed by GET /buy/browse/v1/item_summary/search.
Authentication: OAuth2 Client Credentials, token shared via
compscan.pipeline.auth.token_cache.

Failure mapping (at this boundary, nowhere else):
- 429              -> UpstreamRateLimited (Retry-After honoured)
- 5xx              -> retried once after 250 ms, then UpstreamTransientFailure
- 401              -> cached token invalidated, UpstreamTransientFailure
- other 4xx        -> UpstreamTransientFailure, no retry
- network errors   -> UpstreamTransientFailure
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable

import httpx
import structlog
from pydantic import ValidationError

from compscan.config import settings
from compscan.engine.listing_filter import to_iso_date
from compscan.errors import UpstreamRateLimited, UpstreamTransientFailure
from compscan.models.listing import Listing
from compscan.pipeline.auth import OAuthTokenCache, token_cache

logger = structlog.get_logger(__name__)

_MAX_ATTEMPTS = 2


def retry_after_ms(response: httpx.Response, default_seconds: float = 0.0) -> int:
    """Retry-After header (seconds) as milliseconds."""
    raw = response.headers.get("Retry-After", "").strip()
    try:
        seconds = float(raw) if raw else default_seconds
    except ValueError:
        seconds = default_seconds
    return max(0, int(seconds * 1000))


async def get_with_retry(
    client: httpx.AsyncClient,
    url: str,
    query: str,
    source: str,
    is_retryable: Callable[[httpx.Response], bool] | None = None,
    **kwargs: Any,
) -> httpx.Response:
    """
    GET ``url``, retrying once on a 5xx after EBAY_SERVER_ERROR_RETRY_DELAY_SECONDS.

    Returns the first response below 500 as-is (callers map 4xx), or a 5xx
    that ``is_retryable`` rejects; raises UpstreamTransientFailure on network
    errors or a second 5xx.
    """
    last_status = 0
    for attempt in range(_MAX_ATTEMPTS):
        try:
            response = await client.get(url, **kwargs)
        except httpx.HTTPError as e:
            logger.warning(
                "ebay_request_error",
                query=query,
                error=str(e),
                source=source,
            )
            raise UpstreamTransientFailure(query, str(e)) from e

        if response.status_code < 500:
            return response
        if is_retryable is not None and not is_retryable(response):
            return response

        last_status = response.status_code
        logger.warning(
            "ebay_server_error",
            query=query,
            status_code=last_status,
            attempt=attempt + 1,
            source=source,
        )
        if attempt + 1 < _MAX_ATTEMPTS:
            await asyncio.sleep(settings.EBAY_SERVER_ERROR_RETRY_DELAY_SECONDS)

    raise UpstreamTransientFailure(query, f"HTTP {last_status}")


def json_object(response: httpx.Response, query: str) -> dict[str, Any]:
    """Response body as a JSON object; anything else fails this query."""
    try:
        data = response.json()
    except ValueError as e:
        raise UpstreamTransientFailure(query, f"HTTP {response.status_code}, invalid JSON body") from e
    if not isinstance(data, dict):
        raise UpstreamTransientFailure(
            query, f"HTTP {response.status_code}, unexpected {type(data).__name__} body",
        )
    return data


def parse_items(
    items: Any,
    parse: Callable[[dict[str, Any]], Listing],
    source: str,
) -> list[Listing]:
    """Parse a raw item array, skipping entries that are not valid listings."""
    if not isinstance(items, list):
        return []
    listings: list[Listing] = []
    for item in items:
        if not isinstance(item, dict):
            logger.debug("ebay_item_skipped", reason="not an object", source=source)
            continue
        try:
            listings.append(parse(item))
        except ValidationError as e:
            logger.debug("ebay_item_skipped", reason=str(e), source=source)
    return listings


def parse_browse_item(item: dict[str, Any]) -> Listing:
    price = item.get("price")
    if not isinstance(price, dict):
        price = {}
    return Listing(
        price=price.get("value"),
        currency=price.get("currency") or "USD",
        title=item.get("title") or "",
        url=item.get("itemWebUrl") or "",
        sold_date=to_iso_date(item.get("itemEndDate") or item.get("itemCreationDate")),
        source="ebay",
        item_id=item.get("itemId"),
    )


class eBayBrowseClient:
    """
    eBay Browse API marketplace source.

    Usage:
        async with eBayBrowseClient() as client:
            listings = await client.search("2023 Topps Chrome Jacob Wilson RC")
    """

    def __init__(
        self,
        tokens: OAuthTokenCache | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._tokens = tokens if tokens is not None else token_cache
        self._client = http_client
        self._owns_client = http_client is None

    async def __aenter__(self) -> "eBayBrowseClient":
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=settings.EBAY_HTTP_TIMEOUT_SECONDS,
                headers={"User-Agent": settings.EBAY_USER_AGENT},
            )
        return self

    async def __aexit__(self, *args: Any) -> None:
        if self._client and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def search(
        self,
        query: str,
        category_id: str | None = None,
        limit: int | None = None,
    ) -> list[Listing]:
        """
        Search fixed-price listings for ``query``.

        GET /buy/browse/v1/item_summary/search
            ?q={query}&category_ids={category_id}&filter=buyingOptions:{FIXED_PRICE}&limit={limit}
        """
        if self._client is None:
            raise RuntimeError("eBayBrowseClient must be used as an async context manager")

        token = await self._tokens.get_token(self._client)
        params = {
            "q": " ".join(query.split()),
            "filter": "buyingOptions:{FIXED_PRICE}",
            "limit": str(limit or settings.EBAY_RESULTS_PER_QUERY),
        }
        if category_id:
            params["category_ids"] = category_id

        response = await get_with_retry(
            self._client,
            f"{settings.EBAY_BROWSE_URL}/item_summary/search",
            query,
            "ebay_browse",
            headers={
                "Authorization": f"Bearer {token}",
                "X-EBAY-C-MARKETPLACE-ID": settings.EBAY_MARKETPLACE_ID,
            },
            params=params,
        )

        if response.status_code == 429:
            wait_ms = retry_after_ms(response, settings.EBAY_RATE_LIMIT_WINDOW_SECONDS)
            logger.warning("ebay_rate_limited", query=query, retry_after_ms=wait_ms, source="ebay_browse")
            raise UpstreamRateLimited(wait_ms)
        if response.status_code == 401:
            self._tokens.invalidate()
            raise UpstreamTransientFailure(query, "HTTP 401 (token invalidated)")
        if response.status_code >= 400:
            raise UpstreamTransientFailure(query, f"HTTP {response.status_code}")

        data = json_object(response, query)
        listings = parse_items(data.get("itemSummaries"), parse_browse_item, "ebay_browse")
        logger.info(
            "ebay_search_complete",
            query=query,
            category_id=category_id,
            result_count=len(listings),
            source="ebay_browse",
        )
        return listings
