"""Tests for the eBay Finding API (sold listings) marketplace source."""

from __future__ import annotations

from decimal import Decimal
from typing import Any
from unittest.mock import patch

import httpx
import pytest
import respx

import compscan.pipeline.ebay_finding as finding_module
from compscan.errors import ConfigurationMissing, UpstreamRateLimited, UpstreamTransientFailure
from compscan.pipeline.ebay_finding import (
    Cooldown,
    cooldown,
    eBayFindingClient,
    parse_finding_item,
    truncate_keywords,
)
from tests.conftest import FakeClock

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

FINDING_URL = "https://svcs.ebay.com/services/search/FindingService/v1"


def _item(item_id: str, title: str, price: str, currency: str = "USD") -> dict[str, Any]:
    return {
        "itemId": [item_id],
        "title": [title],
        "viewItemURL": [f"https://www.ebay.com/itm/{item_id}"],
        "sellingStatus": [{"currentPrice": [{"@currencyId": currency, "__value__": price}]}],
        "listingInfo": [{"endTime": ["2025-03-02T18:04:11.000Z"]}],
    }


def _response(ack: str = "Success", items: list[dict[str, Any]] | None = None, **extra: Any) -> dict[str, Any]:
    body: dict[str, Any] = {
        "ack": [ack],
        "searchResult": [{"@count": str(len(items or [])), "item": items or []}],
        **extra,
    }
    return {"findCompletedItemsResponse": [body]}


QUOTA_ERROR = {
    "errorMessage": [{
        "error": [{
            "errorId": ["10001"],
            "message": ["Service call has exceeded the number of times the operation is allowed to be called"],
        }],
    }],
}


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


class TestParsing:
    def test_parse_finding_item(self) -> None:
        listing = parse_finding_item(_item("111", "Jacob Wilson RC", "24.50", "GBP"))

        assert listing.price == Decimal("24.50")
        assert listing.currency == "GBP"
        assert listing.title == "Jacob Wilson RC"
        assert listing.sold_date == "2025-03-02"
        assert listing.item_id == "111"

    def test_truncate_keywords(self) -> None:
        assert truncate_keywords("  a   b  c ", max_length=3) == "a b"
        assert len(truncate_keywords("x" * 500)) == 120


class TestCooldown:
    def test_counts_down(self) -> None:
        clock = FakeClock()
        state = Cooldown(clock)
        state.start(600)
        clock.advance(100)

        assert state.remaining_ms() == 500_000

        clock.advance(500)
        assert state.remaining_ms() == 0


# ---------------------------------------------------------------------------
# Search
# ---------------------------------------------------------------------------


class TestFindingSearch:
    @pytest.mark.asyncio
    async def test_happy_path(self) -> None:
        items = [_item("1", "Jacob Wilson RC #121", "20.00"), _item("2", "Jacob Wilson RC", "22.00")]
        with respx.mock:
            route = respx.get(FINDING_URL).mock(
                return_value=httpx.Response(200, json=_response(items=items))
            )
            async with eBayFindingClient(app_id="test-app-id") as client:
                listings = await client.search("Jacob Wilson RC", category_id="261328")

        assert [listing.price for listing in listings] == [Decimal("20.00"), Decimal("22.00")]
        params = route.calls.last.request.url.params
        assert params["OPERATION-NAME"] == "findCompletedItems"
        assert params["SECURITY-APPNAME"] == "test-app-id"
        assert params["itemFilter(0).name"] == "SoldItemsOnly"
        assert params["sortOrder"] == "EndTimeSoonest"
        assert params["categoryId"] == "261328"
        assert params["keywords"] == "Jacob Wilson RC"

    @pytest.mark.asyncio
    async def test_missing_app_id(self) -> None:
        async with eBayFindingClient(app_id="") as client:
            with pytest.raises(ConfigurationMissing):
                await client.search("Jacob Wilson")

    @pytest.mark.asyncio
    async def test_empty_keywords_skip_the_call(self) -> None:
        with respx.mock:
            route = respx.get(FINDING_URL)
            async with eBayFindingClient(app_id="test-app-id") as client:
                assert await client.search("   ") == []
        assert route.call_count == 0

    @pytest.mark.asyncio
    async def test_ack_failure_means_no_comps(self) -> None:
        with respx.mock:
            respx.get(FINDING_URL).mock(
                return_value=httpx.Response(200, json=_response(ack="Failure"))
            )
            async with eBayFindingClient(app_id="test-app-id") as client:
                assert await client.search("Jacob Wilson") == []

    @pytest.mark.asyncio
    async def test_ack_warning_still_returns_items(self) -> None:
        items = [_item("1", "Jacob Wilson RC", "20.00")]
        with respx.mock:
            respx.get(FINDING_URL).mock(
                return_value=httpx.Response(200, json=_response(ack="Warning", items=items))
            )
            async with eBayFindingClient(app_id="test-app-id") as client:
                assert len(await client.search("Jacob Wilson")) == 1

    @pytest.mark.asyncio
    async def test_quota_error_starts_cooldown(self) -> None:
        with respx.mock:
            route = respx.get(FINDING_URL).mock(
                return_value=httpx.Response(500, json=QUOTA_ERROR)
            )
            async with eBayFindingClient(app_id="test-app-id") as client:
                with pytest.raises(UpstreamRateLimited) as exc_info:
                    await client.search("Jacob Wilson")
                assert exc_info.value.retry_after_ms == 600_000
                assert cooldown.remaining_ms() > 0
                # Quota errors arrive as HTTP 500 but are never retried
                assert route.call_count == 1

                # Fails fast during the cooldown, no upstream call
                with pytest.raises(UpstreamRateLimited):
                    await client.search("Jacob Wilson")
                assert route.call_count == 1

    @pytest.mark.asyncio
    async def test_quota_error_inside_response_body(self) -> None:
        body = _response(ack="Failure", **QUOTA_ERROR)
        with respx.mock:
            respx.get(FINDING_URL).mock(return_value=httpx.Response(200, json=body))
            async with eBayFindingClient(app_id="test-app-id") as client:
                with pytest.raises(UpstreamRateLimited):
                    await client.search("Jacob Wilson")

    @pytest.mark.asyncio
    async def test_server_error_retried_then_transient(self) -> None:
        with patch.object(finding_module.settings, "EBAY_SERVER_ERROR_RETRY_DELAY_SECONDS", 0):
            with respx.mock:
                route = respx.get(FINDING_URL).mock(return_value=httpx.Response(503, text="down"))
                async with eBayFindingClient(app_id="test-app-id") as client:
                    with pytest.raises(UpstreamTransientFailure):
                        await client.search("Jacob Wilson")

        assert route.call_count == 2

    @pytest.mark.asyncio
    async def test_http_429(self) -> None:
        with respx.mock:
            respx.get(FINDING_URL).mock(
                return_value=httpx.Response(429, headers={"Retry-After": "30"})
            )
            async with eBayFindingClient(app_id="test-app-id") as client:
                with pytest.raises(UpstreamRateLimited) as exc_info:
                    await client.search("Jacob Wilson")

        assert exc_info.value.retry_after_ms == 30_000

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", [b"[]", b"null", b"42"])
    async def test_non_object_body_is_transient(self, body: bytes) -> None:
        with respx.mock:
            respx.get(FINDING_URL).mock(
                return_value=httpx.Response(200, content=body, headers={"Content-Type": "application/json"})
            )
            async with eBayFindingClient(app_id="test-app-id") as client:
                with pytest.raises(UpstreamTransientFailure) as exc_info:
                    await client.search("Jacob Wilson")

        assert "unexpected" in exc_info.value.reason

    @pytest.mark.asyncio
    async def test_malformed_items_are_skipped(self) -> None:
        items = ["oops", {"title": [{"en": "x"}]}, _item("3", "Jacob Wilson RC", "21.00")]
        with respx.mock:
            respx.get(FINDING_URL).mock(
                return_value=httpx.Response(200, json=_response(items=items))
            )
            async with eBayFindingClient(app_id="test-app-id") as client:
                listings = await client.search("Jacob Wilson")

        assert [listing.item_id for listing in listings] == ["3"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "body",
        [
            {"findCompletedItemsResponse": "garbage"},
            {"findCompletedItemsResponse": [{"ack": ["Success"], "searchResult": ["x"]}]},
            {"errorMessage": {"error": "10001"}},
        ],
    )
    async def test_unexpected_shapes_mean_no_comps(self, body: dict[str, Any]) -> None:
        with respx.mock:
            respx.get(FINDING_URL).mock(return_value=httpx.Response(200, json=body))
            async with eBayFindingClient(app_id="test-app-id") as client:
                assert await client.search("Jacob Wilson") == []
