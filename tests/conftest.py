"""
CompScan - Shared pytest Fixtures & Configuration

Provides common fixtures for all test modules:
- Fake monotonic clock for limiter / cache / token expiry
- Listing factory
- Fresh cache + limiter pair
- Async test support via pytest-asyncio
"""

from __future__ import annotations

from datetime import date, timedelta
from typing import Any, Callable, Iterator

import pytest

from compscan.models.listing import Listing
from compscan.pipeline.ebay_finding import cooldown
from compscan.utils.cache import ResultCache
from compscan.utils.rate_limiter import SlidingWindowRateLimiter


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

pytest_plugins = ("pytest_asyncio",)


# ---------------------------------------------------------------------------
# Clock
# ---------------------------------------------------------------------------


class FakeClock:
    """Manually advanced monotonic clock (seconds)."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        """Stand-in for asyncio.sleep that just moves time forward."""
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache(clock: FakeClock) -> ResultCache:
    return ResultCache(clock=clock)


@pytest.fixture
def limiter(clock: FakeClock) -> SlidingWindowRateLimiter:
    return SlidingWindowRateLimiter(
        max_requests=1, window_seconds=5.0, clock=clock, sleep=clock.sleep, buffer_seconds=0.1,
    )


@pytest.fixture(autouse=True)
def _reset_finding_cooldown() -> Iterator[None]:
    """The Finding API cooldown is process-wide; never leak it between tests."""
    cooldown.clear()
    yield
    cooldown.clear()


# ---------------------------------------------------------------------------
# Listing Factory
# ---------------------------------------------------------------------------


def build_listing(
    price: str | int | float = "10.00",
    title: str = "2023 Topps Chrome Jacob Wilson #121 RC",
    currency: str = "USD",
    sold_date: str = "2025-01-01",
    **extra: Any,
) -> Listing:
    return Listing(
        price=price,
        title=title,
        currency=currency,
        sold_date=sold_date,
        url=extra.pop("url", f"https://www.ebay.com/itm/{abs(hash((title, str(price)))) % 10**9}"),
        **extra,
    )


@pytest.fixture
def make_listing() -> Callable[..., Listing]:
    """Factory fixture: make_listing(price, title=..., currency=..., sold_date=...)."""
    return build_listing


def distinct_listings(count: int, base_price: int = 10, prefix: str = "Jacob Wilson RC") -> list[Listing]:
    """``count`` listings with distinct titles and prices, dated one day apart."""
    start = date(2025, 1, 1)
    return [
        build_listing(
            price=base_price + i,
            title=f"{prefix} card {i}",
            sold_date=(start + timedelta(days=i)).isoformat(),
        )
        for i in range(count)
    ]


@pytest.fixture
def make_listings() -> Callable[..., list[Listing]]:
    """Factory fixture: make_listings(count, base_price=10, prefix=...)."""
    return distinct_listings
