"""
CompScan - Price Statistics Tests (Section 4.3)
"""

from __future__ import annotations

from decimal import Decimal

import pytest

from compscan.engine.stats import compute_stats, median, percentile
from tests.conftest import build_listing


def _d(*values: int | str) -> list[Decimal]:
    return [Decimal(str(v)) for v in values]


class TestMedian:
    def test_odd_count(self) -> None:
        assert median(_d(30, 10, 20)) == Decimal("20")

    def test_even_count(self) -> None:
        assert median(_d(10, 20)) == Decimal("15")

    def test_empty(self) -> None:
        assert median([]) is None


class TestPercentile:
    def test_linear_interpolation(self) -> None:
        values = _d(*range(1, 11))
        assert percentile(values, 10) == Decimal("1.9")
        assert percentile(values, 90) == Decimal("9.1")

    def test_bounds(self) -> None:
        values = _d(5, 1, 3)
        assert percentile(values, 0) == Decimal("1")
        assert percentile(values, 100) == Decimal("5")

    def test_out_of_range(self) -> None:
        with pytest.raises(ValueError):
            percentile(_d(1, 2), 101)


class TestComputeStats:
    def test_empty_set(self) -> None:
        stats = compute_stats([])

        assert stats.count == 0
        assert stats.median is None
        assert stats.p10 is None

    def test_small_sample_has_no_percentiles(self) -> None:
        listings = [build_listing(p, title=f"card {p}") for p in (10, 20, 30)]

        stats = compute_stats(listings, min_sample=10)

        assert stats.count == 3
        assert stats.median == Decimal("20.00")
        assert stats.mean == Decimal("20.00")
        assert stats.low == Decimal("10.00")
        assert stats.high == Decimal("30.00")
        assert stats.p10 is None
        assert stats.p90 is None

    def test_percentiles_once_sample_is_large_enough(self) -> None:
        listings = [build_listing(p, title=f"card {p}") for p in range(1, 11)]

        stats = compute_stats(listings, min_sample=10)

        assert stats.p10 == Decimal("1.90")
        assert stats.p90 == Decimal("9.10")
        assert stats.median == Decimal("5.50")

    def test_uses_normalized_price(self) -> None:
        listing = build_listing(100, currency="CAD", normalized_price=Decimal("74.00"))

        stats = compute_stats([listing], currency="USD")

        assert stats.median == Decimal("74.00")
        assert stats.currency == "USD"
