"""
CompScan - Comparable Price Statistics (Section 4.3)

Median is always reported (None for an empty set). p10 / p90 are reported
only once the sample reaches PERCENTILE_MIN_SAMPLE; below that they are too
noisy to mean anything.
"""

from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP
from typing import Sequence

from compscan.config import settings
from compscan.models.listing import CompStats, Listing

_TWO_DP = Decimal("0.01")


def _quantize(value: Decimal) -> Decimal:
    return value.quantize(_TWO_DP, rounding=ROUND_HALF_UP)


def median(values: Sequence[Decimal]) -> Decimal | None:
    """Middle value; mean of the two middle values for an even count."""
    if not values:
        return None
    ordered = sorted(values)
    mid = len(ordered) // 2
    if len(ordered) % 2:
        return ordered[mid]
    return (ordered[mid - 1] + ordered[mid]) / 2


def percentile(values: Sequence[Decimal], pct: int) -> Decimal | None:
    """Linear-interpolated percentile (0-100) over the sorted values."""
    if not values:
        return None
    if not 0 <= pct <= 100:
        raise ValueError(f"pct must be within 0-100, got {pct}")
    ordered = sorted(values)
    rank = Decimal(pct) / 100 * (len(ordered) - 1)
    lower = int(rank)
    upper = min(lower + 1, len(ordered) - 1)
    fraction = rank - lower
    return ordered[lower] + (ordered[upper] - ordered[lower]) * fraction


def compute_stats(
    listings: Sequence[Listing],
    min_sample: int | None = None,
    currency: str | None = None,
) -> CompStats:
    """Summary statistics over each listing's normalized (reference-currency) price."""
    reference = currency or settings.REFERENCE_CURRENCY
    prices = [listing.effective_price for listing in listings]
    if not prices:
        return CompStats(count=0, currency=reference)

    threshold = min_sample if min_sample is not None else settings.PERCENTILE_MIN_SAMPLE
    with_percentiles = len(prices) >= threshold
    p10 = percentile(prices, 10) if with_percentiles else None
    p90 = percentile(prices, 90) if with_percentiles else None

    return CompStats(
        count=len(prices),
        median=_quantize(median(prices)),
        p10=_quantize(p10) if p10 is not None else None,
        p90=_quantize(p90) if p90 is not None else None,
        mean=_quantize(sum(prices, Decimal("0")) / len(prices)),
        low=_quantize(min(prices)),
        high=_quantize(max(prices)),
        currency=reference,
    )
