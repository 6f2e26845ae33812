"""
CompScan - Currency Normalization (Section 4.3)

Converts listing prices into the reference currency (USD by default) with a
static, versioned rate table from config. Rates are approximate on purpose;
there is no live FX lookup.

Rate semantics: units of the reference currency per 1 unit of the key
currency (CAD 0.74 means 1 CAD = 0.74 USD). Unknown currencies convert at 1.

All money values use Decimal, never float.
"""

from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Mapping

import structlog

from compscan.config import settings
from compscan.models.listing import Listing

logger = structlog.get_logger(__name__)

_ONE = Decimal("1")
_TWO_DP = Decimal("0.01")


def rate_for(currency: str, rates: Mapping[str, Decimal] | None = None) -> Decimal:
    """Table rate for ``currency``; 1 when the currency is not in the table."""
    table = rates if rates is not None else settings.CURRENCY_RATES
    code = (currency or "").strip().upper()
    rate = table.get(code)
    if rate is None:
        logger.debug(
            "forex_unknown_currency",
            currency=code,
            table_version=settings.CURRENCY_TABLE_VERSION,
            source="forex",
        )
        return _ONE
    return Decimal(str(rate))


def convert_to_reference(
    amount: Decimal,
    currency: str,
    rates: Mapping[str, Decimal] | None = None,
) -> Decimal:
    """
    Convert ``amount`` in ``currency`` to the reference currency.

    Examples:
        >>> convert_to_reference(Decimal("100"), "CAD")
        Decimal('74.00')
    """
    if amount < Decimal("0"):
        raise ValueError(f"amount must be non-negative, got {amount}")
    return (amount * rate_for(currency, rates)).quantize(_TWO_DP, rounding=ROUND_HALF_UP)


def normalize_listings(
    listings: Iterable[Listing],
    rates: Mapping[str, Decimal] | None = None,
) -> list[Listing]:
    """Copies of ``listings`` with ``normalized_price`` set."""
    return [
        listing.model_copy(update={
            "normalized_price": convert_to_reference(listing.price, listing.currency, rates),
        })
        for listing in listings
    ]
