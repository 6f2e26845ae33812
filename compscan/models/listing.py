"""
CompScan - Marketplace Listing & Statistics Models

All money values use Decimal, never float.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator


class Listing(BaseModel):
    """A single comparable sale (or active listing) from a marketplace."""

    price: Decimal
    currency: str = "USD"
    normalized_price: Decimal | None = None
    title: str = ""
    url: str = ""
    sold_date: str = ""          # ISO 8601 date, YYYY-MM-DD
    source: str = "ebay"
    item_id: str | None = None

    @field_validator("price", mode="before")
    @classmethod
    def parse_price(cls, v: Any) -> Decimal:
        """Unparseable prices become 0 and are dropped by the usable-listing filter."""
        if v is None or v == "":
            return Decimal("0")
        try:
            return Decimal(str(v))
        except (InvalidOperation, ValueError):
            return Decimal("0")

    @field_validator("currency", mode="before")
    @classmethod
    def upper_currency(cls, v: Any) -> str:
        return (str(v).strip().upper() if v else "") or "USD"

    @property
    def effective_price(self) -> Decimal:
        """Reference-currency price when normalized, native price otherwise."""
        return self.normalized_price if self.normalized_price is not None else self.price


class CompStats(BaseModel):
    """Robust summary statistics over the normalized price set."""

    count: int = 0
    median: Decimal | None = None
    p10: Decimal | None = None
    p90: Decimal | None = None
    mean: Decimal | None = None
    low: Decimal | None = None
    high: Decimal | None = None
    currency: str = "USD"


class AttemptOutcome(str, Enum):
    OK = "ok"
    CACHED = "cached"
    FAILED = "failed"
    SKIPPED = "skipped"     # cache-only mode and nothing cached


class QueryAttempt(BaseModel):
    """One marketplace query issued (or served from cache) by the aggregator."""

    query: str
    category_id: str | None = None
    count: int = 0
    outcome: AttemptOutcome = AttemptOutcome.OK


class CompsResult(BaseModel):
    """Filtered, deduplicated comparables plus their statistics."""

    listings: list[Listing] = Field(default_factory=list)
    stats: CompStats = Field(default_factory=CompStats)
    query_used: str | None = None
    attempts: list[QueryAttempt] = Field(default_factory=list)
