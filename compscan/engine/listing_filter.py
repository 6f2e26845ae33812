"""
CompScan - Comparable Listing Filters (Section 4.3)

Pure helpers applied to marketplace results before statistics:
- junk-title exclusion (lots, repacks, reprints, ...)
- duplicate collapse on (normalized title, currency, price to nearest 0.5)
- sold-date sort and recency cap

Junk keywords match whole words (plural tolerant), so "Lot of 10" is junk but
"Lotzar Buckets" and "Showcase" are not.
"""

from __future__ import annotations

import re
from datetime import date, datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable

import structlog

from compscan.config import settings
from compscan.models.listing import Listing

logger = structlog.get_logger(__name__)

_ZERO = Decimal("0")
_TWO = Decimal("2")
_NON_WORD_RE = re.compile(r"[^\w\s]")


def _junk_pattern(keywords: tuple[str, ...]) -> re.Pattern[str]:
    body = "|".join(
        r"\s+".join(re.escape(part) for part in kw.lower().split()) for kw in keywords
    )
    return re.compile(rf"(?<![a-z0-9])(?:{body})(?:s|es)?(?![a-z0-9])", re.IGNORECASE)


_pattern_cache: dict[tuple[str, ...], re.Pattern[str]] = {}


def is_junk_listing(title: str, keywords: Iterable[str] | None = None) -> bool:
    """True when the title names a multi-card lot, sealed product or reproduction."""
    key = tuple(keywords if keywords is not None else settings.JUNK_KEYWORDS)
    if not key or not title:
        return False
    pattern = _pattern_cache.get(key)
    if pattern is None:
        pattern = _pattern_cache[key] = _junk_pattern(key)
    return bool(pattern.search(title))


def normalize_title(title: str) -> str:
    """Lowercase, punctuation stripped, whitespace collapsed."""
    return " ".join(_NON_WORD_RE.sub("", title.lower()).split())


def is_usable(listing: Listing, keywords: Iterable[str] | None = None) -> bool:
    return listing.price > _ZERO and not is_junk_listing(listing.title, keywords)


def usable_listings(
    listings: Iterable[Listing],
    keywords: Iterable[str] | None = None,
) -> list[Listing]:
    """Listings with a positive price and a non-junk title, order preserved."""
    kw = tuple(keywords) if keywords is not None else None
    return [listing for listing in listings if is_usable(listing, kw)]


def _half_unit(price: Decimal) -> Decimal:
    return (price * _TWO).quantize(Decimal("1"), rounding=ROUND_HALF_UP) / _TWO


def dedupe_key(listing: Listing) -> tuple[str, str, Decimal]:
    return (normalize_title(listing.title), listing.currency, _half_unit(listing.price))


def dedupe_listings(listings: Iterable[Listing]) -> list[Listing]:
    """
    Collapse listings sharing a dedupe key, keeping the lowest price.

    First-seen order of keys is preserved. Applying this twice is a no-op.
    """
    kept: dict[tuple[str, str, Decimal], Listing] = {}
    total = 0
    for listing in listings:
        total += 1
        key = dedupe_key(listing)
        current = kept.get(key)
        if current is None or listing.price < current.price:
            kept[key] = listing

    if total != len(kept):
        logger.debug(
            "listings_deduplicated",
            before=total,
            after=len(kept),
            source="listing_filter",
        )
    return list(kept.values())


def sort_and_cap(listings: Iterable[Listing], cap: int | None = None) -> list[Listing]:
    """Sort by sold date ascending and keep the ``cap`` most recent."""
    limit = cap if cap is not None else settings.LISTING_CAP
    ordered = sorted(listings, key=lambda listing: listing.sold_date)
    if limit <= 0:
        return []
    return ordered[-limit:]


def to_iso_date(value: str | datetime | date | None, today: date | None = None) -> str:
    """
    Marketplace timestamp -> 'YYYY-MM-DD'.

    Missing or unparseable values fall back to today (UTC).
    """
    fallback = (today or datetime.now(timezone.utc).date()).isoformat()
    if value is None or value == "":
        return fallback
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    text = str(value).strip()
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date().isoformat()
    except ValueError:
        pass
    try:
        return date.fromisoformat(text[:10]).isoformat()
    except ValueError:
        logger.debug("sold_date_unparseable", value=text, source="listing_filter")
        return fallback
