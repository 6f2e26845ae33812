"""
CompScan - Marketplace Query Builder (Section 4.2)

Builds a primary search query from a CardIdentity plus an ordered list of
progressively broader fallbacks. Pure and total: an empty identity yields the
generic "trading card" query and no alternatives.
"""

from __future__ import annotations

from typing import Mapping

import structlog

from compscan.config import settings
from compscan.identity.rules import infer_company
from compscan.models.identity import FALLBACK_QUERY, CardIdentity, CardType, QuerySet

logger = structlog.get_logger(__name__)

# Canonical order of query parts.
SLOTS = (
    "year", "company", "set", "player", "parallel", "color",
    "rookie", "auto", "patch", "grade", "number",
)

# Card numbers this small are almost always OCR noise (a stray "1" or "2").
_NOISE_NUMBER_MAX = 2

_AUTO_TYPES = {CardType.AUTO, CardType.RPA}
_PATCH_TYPES = {CardType.PATCH, CardType.RPA}


def _query_number(card_number: str | None) -> str | None:
    if not card_number:
        return None
    if card_number.isdigit() and int(card_number) <= _NOISE_NUMBER_MAX:
        return None
    return card_number


def _slot_values(identity: CardIdentity, company: str | None) -> dict[str, str | None]:
    color = identity.color
    if color and identity.parallel and color.lower() in identity.parallel.lower():
        color = None
    number = _query_number(identity.card_number)
    return {
        "year": str(identity.year) if identity.year else None,
        "company": company,
        "set": identity.set_name,
        "player": identity.player,
        "parallel": identity.parallel,
        "color": color,
        "rookie": "RC" if identity.is_rookie else None,
        "auto": "Auto" if identity.card_type in _AUTO_TYPES else None,
        "patch": "Patch" if identity.card_type in _PATCH_TYPES else None,
        "grade": None if identity.is_raw else identity.grade,
        "number": f"#{number}" if number else None,
    }


def _join(values: Mapping[str, str | None], slots: tuple[str, ...] | set[str]) -> str:
    """Join the selected slots in canonical order, never emitting a part twice."""
    seen: set[str] = set()
    parts: list[str] = []
    for slot in SLOTS:
        if slot not in slots:
            continue
        value = values.get(slot)
        if not value:
            continue
        part = " ".join(value.split())
        if part.lower() in seen:
            continue
        seen.add(part.lower())
        parts.append(part)
    return " ".join(parts)


def _without(*dropped: str) -> set[str]:
    return set(SLOTS) - set(dropped)


def build_search_query(identity: CardIdentity) -> str:
    """Primary query: every populated field in canonical order."""
    values = _slot_values(identity, identity.company)
    return _join(values, set(SLOTS)) or FALLBACK_QUERY


def _number_variants(values: dict[str, str | None], card_number: str | None) -> list[str]:
    number = _query_number(card_number)
    if not number:
        return []
    spellings: list[str] = []
    compact = number.replace("-", "")
    if compact != number:
        spellings.append(f"#{compact}")
    if number.upper().startswith("SS"):
        spellings.append(f"Spotless Spans {number[2:].lstrip('-')}")
    return [_join({**values, "number": s}, set(SLOTS)) for s in spellings]


def build_queries(
    identity: CardIdentity,
    brand_table: Mapping[str, str] | None = None,
) -> QuerySet:
    """
    Primary query plus structural relaxations, broadest last.

    Alternatives are deduplicated in order and never repeat the primary.
    """
    primary = build_search_query(identity)
    if primary == FALLBACK_QUERY:
        return QuerySet()

    brands = brand_table if brand_table is not None else settings.BRAND_INFERENCE
    values = _slot_values(identity, identity.company)
    inferred = identity.company or infer_company(identity.set_name, "", brands)
    brand_values = _slot_values(identity, inferred)

    candidates = [
        _join(values, _without("number")),
        _join(values, _without("parallel", "color", "number")),
        _join(values, _without("grade")),
        _join(values, _without("auto", "patch")),
        _join(values, {"year", "set", "player", "rookie"}),
        _join(brand_values, {"year", "company", "set", "parallel", "rookie"}),
        _join(brand_values, {"year", "company", "player", "color"}),
        *_number_variants(values, identity.card_number),
    ]
    if identity.is_rookie:
        candidates.append(_join({**values, "rookie": "Rookie"}, set(SLOTS)))

    seen = {primary.lower()}
    alternatives: list[str] = []
    for query in candidates:
        if not query or query.lower() in seen:
            continue
        seen.add(query.lower())
        alternatives.append(query)

    logger.debug(
        "queries_built",
        primary=primary,
        alternatives=len(alternatives),
        source="query_builder",
    )
    return QuerySet(primary=primary, alternatives=alternatives)
