"""
CompScan - Identity Extractor (Section 4.1)

Turns noisy OCR text into a CardIdentity by evaluating EXTRACTION_RULES in
order, releasing color and team words that belong to the player's name,
deriving company from the matched set, then scoring confidence and composing
a canonical name. Extraction is total: no input raises.
"""

from __future__ import annotations

from typing import Any, Mapping

import structlog

from compscan.config import settings
from compscan.identity.catalog import CATALOG_VERSION, phrase_pattern
from compscan.identity.rules import (
    EXTRACTION_RULES,
    find_color,
    find_team,
    infer_company,
    player_from_hint,
)
from compscan.models.identity import RAW_GRADE, CardIdentity

logger = structlog.get_logger(__name__)

# Fields counted by the confidence score, in the order weights are listed.
SCORED_FIELDS = (
    "player", "set_name", "card_number", "year", "company", "team", "parallel", "grade",
)


def score_confidence(
    identity: CardIdentity,
    weights: Mapping[str, int] | None = None,
) -> int:
    """
    Weighted sum of populated fields, capped at 100.

    A "Raw" grade is the absence of a grade and does not count.
    """
    table = weights if weights is not None else settings.CONFIDENCE_WEIGHTS
    score = 0
    for field in SCORED_FIELDS:
        value = getattr(identity, field)
        if field == "grade" and value == RAW_GRADE:
            continue
        if value:
            score += int(table.get(field, 0))
    return max(0, min(100, score))


def compose_canonical_name(identity: CardIdentity) -> str | None:
    """'2023 Topps Chrome Jacob Wilson Gold Refractor RC #BDC-121 PSA 10'."""
    parts: list[Any] = [
        identity.year,
        identity.set_name or identity.company,
        identity.player,
        identity.parallel or identity.color,
        "RC" if identity.is_rookie else None,
        f"#{identity.card_number}" if identity.card_number else None,
        None if identity.is_raw else identity.grade,
    ]
    name = " ".join(str(p) for p in parts if p)
    return name or None


def finalize_identity(
    identity: CardIdentity,
    weights: Mapping[str, int] | None = None,
) -> CardIdentity:
    """Recompute confidence and canonical name for an identity from any source."""
    return identity.model_copy(update={
        "confidence": score_confidence(identity, weights),
        "canonical_name": compose_canonical_name(identity),
    })


def _run_rules(text: str) -> dict[str, Any]:
    fields: dict[str, Any] = {}
    for rule in EXTRACTION_RULES:
        value = rule.apply(text)
        if value is not None:
            fields[rule.field] = value
    return fields


def _release_player_words(fields: dict[str, Any], text: str) -> None:
    # Color and team are re-read with the player's name masked out.
    player = fields.get("player")
    if not player:
        return
    remainder = phrase_pattern(player).sub("\n", text)
    for field, rule in (("color", find_color), ("team", find_team)):
        if field not in fields:
            continue
        value = rule(remainder)
        if value is None:
            del fields[field]
        else:
            fields[field] = value


def extract_identity(
    text: str | None,
    hint: str | None = None,
    brand_table: Mapping[str, str] | None = None,
    weights: Mapping[str, int] | None = None,
) -> CardIdentity:
    """
    Best-effort CardIdentity from OCR text.

    ``hint`` is an auxiliary signal (e.g. a web page title) consulted only
    when no player name survives in the text itself. Empty or whitespace
    input yields the empty identity with grade "Raw" and confidence 0.
    """
    if not text or not text.strip():
        if not hint:
            return CardIdentity.empty()
        text = ""

    brands = brand_table if brand_table is not None else settings.BRAND_INFERENCE
    try:
        fields = _run_rules(text)
        if "player" not in fields:
            hinted = player_from_hint(hint)
            if hinted:
                fields["player"] = hinted
        _release_player_words(fields, text)
        fields["company"] = infer_company(fields.get("set_name"), text, brands)
        identity = finalize_identity(CardIdentity(**fields), weights)
    except Exception as exc:
        # Extraction must stay total: a broken rule degrades to no signal.
        logger.warning(
            "identity_extraction_failed",
            error=str(exc),
            catalog_version=CATALOG_VERSION,
            source="extractor",
        )
        return CardIdentity.empty()

    logger.debug(
        "identity_extracted",
        canonical_name=identity.canonical_name,
        confidence=identity.confidence,
        catalog_version=CATALOG_VERSION,
        source="extractor",
    )
    return identity
