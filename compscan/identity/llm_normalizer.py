"""
CompScan - LLM Text Normalization (optional enrichment)

Fills identity fields the heuristic extractor could not find by asking a
text-only model to read the OCR text. Runs only when enabled, keyed, and the
heuristic identity has no player. Heuristic values always win; the model only
fills gaps.

SECURITY: only the OCR text is sent. Never image bytes, URLs or hints.
"""

from __future__ import annotations

import asyncio
from typing import Any, NamedTuple

import anthropic
import structlog

from compscan.config import settings
from compscan.identity.coerce import coerce_identity
from compscan.identity.extractor import finalize_identity
from compscan.models.identity import CardIdentity

logger = structlog.get_logger(__name__)

_PROMPT = (
    "The following text was read by OCR from a single trading card. "
    "Identify the card and return ONLY a JSON object with these keys, using "
    "null for anything you cannot determine: "
    '{"year": <integer|null>, "player": <string|null>, "team": <string|null>, '
    '"set": <string|null>, "subset": <string|null>, "company": <string|null>, '
    '"card_number": <string|null>, "parallel": <string|null>, '
    '"is_rookie": <boolean|null>, "card_type": <string|null>, '
    '"grade": <string|null>} '
    "No other text.\n\nOCR text:\n"
)

_MERGE_FIELDS = (
    "year", "player", "team", "set_name", "subset", "company", "card_number",
    "parallel", "color", "card_type",
)


class EnrichmentResult(NamedTuple):
    identity: CardIdentity
    enriched: bool
    reason: str


def merge_identities(base: CardIdentity, extra: CardIdentity) -> CardIdentity:
    """Fill empty fields of ``base`` from ``extra``; populated fields are kept."""
    update: dict[str, Any] = {}
    for field in _MERGE_FIELDS:
        if getattr(base, field) in (None, "") and getattr(extra, field) not in (None, ""):
            update[field] = getattr(extra, field)
    if not base.is_rookie and extra.is_rookie:
        update["is_rookie"] = True
    if base.is_raw and not extra.is_raw:
        update["grade"] = extra.grade
    if not update:
        return base
    return finalize_identity(base.model_copy(update=update))


def should_enrich(identity: CardIdentity) -> str | None:
    """Reason enrichment is skipped, or None when it should run."""
    if not settings.ENABLE_LLM_NORMALIZATION:
        return "disabled"
    if not settings.ANTHROPIC_API_KEY:
        return "no_api_key"
    if identity.player:
        return "player_present"
    return None


async def enrich_identity(
    text: str,
    identity: CardIdentity,
    client: Any = None,
) -> EnrichmentResult:
    """
    Ask the model to normalize ``text`` and merge its answer into ``identity``.

    Never raises: any API or parse failure returns the heuristic identity with
    ``enriched=False`` and the failure as the reason. A reply slower than
    LLM_TIMEOUT_SECONDS is abandoned with reason "timeout".
    """
    skip = should_enrich(identity)
    if skip is not None:
        return EnrichmentResult(identity, False, skip)
    if not text or not text.strip():
        return EnrichmentResult(identity, False, "empty_text")

    try:
        if client is None:
            client = anthropic.AsyncAnthropic(api_key=settings.ANTHROPIC_API_KEY)
        response = await asyncio.wait_for(
            client.messages.create(
                model=settings.LLM_MODEL_ID,
                max_tokens=settings.LLM_MAX_TOKENS,
                messages=[{"role": "user", "content": _PROMPT + text.strip()}],
                timeout=settings.LLM_TIMEOUT_SECONDS,
            ),
            timeout=settings.LLM_TIMEOUT_SECONDS,
        )
        raw = response.content[0].text
    except asyncio.TimeoutError:
        logger.warning(
            "llm_normalization_timeout",
            timeout_seconds=settings.LLM_TIMEOUT_SECONDS,
            source="llm_normalizer",
        )
        return EnrichmentResult(identity, False, "timeout")
    except Exception as e:
        logger.error("llm_normalization_failed", error=str(e), source="llm_normalizer")
        return EnrichmentResult(identity, False, "api_error")

    coerced = coerce_identity(raw)
    if not coerced.valid or coerced.identity.is_empty:
        logger.warning("llm_normalization_unusable", source="llm_normalizer")
        return EnrichmentResult(identity, False, "unusable_reply")

    merged = merge_identities(identity, coerced.identity)
    logger.info(
        "llm_normalization_applied",
        player=merged.player,
        confidence_before=identity.confidence,
        confidence_after=merged.confidence,
        source="llm_normalizer",
    )
    return EnrichmentResult(merged, True, "ok")
