"""
CompScan - Vision JSON Coercion

Validates the JSON identity emitted by a generative-vision (or LLM) model
against the CardIdentity schema. Malformed payloads never raise: they log a
warning and coerce to the empty identity with grade "Raw".
"""

from __future__ import annotations

import json
import re
from typing import Any, Mapping, NamedTuple

import structlog
from pydantic import ValidationError

from compscan.identity.extractor import finalize_identity
from compscan.models.identity import CardIdentity

logger = structlog.get_logger(__name__)

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


class CoercedIdentity(NamedTuple):
    identity: CardIdentity
    alt_queries: list[str]
    valid: bool


def _load(raw: str | Mapping[str, Any]) -> dict[str, Any]:
    if isinstance(raw, Mapping):
        return dict(raw)
    parsed = json.loads(_FENCE_RE.sub("", raw.strip()))
    if not isinstance(parsed, dict):
        raise ValueError(f"expected a JSON object, got {type(parsed).__name__}")
    return parsed


def _alt_queries(value: Any) -> list[str]:
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(q, str) for q in value):
        raise ValueError("alt_queries must be a list of strings")
    return [" ".join(q.split()) for q in value if q.strip()]


def coerce_identity(
    raw: str | Mapping[str, Any] | None,
    weights: Mapping[str, int] | None = None,
) -> CoercedIdentity:
    """
    Parse and validate a vision identity payload.

    Accepts a JSON string (optionally wrapped in a markdown code fence) or an
    already-decoded mapping. Confidence and canonical name are recomputed so
    every identity source is scored the same way; a model-supplied
    canonical_name is kept when present.
    """
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        return CoercedIdentity(CardIdentity.empty(), [], False)

    try:
        payload = _load(raw)
        alt_queries = _alt_queries(payload.pop("alt_queries", None))
        supplied_name = payload.pop("canonical_name", None)
        payload.pop("confidence", None)
        identity = finalize_identity(CardIdentity.model_validate(payload), weights)
    except (ValueError, TypeError, ValidationError) as exc:
        # json.JSONDecodeError is a ValueError
        logger.warning("vision_identity_invalid", error=str(exc), source="coerce")
        return CoercedIdentity(CardIdentity.empty(), [], False)

    if isinstance(supplied_name, str) and supplied_name.strip():
        identity = identity.model_copy(update={"canonical_name": " ".join(supplied_name.split())})
    return CoercedIdentity(identity, alt_queries, True)
