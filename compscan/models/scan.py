"""
CompScan - Scan Result & Usage Models
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field

from compscan.models.identity import CardIdentity, QuerySet
from compscan.models.listing import CompsResult


class ScanStatus(str, Enum):
    """Outcome of the comparable-retrieval half of a scan."""
    OK = "ok"
    DUPLICATE = "duplicate"         # same capture seen recently; cache only
    RETRY_LATER = "retry_later"     # end-to-end timeout expired
    RATE_LIMITED = "rate_limited"   # upstream quota exhausted
    SKIPPED = "skipped"             # caller asked for identity only


class IdentitySource(str, Enum):
    HEURISTIC = "heuristic"
    VISION = "vision"
    LLM = "llm"


class ScanResult(BaseModel):
    """Identity, queries and (when available) comparables for one capture."""

    identity: CardIdentity
    queries: QuerySet
    comps: CompsResult | None = None
    status: ScanStatus = ScanStatus.OK
    retry_after_ms: int | None = None
    identity_source: IdentitySource = IdentitySource.HEURISTIC


class RateLimitStatus(BaseModel):
    current_requests: int
    max_requests: int
    window_ms: int
    next_available_ms: int


class CacheStatus(BaseModel):
    query_entries: int
    fingerprint_entries: int
    hits: int
    misses: int


class UsageStats(BaseModel):
    rate_limit: RateLimitStatus
    cache: CacheStatus
    recommendations: list[str] = Field(default_factory=list)
