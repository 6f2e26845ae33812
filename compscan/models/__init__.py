"""
Models package - export all pydantic models.
"""

from compscan.models.identity import (
    FALLBACK_QUERY,
    RAW_GRADE,
    CardIdentity,
    CardType,
    QuerySet,
)
from compscan.models.listing import (
    AttemptOutcome,
    CompsResult,
    CompStats,
    Listing,
    QueryAttempt,
)
from compscan.models.scan import (
    CacheStatus,
    IdentitySource,
    RateLimitStatus,
    ScanResult,
    ScanStatus,
    UsageStats,
)

__all__ = [
    "FALLBACK_QUERY",
    "RAW_GRADE",
    "AttemptOutcome",
    "CacheStatus",
    "CardIdentity",
    "CardType",
    "CompsResult",
    "CompStats",
    "IdentitySource",
    "Listing",
    "QueryAttempt",
    "QuerySet",
    "RateLimitStatus",
    "ScanResult",
    "ScanStatus",
    "UsageStats",
]
