"""
Identity package - OCR/vision text to CardIdentity.
"""

from compscan.identity.coerce import CoercedIdentity, coerce_identity
from compscan.identity.extractor import extract_identity, finalize_identity, score_confidence

__all__ = [
    "CoercedIdentity",
    "coerce_identity",
    "extract_identity",
    "finalize_identity",
    "score_confidence",
]
