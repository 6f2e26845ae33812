"""
CompScan - Error Taxonomy

Only the marketplace calls can fail. Extraction and query building are total.

- UpstreamRateLimited: quota exhausted upstream; carries a retry-after hint and
  is propagated to the caller, never retried inside the aggregator loop.
- UpstreamTransientFailure: network / 5xx failure for one query; the
  aggregator moves on to the next alternative.
- ConfigurationMissing: required credentials absent; fatal, never retried.

"No signal" from the extractor is not an error: it is the empty CardIdentity.
"""

from __future__ import annotations


class CompScanError(Exception):
    """Base class for all CompScan errors."""


class UpstreamRateLimited(CompScanError):
    """The marketplace (or our own cooldown) refused the call for now."""

    def __init__(self, retry_after_ms: int, message: str = "marketplace rate limited") -> None:
        super().__init__(f"{message} (retry after {retry_after_ms} ms)")
        self.retry_after_ms = max(0, int(retry_after_ms))


class UpstreamTransientFailure(CompScanError):
    """A single marketplace query failed; safe to try the next query."""

    def __init__(self, query: str, reason: str) -> None:
        super().__init__(f"marketplace query failed for {query!r}: {reason}")
        self.query = query
        self.reason = reason


class ConfigurationMissing(CompScanError):
    """Required configuration (usually credentials) is not set."""

    def __init__(self, *setting_names: str) -> None:
        names = ", ".join(setting_names) or "unknown"
        super().__init__(f"missing configuration: {names}")
        self.setting_names = setting_names
