"""
CompScan - In-Memory Result Cache (Section 4.5)

Two TTL namespaces:
- queries:      marketplace results keyed by normalized query (5 minutes)
- fingerprints: hashes of recently seen OCR text (30 minutes), used to
                suppress duplicate upstream calls for the same capture

Expired entries are evicted lazily on read and by a periodic sweep (see
compscan.pipeline.scheduler.CacheSweeper). Process-wide, not persisted.
"""

from __future__ import annotations

import threading
import time
from typing import Any, Callable, NamedTuple

import structlog

from compscan.config import settings
from compscan.models.scan import CacheStatus

logger = structlog.get_logger(__name__)


class _Entry(NamedTuple):
    value: Any
    stored_at: float
    ttl: float


class TTLCache:
    """Thread-safe key/value store where every entry carries its own TTL (seconds)."""

    def __init__(
        self,
        default_ttl_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.default_ttl_seconds = default_ttl_seconds
        self._clock = clock
        self._entries: dict[str, _Entry] = {}
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    @staticmethod
    def _expired(entry: _Entry, now: float) -> bool:
        return now - entry.stored_at > entry.ttl

    def get(self, key: str) -> Any | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.misses += 1
                return None
            if self._expired(entry, self._clock()):
                del self._entries[key]
                self.misses += 1
                return None
            self.hits += 1
            return entry.value

    def __contains__(self, key: str) -> bool:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return False
            if self._expired(entry, self._clock()):
                del self._entries[key]
                return False
            return True

    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        with self._lock:
            self._entries[key] = _Entry(
                value, self._clock(), ttl if ttl is not None else self.default_ttl_seconds,
            )

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def sweep(self) -> int:
        """Drop every expired entry; returns how many were removed."""
        with self._lock:
            now = self._clock()
            expired = [k for k, e in self._entries.items() if self._expired(e, now)]
            for key in expired:
                del self._entries[key]
            return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self.hits = 0
            self.misses = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


def normalize_query_key(query: str) -> str:
    """Lowercased, whitespace-collapsed query text."""
    return " ".join(query.lower().split())


def fingerprint(text: str) -> str:
    """
    32-bit rolling hash (h * 31 + c) of lowercased, whitespace-collapsed text.

    Computed over UTF-16 code units and rendered as a signed decimal string,
    so identical captures hash identically across clients.
    """
    normalized = " ".join(text.lower().split())
    data = normalized.encode("utf-16-le")
    h = 0
    for i in range(0, len(data), 2):
        unit = data[i] | (data[i + 1] << 8)
        h = (h * 31 + unit) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return str(h)


class ResultCache:
    """Query results plus seen-text fingerprints, each with its own TTL."""

    def __init__(
        self,
        query_ttl_seconds: float | None = None,
        fingerprint_ttl_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.queries = TTLCache(
            query_ttl_seconds if query_ttl_seconds is not None
            else settings.QUERY_CACHE_TTL_SECONDS,
            clock,
        )
        self.fingerprints = TTLCache(
            fingerprint_ttl_seconds if fingerprint_ttl_seconds is not None
            else settings.FINGERPRINT_TTL_SECONDS,
            clock,
        )

    def get_query(self, key: str) -> Any | None:
        return self.queries.get(normalize_query_key(key))

    def set_query(self, key: str, value: Any, ttl: float | None = None) -> None:
        self.queries.set(normalize_query_key(key), value, ttl)

    def has_seen_text(self, text: str) -> bool:
        return fingerprint(text) in self.fingerprints

    def remember_text(self, text: str, ttl: float | None = None) -> None:
        self.fingerprints.set(fingerprint(text), True, ttl)

    def forget_text(self, text: str) -> None:
        self.fingerprints.delete(fingerprint(text))

    def sweep(self) -> int:
        removed = self.queries.sweep() + self.fingerprints.sweep()
        if removed:
            logger.debug("cache_swept", removed=removed, source="cache")
        return removed

    def clear(self) -> None:
        self.queries.clear()
        self.fingerprints.clear()

    def stats(self) -> CacheStatus:
        return CacheStatus(
            query_entries=len(self.queries),
            fingerprint_entries=len(self.fingerprints),
            hits=self.queries.hits,
            misses=self.queries.misses,
        )
