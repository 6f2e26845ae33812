"""
CompScan - Cache Sweeper

Periodically evicts expired entries from the shared ResultCache so entries
that are never read again do not accumulate. Lazy eviction on read still
applies in between sweeps.
"""

from __future__ import annotations

import asyncio

import structlog

from compscan.config import settings
from compscan.utils.cache import ResultCache

logger = structlog.get_logger(__name__)


class CacheSweeper:
    """
    Async loop calling ``cache.sweep()`` every ``interval_seconds``.

    Usage:
        sweeper = CacheSweeper(cache)
        task = asyncio.create_task(sweeper.run())
        ...
        await sweeper.shutdown()
    """

    def __init__(self, cache: ResultCache, interval_seconds: float | None = None) -> None:
        self.cache = cache
        self.interval_seconds = (
            interval_seconds if interval_seconds is not None
            else settings.CACHE_SWEEP_INTERVAL_SECONDS
        )
        self._shutdown_event = asyncio.Event()
        self.sweeps = 0

    async def shutdown(self) -> None:
        """Signal graceful shutdown to the sweep loop."""
        logger.info("cache_sweeper_shutdown_requested")
        self._shutdown_event.set()

    def sweep_once(self) -> int:
        removed = self.cache.sweep()
        self.sweeps += 1
        logger.debug("cache_sweep_complete", removed=removed, sweeps=self.sweeps)
        return removed

    async def run(self) -> None:
        """Sweep until shutdown is signalled. Sweep errors are logged, not fatal."""
        logger.info("cache_sweeper_started", interval_seconds=self.interval_seconds)
        try:
            while not self._shutdown_event.is_set():
                try:
                    await asyncio.wait_for(
                        self._shutdown_event.wait(),
                        timeout=self.interval_seconds,
                    )
                except asyncio.TimeoutError:
                    # Expected: no shutdown signal within the interval
                    try:
                        self.sweep_once()
                    except Exception as e:
                        logger.error(
                            "cache_sweep_failed",
                            error=str(e),
                            error_type=type(e).__name__,
                        )
        except asyncio.CancelledError:
            logger.info("cache_sweeper_cancelled")
            raise
        finally:
            logger.info("cache_sweeper_stopped")
