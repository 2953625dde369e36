"""Background task that expires chunk handles and stale scratch archives."""

import asyncio
import time
from dataclasses import dataclass
from typing import Callable, Optional

from common.constants import (
    JANITOR_INTERVAL_SECONDS,
    JANITOR_MAX_AGE_SECONDS,
    RATE_LIMIT_IDLE_EVICTION_SECONDS,
)
from common.logging_config import get_logger
from patcher.chunk_registry import ChunkRegistry
from patcher.rate_limiter import RateLimiter
from patcher.scratch_storage import ScratchStorage

logger = get_logger(__name__)


@dataclass
class SweepResult:
    """Counts of what one sweep removed."""
    expired_handles: int = 0
    deleted_archives: int = 0
    evicted_clients: int = 0


class ExpiryJanitor:
    """
    Periodic sweep reclaiming expired state independent of downloads.

    Each tick expires old registry entries together with their archives,
    deletes any scratch archive older than max_age, and evicts idle rate
    limit buckets.
    """

    def __init__(
        self,
        registry: ChunkRegistry,
        scratch: ScratchStorage,
        rate_limiter: Optional[RateLimiter] = None,
        interval_seconds: float = JANITOR_INTERVAL_SECONDS,
        max_age_seconds: float = JANITOR_MAX_AGE_SECONDS,
        idle_eviction_seconds: float = RATE_LIMIT_IDLE_EVICTION_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        """
        Args:
            registry: Chunk registry to expire entries from
            scratch: Scratch storage holding built archives
            rate_limiter: Limiter whose idle buckets are evicted (optional)
            interval_seconds: Time between sweeps (default 1 minute)
            max_age_seconds: Age after which handles and archives expire (default 1 minute)
            idle_eviction_seconds: Idle time after which a full rate limit bucket is dropped
            clock: Wall-clock time source, comparable with file modification times
        """
        self.registry = registry
        self.scratch = scratch
        self.rate_limiter = rate_limiter
        self.interval_seconds = interval_seconds
        self.max_age_seconds = max_age_seconds
        self.idle_eviction_seconds = idle_eviction_seconds
        self._clock = clock
        self._running = False
        self._task = None

    async def start(self) -> None:
        """Start the background sweep task."""
        if self._running:
            logger.warning("Expiry janitor already running")
            return

        self._running = True
        self._task = asyncio.create_task(self._run())
        logger.info(
            f"Started expiry janitor (interval: {self.interval_seconds}s, max age: {self.max_age_seconds}s)"
        )

    async def stop(self) -> None:
        """Stop the background sweep task."""
        if not self._running:
            return

        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        logger.info("Stopped expiry janitor")

    async def _run(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self.interval_seconds)

                if not self._running:
                    break

                await asyncio.to_thread(self.sweep)

            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in expiry janitor: {e}", exc_info=True)

    def sweep(self, now: Optional[float] = None) -> SweepResult:
        """
        Run one sweep.

        Args:
            now: Wall-clock time to judge ages against (default: current time)

        Returns:
            What the sweep removed
        """
        if now is None:
            now = self._clock()
        result = SweepResult()

        for handle in self.registry.expired(self.max_age_seconds, now):
            if self.registry.remove(handle):
                result.expired_handles += 1
                logger.info(f"Auto-cleaning expired chunk: {handle}")
            for path in self.scratch.archives_for(handle):
                if ScratchStorage.delete(path):
                    result.deleted_archives += 1

        for path in self.scratch.stale_archives(self.max_age_seconds, now):
            if ScratchStorage.delete(path):
                result.deleted_archives += 1
                logger.info(f"Cleaning up old temp file: {path}")

        if self.rate_limiter is not None:
            result.evicted_clients = self.rate_limiter.evict_idle(self.idle_eviction_seconds)

        if result.expired_handles or result.deleted_archives or result.evicted_clients:
            logger.debug(f"Sweep complete: {result}")
        return result
