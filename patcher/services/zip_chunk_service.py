"""Owns the chunk registry, rate limiter, and archive lifecycle components."""

import asyncio
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence, Union

from common.logging_config import get_logger
from patcher import chunk_planner
from patcher.archive_materializer import ArchiveMaterializer, OpenArchive
from patcher.chunk_registry import ChunkRegistry
from patcher.exceptions import RateLimitedError
from patcher.janitor import ExpiryJanitor
from patcher.rate_limiter import RateLimiter
from patcher.reclaimer import DeferredReclaimer
from patcher.scratch_storage import ScratchStorage

logger = get_logger(__name__)


@dataclass(frozen=True)
class PlannedChunk:
    """A registered chunk as reported to the client."""
    handle: str
    file_count: int
    total_size: int


class ZipChunkService:
    """
    Process-lifetime owner of all zip chunk state.

    Created once per application and injected into request handlers; start()
    and stop() tie the background janitor and pending reclaims to the
    application lifespan.
    """

    def __init__(
        self,
        root: Union[str, Path],
        scratch_dir: Union[str, Path],
        registry: Optional[ChunkRegistry] = None,
        rate_limiter: Optional[RateLimiter] = None,
        reclaimer: Optional[DeferredReclaimer] = None,
        janitor: Optional[ExpiryJanitor] = None,
    ):
        self.root = Path(root)
        self.scratch = ScratchStorage(scratch_dir)
        self.registry = registry or ChunkRegistry()
        self.rate_limiter = rate_limiter or RateLimiter()
        self.reclaimer = reclaimer or DeferredReclaimer()
        self.materializer = ArchiveMaterializer(self.registry, self.root, self.scratch, self.reclaimer)
        self.janitor = janitor or ExpiryJanitor(self.registry, self.scratch, self.rate_limiter)

    def check_rate_limit(self, identity: str) -> None:
        """
        Raises:
            RateLimitedError: If identity has no planning requests left
        """
        if not self.rate_limiter.allow(identity):
            raise RateLimitedError(
                f"Rate limit exceeded. Max {self.rate_limiter.capacity} requests "
                f"per {self.rate_limiter.period_seconds:g} seconds."
            )

    async def plan_chunks(self, files: Sequence[str], max_chunk_size: Optional[int] = None) -> List[PlannedChunk]:
        """
        Plan and register the chunks for a file list.

        Stat calls run in a worker thread; registration happens on the event loop.

        Args:
            files: Relative paths under the synced root
            max_chunk_size: Byte budget per chunk; non-positive or None uses the default

        Returns:
            One PlannedChunk per registered handle, in order
        """
        chunks = await asyncio.to_thread(chunk_planner.plan, files, self.root, max_chunk_size)
        handles = self.registry.register(chunks)

        logger.info(f"Planned {len(chunks)} chunk(s) for {len(files)} requested file(s)")

        return [
            PlannedChunk(handle=handle, file_count=len(chunk), total_size=chunk.total_size)
            for handle, chunk in zip(handles, chunks)
        ]

    async def open_chunk(self, handle: str) -> OpenArchive:
        """
        Build and open the archive for a handle.

        Raises:
            ChunkNotFoundError: If the handle is unknown or expired
        """
        return await self.materializer.serve(handle)

    async def start(self) -> None:
        await self.janitor.start()

    async def stop(self) -> None:
        await self.janitor.stop()
        self.reclaimer.stop()
