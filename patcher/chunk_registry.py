"""In-memory registry mapping chunk handles to the files they contain."""

import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence

from common.logging_config import get_logger
from patcher.chunk_planner import Chunk
from patcher.exceptions import ChunkNotFoundError

logger = get_logger(__name__)


@dataclass(frozen=True)
class RegistryEntry:
    """
    A registered chunk.

    Attributes:
        paths: Relative paths in archive order
        created_at: Wall-clock registration time (seconds since epoch)
    """
    paths: tuple
    created_at: float


def make_handle(timestamp_ns: int, index: int) -> str:
    """Build the public handle for the chunk at index of one planning call."""
    return f"{timestamp_ns}-{index}"


class ChunkRegistry:
    """
    Thread-safe registry of planned chunks.

    The lock only guards dictionary access; callers perform file I/O
    outside of it.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._entries: Dict[str, RegistryEntry] = {}
        self._lock = threading.Lock()
        self._clock = clock
        self._last_prefix = 0

    def register(self, chunks: Sequence[Chunk]) -> List[str]:
        """
        Store every chunk of one planning call under a fresh handle.

        All handles share one timestamp prefix and differ by index suffix.

        Args:
            chunks: Planned chunks in order

        Returns:
            Handles in the same order as chunks
        """
        if not chunks:
            return []

        created_at = self._clock()
        with self._lock:
            prefix = max(time.time_ns(), self._last_prefix + 1)
            self._last_prefix = prefix
            handles = []
            for index, chunk in enumerate(chunks):
                handle = make_handle(prefix, index)
                self._entries[handle] = RegistryEntry(paths=tuple(chunk.paths), created_at=created_at)
                handles.append(handle)

        logger.debug(f"Registered {len(handles)} chunk(s) with prefix {prefix}")
        return handles

    def resolve(self, handle: str) -> List[str]:
        """
        Look up the files of a chunk.

        Raises:
            ChunkNotFoundError: If the handle is unknown or already removed
        """
        with self._lock:
            entry = self._entries.get(handle)
        if entry is None:
            raise ChunkNotFoundError(f"Chunk {handle} not found")
        return list(entry.paths)

    def remove(self, handle: str) -> bool:
        """
        Remove a chunk. Removing an absent handle is a no-op.

        Returns:
            True if an entry was removed
        """
        with self._lock:
            return self._entries.pop(handle, None) is not None

    def expired(self, max_age: float, now: Optional[float] = None) -> List[str]:
        """Return handles registered more than max_age seconds before now."""
        if now is None:
            now = self._clock()
        with self._lock:
            return [
                handle for handle, entry in self._entries.items()
                if now - entry.created_at > max_age
            ]

    def __contains__(self, handle: str) -> bool:
        with self._lock:
            return handle in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
