"""One-shot delayed reclamation of served scratch archives."""

import asyncio
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional

from common.constants import RECLAIM_DELAY_SECONDS
from common.logging_config import get_logger
from patcher.scratch_storage import ScratchStorage

logger = get_logger(__name__)


@dataclass(eq=False)
class ReclaimItem:
    """
    A scheduled reclamation.

    Attributes:
        path: Scratch archive to delete
        on_complete: Callback run after deletion (removes the registry entry)
        due_at: Clock time at which the item becomes due
    """
    path: Path
    on_complete: Optional[Callable[[], None]]
    due_at: float
    timer: Optional[asyncio.TimerHandle] = None


class DeferredReclaimer:
    """
    Deletes each served archive a fixed delay after its stream finished.

    Items are cancellable work items owned by the reclaimer. When scheduled
    from inside a running event loop they fire on their own; reclaim_due()
    runs due items explicitly and stop() reclaims everything still pending.
    """

    def __init__(self, delay: float = RECLAIM_DELAY_SECONDS, clock: Callable[[], float] = time.monotonic):
        """
        Args:
            delay: Seconds between end of stream and reclamation (default 3 minutes)
            clock: Monotonic time source used for due times
        """
        self.delay = delay
        self._clock = clock
        self._pending: List[ReclaimItem] = []
        self._lock = threading.Lock()

    def schedule(self, path: Path, on_complete: Optional[Callable[[], None]] = None) -> ReclaimItem:
        """
        Arrange for path to be deleted and on_complete to run after the delay.

        Never blocks; safe to call with or without a running event loop.
        """
        item = ReclaimItem(path=Path(path), on_complete=on_complete, due_at=self._clock() + self.delay)

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        with self._lock:
            self._pending.append(item)
            if loop is not None:
                item.timer = loop.call_later(self.delay, self._fire, loop, item)

        logger.debug(f"Scheduled reclamation of {item.path.name} in {self.delay}s")
        return item

    def _fire(self, loop: asyncio.AbstractEventLoop, item: ReclaimItem) -> None:
        loop.run_in_executor(None, self._reclaim, item)

    def _take(self, item: ReclaimItem) -> bool:
        with self._lock:
            if item not in self._pending:
                return False
            self._pending.remove(item)
        return True

    def _reclaim(self, item: ReclaimItem) -> None:
        if not self._take(item):
            return

        if ScratchStorage.delete(item.path):
            logger.info(f"Deleted served archive {item.path.name}")

        if item.on_complete is not None:
            try:
                item.on_complete()
            except Exception as e:
                logger.error(f"Reclaim callback failed for {item.path.name}: {e}", exc_info=True)

    def reclaim_due(self, now: Optional[float] = None) -> int:
        """
        Reclaim every pending item whose due time has passed.

        Returns:
            Number of items reclaimed
        """
        if now is None:
            now = self._clock()
        with self._lock:
            due = [item for item in self._pending if item.due_at <= now]

        for item in due:
            if item.timer is not None:
                item.timer.cancel()
            self._reclaim(item)
        return len(due)

    def stop(self) -> int:
        """
        Cancel all timers and reclaim every pending item immediately.

        Returns:
            Number of items reclaimed
        """
        with self._lock:
            pending = list(self._pending)

        for item in pending:
            if item.timer is not None:
                item.timer.cancel()
            self._reclaim(item)

        if pending:
            logger.info(f"Reclaimed {len(pending)} pending archive(s) on shutdown")
        return len(pending)

    @property
    def pending(self) -> int:
        with self._lock:
            return len(self._pending)
