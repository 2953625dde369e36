"""Keeps the local mirror of the upstream patch repository in sync."""

import asyncio
import subprocess
import threading
from pathlib import Path
from typing import Callable, List, Optional, Tuple, Union

from common.constants import RESYNC_DEBOUNCE_SECONDS
from common.logging_config import get_logger
from patcher.exceptions import SourceSyncError

logger = get_logger(__name__)


class SourceMirror:
    """
    Git working copy served as the synced root.

    sync() clones the repository when the root is absent and pulls otherwise.
    request_resync() runs a sync after a short debounce so bursts of webhook
    calls collapse into one pull.
    """

    def __init__(
        self,
        root: Union[str, Path],
        repo_url: str = "",
        debounce_seconds: float = RESYNC_DEBOUNCE_SECONDS,
        runner: Callable[..., subprocess.CompletedProcess] = subprocess.run,
    ):
        """
        Args:
            root: Directory holding the working copy
            repo_url: Upstream repository URL; empty disables syncing
            debounce_seconds: Delay between a resync request and the pull
            runner: subprocess.run compatible callable
        """
        self.root = Path(root)
        self.repo_url = repo_url
        self.debounce_seconds = debounce_seconds
        self._runner = runner
        self._sync_lock = threading.Lock()
        self._pending: Optional[asyncio.Task] = None

    @property
    def enabled(self) -> bool:
        return bool(self.repo_url)

    def _command(self) -> Tuple[str, List[str]]:
        if not self.root.exists():
            return "clone", ["git", "clone", self.repo_url, str(self.root)]
        return "pull", ["git", "-C", str(self.root), "pull"]

    def sync(self) -> None:
        """
        Clone or pull the upstream repository.

        Raises:
            SourceSyncError: If syncing is not configured or git fails
        """
        if not self.enabled:
            raise SourceSyncError("No upstream repository configured")

        with self._sync_lock:
            operation, command = self._command()
            logger.info(f"Running git {operation} for {self.repo_url} into {self.root}")

            try:
                result = self._runner(command, capture_output=True, text=True)
            except OSError as e:
                raise SourceSyncError(f"Failed to run git: {e}") from e

            if result.returncode != 0:
                raise SourceSyncError(
                    f"git {operation} failed (exit {result.returncode}): {(result.stderr or '').strip()}"
                )

            logger.info(f"git {operation} completed successfully")

    def request_resync(self) -> bool:
        """
        Schedule a debounced sync on the running event loop.

        Returns:
            False if a resync is already pending and this request was coalesced into it
        """
        if self._pending is not None and not self._pending.done():
            logger.debug("Resync already pending")
            return False

        self._pending = asyncio.get_running_loop().create_task(self._delayed_sync())
        return True

    async def _delayed_sync(self) -> None:
        await asyncio.sleep(self.debounce_seconds)
        try:
            await asyncio.to_thread(self.sync)
        except SourceSyncError as e:
            logger.error(f"Resync failed: {e}")

    async def stop(self) -> None:
        """Cancel a pending resync."""
        if self._pending is None:
            return

        self._pending.cancel()
        try:
            await self._pending
        except asyncio.CancelledError:
            pass
        self._pending = None
