"""Builds zip archives for registered chunks and streams them to clients."""

import asyncio
import functools
import os
import shutil
import threading
import zipfile
from pathlib import Path
from typing import AsyncIterator, BinaryIO, Callable, Iterable, Optional, Union

from starlette.concurrency import iterate_in_threadpool

from common.constants import STREAM_PIECE_SIZE_BYTES
from common.logging_config import get_logger
from patcher.chunk_planner import resolve_under_root
from patcher.chunk_registry import ChunkRegistry
from patcher.reclaimer import DeferredReclaimer
from patcher.scratch_storage import ScratchStorage

logger = get_logger(__name__)


def write_archive(target: Union[str, Path, BinaryIO], root: Union[str, Path], paths: Iterable[str]) -> int:
    """
    Write the given files into a zip archive, one entry per relative path.

    Files that are missing, unreadable, or no longer regular files are
    skipped; the archive is built from whatever remains.

    Args:
        target: Destination zip file, as a path (truncated if it exists) or a writable file object
        root: Synced root directory the paths are relative to
        paths: Relative paths in archive order

    Returns:
        Number of entries written
    """
    root_path = Path(root).resolve()
    written = 0

    with zipfile.ZipFile(target, 'w', compression=zipfile.ZIP_DEFLATED, allowZip64=True) as archive:
        for relative_path in paths:
            full_path = resolve_under_root(root_path, relative_path)
            if full_path is None:
                logger.warning(f"Skipping {relative_path}: not a path under the synced root")
                continue

            try:
                source = open(full_path, 'rb')
            except OSError as e:
                logger.warning(f"Skipping {relative_path}: {e}")
                continue

            with source:
                try:
                    info = zipfile.ZipInfo.from_file(full_path, arcname=relative_path)
                    info.compress_type = zipfile.ZIP_DEFLATED
                    force_zip64 = info.file_size > zipfile.ZIP64_LIMIT
                    with archive.open(info, 'w', force_zip64=force_zip64) as entry:
                        shutil.copyfileobj(source, entry, STREAM_PIECE_SIZE_BYTES)
                except OSError as e:
                    logger.warning(f"Failed while archiving {relative_path}: {e}")
                    continue
            written += 1

    return written


class OpenArchive:
    """
    A built archive held open for streaming.

    The open file stays readable after its path is unlinked, so expiring the
    handle mid-download cannot truncate the response. close() releases the
    file and runs on_close exactly once.
    """

    def __init__(
        self,
        handle: str,
        path: Path,
        file: BinaryIO,
        piece_size: int = STREAM_PIECE_SIZE_BYTES,
        on_close: Optional[Callable[["OpenArchive"], None]] = None,
    ):
        self.handle = handle
        self.path = path
        self.file = file
        self.piece_size = piece_size
        self.size = os.fstat(file.fileno()).st_size
        self._on_close = on_close
        self._closed = False
        self._lock = threading.Lock()

    @property
    def closed(self) -> bool:
        return self._closed

    async def iter_bytes(self) -> AsyncIterator[bytes]:
        """Stream the archive from the start, closing it when the stream ends."""
        bytes_streamed = 0
        logger.info(f"Downloading {self.handle} ({self.path.name}, {self.size} bytes)")
        try:
            async for piece in iterate_in_threadpool(ScratchStorage.read_pieces(self.file, self.piece_size)):
                bytes_streamed += len(piece)
                yield piece
        finally:
            logger.info(f"Stream for {self.handle} ended after {bytes_streamed} bytes")
            self.close()

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True

        self.file.close()
        if self._on_close is not None:
            self._on_close(self)


class ArchiveMaterializer:
    """
    Materializes chunk archives on scratch storage.

    Each serve() builds a fresh archive; the archive and its registry entry
    are handed to the reclaimer once the archive is closed.
    """

    def __init__(
        self,
        registry: ChunkRegistry,
        root: Union[str, Path],
        scratch: ScratchStorage,
        reclaimer: DeferredReclaimer,
        piece_size: int = STREAM_PIECE_SIZE_BYTES,
    ):
        self.registry = registry
        self.root = Path(root)
        self.scratch = scratch
        self.reclaimer = reclaimer
        self.piece_size = piece_size

    def build(self, handle: str) -> OpenArchive:
        """
        Build the archive for a handle.

        Returns:
            The finished archive, open and positioned at its start

        Raises:
            ChunkNotFoundError: If the handle is not registered
            ScratchUnavailableError: If the scratch archive cannot be created
        """
        paths = self.registry.resolve(handle)
        archive_path, archive_file = self.scratch.create_archive(handle)

        try:
            written = write_archive(archive_file, self.root, paths)
            archive_file.seek(0)
        except Exception:
            archive_file.close()
            ScratchStorage.delete(archive_path)
            raise

        logger.info(f"Built archive {archive_path.name} ({written}/{len(paths)} files)")
        return OpenArchive(handle, archive_path, archive_file, self.piece_size, on_close=self._schedule_reclaim)

    async def serve(self, handle: str) -> OpenArchive:
        """
        Build the archive for a handle off the event loop.

        The caller owns the returned archive and must close it, directly or
        by exhausting iter_bytes().

        Raises:
            ChunkNotFoundError: If the handle is not registered
        """
        self.registry.resolve(handle)
        build = asyncio.ensure_future(asyncio.to_thread(self.build, handle))
        try:
            return await asyncio.shield(build)
        except asyncio.CancelledError:
            build.add_done_callback(_close_abandoned)
            raise

    def _schedule_reclaim(self, archive: OpenArchive) -> None:
        self.reclaimer.schedule(archive.path, functools.partial(self._release, archive.handle))

    def _release(self, handle: str) -> None:
        if self.registry.remove(handle):
            logger.info(f"Released chunk {handle}")


def _close_abandoned(build: "asyncio.Future[OpenArchive]") -> None:
    # the requester went away while the archive was being built
    if not build.cancelled() and build.exception() is None:
        build.result().close()
