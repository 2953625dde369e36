"""Manages scratch zip archives on local disk: create, list, and delete."""

import glob
import os
import tempfile
import time
from pathlib import Path
from typing import BinaryIO, Iterator, List, Optional, Tuple, Union

from common.constants import STREAM_PIECE_SIZE_BYTES
from common.logging_config import get_logger
from patcher.exceptions import ScratchUnavailableError

logger = get_logger(__name__)

ARCHIVE_SUFFIX = ".zip"


class ScratchStorage:
    """
    Scratch directory holding one temporary archive per served download.

    Archive names embed their chunk handle: ``<handle>-<random>.zip``.
    """

    def __init__(self, directory: Union[str, Path]):
        self.directory = Path(directory)

    def ensure_directory(self) -> None:
        """Create the scratch directory if it does not exist."""
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ScratchUnavailableError(f"Failed to create scratch directory {self.directory}: {e}") from e

    def create_archive(self, handle: str) -> Tuple[Path, BinaryIO]:
        """
        Create a new, empty, uniquely named archive file for a handle.

        The file is returned open for reading and writing so the caller owns
        its contents even if the path is unlinked later.

        Raises:
            ScratchUnavailableError: If the directory or file cannot be created
        """
        self.ensure_directory()
        try:
            fd, name = tempfile.mkstemp(prefix=f"{handle}-", suffix=ARCHIVE_SUFFIX, dir=self.directory)
        except OSError as e:
            raise ScratchUnavailableError(f"Failed to create scratch archive for {handle}: {e}") from e
        return Path(name), os.fdopen(fd, 'w+b')

    def archives_for(self, handle: str) -> List[Path]:
        """List scratch archives built for a handle."""
        pattern = f"{glob.escape(handle)}-*{ARCHIVE_SUFFIX}"
        return sorted(self.directory.glob(pattern))

    def stale_archives(self, max_age: float, now: Optional[float] = None) -> List[Path]:
        """
        List archives whose modification time is more than max_age seconds old.

        A missing scratch directory yields an empty list.
        """
        if now is None:
            now = time.time()
        if not self.directory.is_dir():
            return []

        stale = []
        for dirpath, _dirnames, filenames in os.walk(self.directory):
            for filename in filenames:
                if not filename.endswith(ARCHIVE_SUFFIX):
                    continue
                path = Path(dirpath) / filename
                try:
                    modified = path.stat().st_mtime
                except OSError:
                    continue
                if now - modified > max_age:
                    stale.append(path)
        return stale

    @staticmethod
    def delete(path: Union[str, Path]) -> bool:
        """
        Delete an archive file.

        Returns:
            True if the file was deleted, False if it was already gone or could not be removed
        """
        try:
            Path(path).unlink()
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.warning(f"Failed to delete scratch archive {path}: {e}")
            return False

    @staticmethod
    def read_pieces(file: BinaryIO, piece_size: int = STREAM_PIECE_SIZE_BYTES) -> Iterator[bytes]:
        """Read an open archive from its current position in pieces."""
        while True:
            piece = file.read(piece_size)
            if not piece:
                break
            yield piece
