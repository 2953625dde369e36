"""Partitioning of requested files into size-bounded chunks."""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Optional, Union

from common.constants import DEFAULT_MAX_CHUNK_SIZE_BYTES
from common.logging_config import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class FileEntry:
    """
    A requested file that exists under the synced root.

    Attributes:
        path: Path relative to the synced root, as requested by the client
        size: File size in bytes
    """
    path: str
    size: int


@dataclass
class Chunk:
    """Ordered group of files packaged together as one archive."""
    entries: List[FileEntry] = field(default_factory=list)

    @property
    def total_size(self) -> int:
        return sum(entry.size for entry in self.entries)

    @property
    def paths(self) -> List[str]:
        return [entry.path for entry in self.entries]

    def __len__(self) -> int:
        return len(self.entries)


def resolve_under_root(root: Path, relative_path: str) -> Optional[Path]:
    """
    Resolve a client-supplied path against the synced root.

    Args:
        root: Synced root directory (already resolved)
        relative_path: Path relative to root

    Returns:
        Absolute path, or None if the path escapes the root or cannot be resolved
    """
    try:
        candidate = (root / relative_path).resolve()
        candidate.relative_to(root)
    except (OSError, ValueError):
        # ValueError also covers embedded NUL bytes
        return None
    return candidate


def stat_entries(paths: Iterable[str], root: Union[str, Path]) -> List[FileEntry]:
    """
    Annotate requested paths with their sizes.

    Missing paths, directories, and paths outside the root are dropped
    without error.

    Args:
        paths: Relative paths in request order
        root: Synced root directory

    Returns:
        FileEntry list in request order
    """
    root_path = Path(root).resolve()
    entries = []
    skipped = 0

    for relative_path in paths:
        full_path = resolve_under_root(root_path, relative_path)
        if full_path is None:
            skipped += 1
            continue
        try:
            info = full_path.stat()
        except OSError:
            skipped += 1
            continue
        if not full_path.is_file():
            skipped += 1
            continue
        entries.append(FileEntry(path=relative_path, size=info.st_size))

    if skipped:
        logger.debug(f"Skipped {skipped} missing or non-file path(s) while planning")

    return entries


def chunk_by_size(entries: Iterable[FileEntry], max_size: int) -> List[Chunk]:
    """
    Group entries greedily in input order.

    The current chunk is closed when adding the next entry would push it past
    max_size. An entry larger than max_size on its own becomes a singleton chunk.

    Args:
        entries: Size-annotated entries in order
        max_size: Byte budget per chunk (must be positive)

    Returns:
        Ordered list of non-empty chunks
    """
    chunks: List[Chunk] = []
    current = Chunk()
    current_size = 0

    for entry in entries:
        if current_size + entry.size > max_size and current.entries:
            chunks.append(current)
            current = Chunk()
            current_size = 0
        current.entries.append(entry)
        current_size += entry.size

    if current.entries:
        chunks.append(current)

    return chunks


def plan(
    paths: Iterable[str],
    root: Union[str, Path],
    budget: Optional[int] = None,
) -> List[Chunk]:
    """
    Plan the chunks for a download request.

    Args:
        paths: Relative paths requested by the client
        root: Synced root directory
        budget: Maximum uncompressed bytes per chunk; non-positive or None uses the default

    Returns:
        Ordered chunks covering every existing requested file exactly once
    """
    if budget is None or budget <= 0:
        budget = DEFAULT_MAX_CHUNK_SIZE_BYTES

    return chunk_by_size(stat_entries(paths, root), budget)
