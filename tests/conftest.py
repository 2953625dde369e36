"""Shared pytest fixtures for all tests."""

import pytest
from pathlib import Path

def _make_file(root: Path, relative_path: str, size: int = 0, content: bytes = None) -> Path:
    """
    Create a file under root.

    Args:
        root: Directory the path is relative to
        relative_path: Path of the new file
        size: Size for a sparse file when no content is given
        content: Exact file contents

    Returns:
        Path of the created file
    """
    path = root / relative_path
    path.parent.mkdir(parents=True, exist_ok=True)
    if content is not None:
        path.write_bytes(content)
    else:
        with open(path, 'wb') as f:
            f.truncate(size)
    return path


@pytest.fixture
def mirror_root(tmp_path):
    """
    Create a synced root with a few small patch files.

    Returns:
        Path to the root directory
    """
    root = tmp_path / 'mirror'
    root.mkdir()
    _make_file(root, 'eqgame.exe', content=b'MZ' + b'\x00' * 510)
    _make_file(root, 'spells_us.txt', content=b'1^Blast of Cold^\n2^Minor Healing^\n')
    _make_file(root, 'maps/qeynos.txt', content=b'L 1, 2, 3, 4, 5, 6, 0, 0, 0\n')
    (root / 'resources').mkdir()
    return root


@pytest.fixture
def scratch_dir(tmp_path):
    """
    Path for scratch archives (not created up front).
    """
    return tmp_path / 'scratch'


@pytest.fixture
def make_file():
    """
    Factory fixture creating files under a root.

    Returns:
        Callable (root, relative_path, size=0, content=None) -> Path
    """
    return _make_file
