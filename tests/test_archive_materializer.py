"""Tests for building and streaming chunk archives."""

import io
import os
import sys
import time
import zipfile

import pytest

from patcher.archive_materializer import ArchiveMaterializer, write_archive
from patcher.chunk_planner import plan
from patcher.chunk_registry import ChunkRegistry
from patcher.exceptions import ChunkNotFoundError, ScratchUnavailableError
from patcher.janitor import ExpiryJanitor
from patcher.reclaimer import DeferredReclaimer
from patcher.scratch_storage import ScratchStorage


class FakeClock:
    def __init__(self, now=100.0):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def registry():
    return ChunkRegistry()


@pytest.fixture
def reclaimer():
    return DeferredReclaimer(delay=180, clock=FakeClock())


@pytest.fixture
def materializer(registry, mirror_root, scratch_dir, reclaimer):
    return ArchiveMaterializer(registry, mirror_root, ScratchStorage(scratch_dir), reclaimer)


async def _collect(stream):
    data = b''
    async for piece in stream:
        data += piece
    return data


class TestWriteArchive:
    """Test zip construction."""

    def test_entries_named_by_relative_path(self, mirror_root, tmp_path):
        archive_path = tmp_path / 'out.zip'

        written = write_archive(archive_path, mirror_root, ['spells_us.txt', 'maps/qeynos.txt'])

        assert written == 2
        with zipfile.ZipFile(archive_path) as archive:
            assert archive.namelist() == ['spells_us.txt', 'maps/qeynos.txt']
            assert archive.read('maps/qeynos.txt') == (mirror_root / 'maps/qeynos.txt').read_bytes()
            assert archive.testzip() is None

    def test_missing_file_is_skipped(self, mirror_root, tmp_path):
        archive_path = tmp_path / 'out.zip'

        written = write_archive(archive_path, mirror_root, ['gone.txt', 'eqgame.exe', 'resources'])

        assert written == 1
        with zipfile.ZipFile(archive_path) as archive:
            assert archive.namelist() == ['eqgame.exe']

    @pytest.mark.skipif(sys.platform == 'win32' or os.geteuid() == 0, reason="permissions not enforced")
    def test_unreadable_file_is_skipped(self, mirror_root, tmp_path):
        locked = mirror_root / 'spells_us.txt'
        locked.chmod(0)
        archive_path = tmp_path / 'out.zip'
        try:
            written = write_archive(archive_path, mirror_root, ['spells_us.txt', 'eqgame.exe'])
        finally:
            locked.chmod(0o644)

        assert written == 1
        with zipfile.ZipFile(archive_path) as archive:
            assert archive.namelist() == ['eqgame.exe']

    def test_unresolvable_path_is_skipped(self, mirror_root, tmp_path):
        archive_path = tmp_path / 'out.zip'

        assert write_archive(archive_path, mirror_root, ['a\x00b', 'eqgame.exe']) == 1
        with zipfile.ZipFile(archive_path) as archive:
            assert archive.namelist() == ['eqgame.exe']

    def test_empty_archive_is_still_valid(self, mirror_root, tmp_path):
        archive_path = tmp_path / 'out.zip'

        assert write_archive(archive_path, mirror_root, ['gone.txt']) == 0
        with zipfile.ZipFile(archive_path) as archive:
            assert archive.namelist() == []


class TestMaterializer:
    """Test serving registered handles."""

    def test_build_creates_archive_named_after_handle(self, materializer, registry, mirror_root, scratch_dir):
        handle = registry.register(plan(['eqgame.exe', 'spells_us.txt'], mirror_root))[0]

        archive = materializer.build(handle)
        archive.close()

        assert archive.path.parent == scratch_dir
        assert archive.path.name.startswith(f'{handle}-')
        assert archive.path.suffix == '.zip'
        assert archive.size == archive.path.stat().st_size
        with zipfile.ZipFile(archive.path) as built:
            assert built.namelist() == ['eqgame.exe', 'spells_us.txt']

    def test_build_unknown_handle_raises(self, materializer, scratch_dir):
        with pytest.raises(ChunkNotFoundError):
            materializer.build('1-0')
        assert not scratch_dir.exists()

    def test_build_fails_when_scratch_unavailable(self, registry, mirror_root, tmp_path, reclaimer):
        blocker = tmp_path / 'blocker'
        blocker.write_text('not a directory')
        materializer = ArchiveMaterializer(registry, mirror_root, ScratchStorage(blocker / 'scratch'), reclaimer)
        handle = registry.register(plan(['eqgame.exe'], mirror_root))[0]

        with pytest.raises(ScratchUnavailableError):
            materializer.build(handle)

    def test_second_build_creates_a_new_archive(self, materializer, registry, mirror_root):
        handle = registry.register(plan(['eqgame.exe'], mirror_root))[0]

        first = materializer.build(handle)
        second = materializer.build(handle)
        first.close()
        second.close()

        assert first.path != second.path
        assert first.path.exists() and second.path.exists()

    @pytest.mark.asyncio
    async def test_serve_streams_valid_zip_and_schedules_cleanup(self, materializer, registry, mirror_root, reclaimer):
        handle = registry.register(plan(['eqgame.exe', 'maps/qeynos.txt'], mirror_root))[0]

        archive = await materializer.serve(handle)
        assert reclaimer.pending == 0
        data = await _collect(archive.iter_bytes())

        assert data == archive.path.read_bytes()
        assert len(data) == archive.size
        with zipfile.ZipFile(io.BytesIO(data)) as built:
            assert built.namelist() == ['eqgame.exe', 'maps/qeynos.txt']
        assert archive.closed
        assert reclaimer.pending == 1
        assert handle in registry

    @pytest.mark.asyncio
    async def test_expiry_before_streaming_does_not_truncate_download(
        self, materializer, registry, mirror_root, scratch_dir
    ):
        handle = registry.register(plan(['eqgame.exe', 'spells_us.txt'], mirror_root))[0]
        archive = await materializer.serve(handle)

        janitor = ExpiryJanitor(registry, ScratchStorage(scratch_dir), max_age_seconds=60)
        result = janitor.sweep(now=time.time() + 3600)
        data = await _collect(archive.iter_bytes())

        assert result.expired_handles == 1
        assert not archive.path.exists()
        assert len(data) == archive.size
        with zipfile.ZipFile(io.BytesIO(data)) as built:
            assert built.namelist() == ['eqgame.exe', 'spells_us.txt']
            assert built.testzip() is None

    @pytest.mark.asyncio
    async def test_file_removed_after_planning_is_left_out(self, materializer, registry, mirror_root):
        handle = registry.register(plan(['eqgame.exe', 'spells_us.txt'], mirror_root))[0]
        (mirror_root / 'spells_us.txt').unlink()

        archive = await materializer.serve(handle)
        data = await _collect(archive.iter_bytes())

        with zipfile.ZipFile(io.BytesIO(data)) as built:
            assert built.namelist() == ['eqgame.exe']

    @pytest.mark.asyncio
    async def test_reclaim_after_download_removes_handle_and_file(self, materializer, registry, mirror_root, reclaimer):
        handle = registry.register(plan(['eqgame.exe'], mirror_root))[0]
        archive = await materializer.serve(handle)
        await _collect(archive.iter_bytes())

        reclaimer.reclaim_due(now=100.0 + 180)

        assert not archive.path.exists()
        assert handle not in registry
        with pytest.raises(ChunkNotFoundError):
            await materializer.serve(handle)

    @pytest.mark.asyncio
    async def test_abandoned_stream_still_schedules_cleanup_once(self, materializer, registry, mirror_root, reclaimer):
        handle = registry.register(plan(['eqgame.exe'], mirror_root))[0]
        materializer.piece_size = 16
        archive = await materializer.serve(handle)
        stream = archive.iter_bytes()

        await stream.__anext__()
        await stream.aclose()
        archive.close()

        assert reclaimer.pending == 1

    @pytest.mark.asyncio
    async def test_unstreamed_archive_is_reclaimed_on_close(self, materializer, registry, mirror_root, reclaimer):
        handle = registry.register(plan(['eqgame.exe'], mirror_root))[0]
        archive = await materializer.serve(handle)

        archive.close()
        archive.close()

        assert archive.file.closed
        assert reclaimer.pending == 1
        reclaimer.stop()
        assert not archive.path.exists()
        assert handle not in registry

    @pytest.mark.asyncio
    async def test_serve_unknown_handle_raises(self, materializer):
        with pytest.raises(ChunkNotFoundError):
            await materializer.serve('999-0')
