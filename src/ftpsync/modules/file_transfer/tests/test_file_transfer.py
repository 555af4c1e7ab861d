"""Unit tests for file_transfer module."""

import io
from pathlib import Path
from unittest.mock import AsyncMock, Mock, patch

import pytest

from ftpsync.modules.file_transfer import (
    LocalIOError,
    RemoteIOError,
    TransferCancelledError,
    TransferDirection,
    TransferTask,
)
from ftpsync.modules.file_transfer.file_transfer import (
    CHUNK_SIZE,
    copy_stream,
    copy_stream_async,
    open_local,
)

MODULE = "ftpsync.modules.file_transfer.file_transfer"


def _task(direction=TransferDirection.UPLOAD, local="local.bin"):
    return TransferTask(local_path=Path(local), remote_path="/remote.bin", direction=direction)


class _FailingStream(io.BytesIO):
    def read(self, size=-1):
        raise OSError("boom")

    def write(self, data):
        raise OSError("boom")


class TestCopyStream:
    """Test the blocking chunked copy."""

    def test_upload_copies_all_bytes_in_chunks(self):
        """Should move every byte local -> remote in CHUNK_SIZE pieces"""
        payload = b"x" * (CHUNK_SIZE * 2 + 100)
        local, remote = io.BytesIO(payload), io.BytesIO()
        events = []

        total = copy_stream(_task(), local, remote, on_progress=events.append)

        assert total == len(payload)
        assert remote.getvalue() == payload
        assert [e.chunk_bytes for e in events] == [CHUNK_SIZE, CHUNK_SIZE, 100]
        assert events[-1].bytes_transferred == len(payload)

    def test_download_copies_remote_to_local(self):
        """Should move bytes remote -> local for downloads"""
        local, remote = io.BytesIO(), io.BytesIO(b"hello")

        total = copy_stream(_task(TransferDirection.DOWNLOAD), local, remote)

        assert total == 5
        assert local.getvalue() == b"hello"

    def test_progress_is_monotonic_and_sums_to_total(self):
        """Should report running totals that only grow"""
        payload = b"y" * (CHUNK_SIZE * 3)
        events = []

        copy_stream(_task(), io.BytesIO(payload), io.BytesIO(), on_progress=events.append)

        running = [e.bytes_transferred for e in events]
        assert running == sorted(running)
        assert sum(e.chunk_bytes for e in events) == running[-1] == len(payload)

    def test_task_counters_updated(self):
        """Should record bytes and start time on the task"""
        task = _task()
        copy_stream(task, io.BytesIO(b"abc"), io.BytesIO())

        assert task.bytes_transferred == 3
        assert task.started_at is not None

    def test_empty_file_emits_no_progress_and_never_throttles(self):
        """Should complete a zero-byte transfer without events or delay"""
        on_progress = Mock()
        with patch(f"{MODULE}.throttle") as mock_throttle:
            total = copy_stream(_task(), io.BytesIO(b""), io.BytesIO(), 10, on_progress)

        assert total == 0
        on_progress.assert_not_called()
        mock_throttle.assert_not_called()

    def test_throttles_after_every_chunk_with_limit(self):
        """Should ask the rate limiter once per chunk with the running total"""
        payload = b"z" * (CHUNK_SIZE + 1)
        task = _task()

        with patch(f"{MODULE}.throttle") as mock_throttle:
            copy_stream(task, io.BytesIO(payload), io.BytesIO(), limit_kbps=50)

        assert mock_throttle.call_count == 2
        limits = [c.args[0] for c in mock_throttle.call_args_list]
        totals = [c.args[1] for c in mock_throttle.call_args_list]
        assert limits == [50, 50]
        assert totals == [CHUNK_SIZE, CHUNK_SIZE + 1]

    def test_cancel_aborts_at_next_chunk(self):
        """Should raise TransferCancelledError once the task is cancelled"""
        task = _task()
        payload = b"c" * (CHUNK_SIZE * 4)
        events = []

        def cancel_after_first(event):
            events.append(event)
            task.cancel()

        with pytest.raises(TransferCancelledError, match="cancelled"):
            copy_stream(task, io.BytesIO(payload), io.BytesIO(), on_progress=cancel_after_first)

        assert len(events) == 1
        assert task.cancelled

    def test_local_read_error_is_local_io_error(self):
        """Should map local OSError to LocalIOError"""
        with pytest.raises(LocalIOError, match="boom"):
            copy_stream(_task(), _FailingStream(), io.BytesIO())

    def test_remote_write_error_is_remote_io_error(self):
        """Should map remote OSError to RemoteIOError"""
        with pytest.raises(RemoteIOError, match="boom"):
            copy_stream(_task(), io.BytesIO(b"data"), _FailingStream())

    def test_local_write_error_on_download(self):
        """Should blame the local side when a download cannot be written"""
        with pytest.raises(LocalIOError):
            copy_stream(_task(TransferDirection.DOWNLOAD), _FailingStream(), io.BytesIO(b"data"))


class TestCopyStreamAsync:
    """Test the suspending chunked copy."""

    @pytest.mark.asyncio
    async def test_copies_and_reports_progress(self):
        """Should behave like copy_stream"""
        payload = b"a" * (CHUNK_SIZE + 10)
        remote = io.BytesIO()
        events = []

        total = await copy_stream_async(
            _task(), io.BytesIO(payload), remote, on_progress=events.append
        )

        assert total == len(payload)
        assert remote.getvalue() == payload
        assert [e.chunk_bytes for e in events] == [CHUNK_SIZE, 10]

    @pytest.mark.asyncio
    async def test_throttles_by_awaiting(self):
        """Should await the async throttle instead of sleeping the thread"""
        with (
            patch(f"{MODULE}.throttle_async", new_callable=AsyncMock) as mock_throttle,
            patch(f"{MODULE}.throttle") as mock_blocking,
        ):
            await copy_stream_async(_task(), io.BytesIO(b"abc"), io.BytesIO(), limit_kbps=1)

        mock_throttle.assert_awaited_once()
        mock_blocking.assert_not_called()

    @pytest.mark.asyncio
    async def test_remote_error_mapped(self):
        with pytest.raises(RemoteIOError):
            await copy_stream_async(
                _task(TransferDirection.DOWNLOAD), io.BytesIO(), _FailingStream()
            )


class TestOpenLocal:
    """Test local file opening."""

    def test_download_creates_parent_directories(self, tmp_path):
        task = _task(TransferDirection.DOWNLOAD, local=tmp_path / "a" / "b" / "file.bin")

        with open_local(task) as f:
            f.write(b"data")

        assert (tmp_path / "a" / "b" / "file.bin").read_bytes() == b"data"

    def test_upload_missing_file_is_local_io_error(self, tmp_path):
        task = _task(TransferDirection.UPLOAD, local=tmp_path / "missing.bin")

        with pytest.raises(LocalIOError, match="missing.bin"):
            open_local(task)
