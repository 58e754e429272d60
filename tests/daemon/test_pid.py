"""Tests for PID file management."""

import os
from pathlib import Path
from unittest.mock import patch

import pytest

from tranga_cli.cli.exit_codes import ExitCode
from tranga_cli.daemon.pid import PID_FILE_NAME, DaemonAlreadyRunningError, PIDFile


@pytest.fixture
def pid_file(tmp_path: Path) -> PIDFile:
    return PIDFile(tmp_path / "run" / "test.pid")


class TestPIDFile:
    """Tests for PIDFile class."""

    def test_for_data_dir(self, tmp_path: Path) -> None:
        assert PIDFile.for_data_dir(tmp_path).path == tmp_path / PID_FILE_NAME

    def test_acquire_writes_pid(self, pid_file: PIDFile) -> None:
        """Acquire creates parent directories and writes our PID."""
        pid_file.acquire()

        assert pid_file.path.exists()
        assert pid_file.read() == os.getpid()
        assert pid_file.get_pid() == os.getpid()
        assert pid_file.is_running()

    def test_read_missing(self, pid_file: PIDFile) -> None:
        assert pid_file.read() is None
        assert pid_file.get_pid() is None
        assert not pid_file.is_running()

    def test_read_garbage(self, pid_file: PIDFile) -> None:
        pid_file.path.parent.mkdir(parents=True)
        pid_file.path.write_text("not-a-pid\n")

        assert pid_file.read() is None

    def test_release_removes_own_file(self, pid_file: PIDFile) -> None:
        pid_file.acquire()
        pid_file.release()

        assert not pid_file.path.exists()

    def test_release_keeps_foreign_file(self, pid_file: PIDFile) -> None:
        """A file written by another process is left alone."""
        pid_file.path.parent.mkdir(parents=True)
        pid_file.path.write_text(str(os.getppid()))

        pid_file.release()

        assert pid_file.path.exists()

    def test_acquire_fails_when_other_process_alive(self, pid_file: PIDFile) -> None:
        """A live process in the file blocks a second daemon."""
        pid_file.path.parent.mkdir(parents=True)
        pid_file.path.write_text(str(os.getppid()))

        with pytest.raises(DaemonAlreadyRunningError) as exc_info:
            pid_file.acquire()

        assert exc_info.value.pid == os.getppid()
        assert exc_info.value.exit_code == ExitCode.CONFLICT
        assert pid_file.read() == os.getppid()

    def test_acquire_replaces_stale_file(self, pid_file: PIDFile) -> None:
        """A PID file left by a dead process is replaced."""
        pid_file.path.parent.mkdir(parents=True)
        pid_file.path.write_text("424242")

        with patch("tranga_cli.daemon.pid._process_alive", return_value=False):
            pid_file.acquire()

        assert pid_file.read() == os.getpid()

    def test_clear_if_stale(self, pid_file: PIDFile) -> None:
        pid_file.path.parent.mkdir(parents=True)
        pid_file.path.write_text("424242")

        with patch("tranga_cli.daemon.pid._process_alive", return_value=False):
            assert pid_file.clear_if_stale() is True

        assert not pid_file.path.exists()

    def test_clear_if_stale_keeps_live_file(self, pid_file: PIDFile) -> None:
        pid_file.acquire()

        assert pid_file.clear_if_stale() is False
        assert pid_file.path.exists()

    def test_clear_if_stale_without_file(self, pid_file: PIDFile) -> None:
        assert pid_file.clear_if_stale() is False

    def test_context_manager(self, pid_file: PIDFile) -> None:
        with pid_file as held:
            assert held is pid_file
            assert pid_file.read() == os.getpid()

        assert not pid_file.path.exists()

    def test_context_manager_releases_on_error(self, pid_file: PIDFile) -> None:
        with pytest.raises(RuntimeError):
            with pid_file:
                raise RuntimeError("daemon crashed")

        assert not pid_file.path.exists()
