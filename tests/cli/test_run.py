"""Tests for the run command group (status and stop)."""

import os
from pathlib import Path
from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from tranga_cli.cli.exit_codes import ExitCode
from tranga_cli.main import app

runner = CliRunner()


@pytest.fixture(autouse=True)
def data_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    data_dir = tmp_path / "data"
    data_dir.mkdir()
    monkeypatch.setenv("TRANGA_CONFIG_DIR", str(tmp_path / "config"))
    monkeypatch.setenv("TRANGA_DATA_DIR", str(data_dir))
    monkeypatch.setenv("COLUMNS", "200")
    return data_dir


class TestRunStatus:
    """Tests for 'tranga run status'."""

    def test_not_running(self, data_dir: Path) -> None:
        result = runner.invoke(app, ["run", "status"])

        assert result.exit_code == 0, result.output
        assert "Daemon is not running" in result.stdout
        assert "Jobs: 0" in result.stdout

    def test_counts_saved_jobs(self) -> None:
        runner.invoke(app, ["jobs", "add", "update-libraries"])
        runner.invoke(app, ["jobs", "add", "update-publications"])
        runner.invoke(app, ["jobs", "run", "0"])

        result = runner.invoke(app, ["run", "status"])

        assert "Jobs: 2 (1 enqueued, 1 completed)" in result.stdout

    def test_running(self, data_dir: Path) -> None:
        """A PID file naming a live process reports the daemon as running."""
        (data_dir / "tranga.pid").write_text(str(os.getppid()))

        result = runner.invoke(app, ["run", "status"])

        assert f"Daemon is running (PID: {os.getppid()})" in result.stdout

    def test_stale_pid_file_removed(self, data_dir: Path) -> None:
        pid_path = data_dir / "tranga.pid"
        pid_path.write_text("424242")

        with patch("tranga_cli.daemon.pid._process_alive", return_value=False):
            result = runner.invoke(app, ["run", "status"])

        assert "removed stale PID file" in result.stdout
        assert not pid_path.exists()


class TestRunStop:
    """Tests for 'tranga run stop'."""

    def test_no_pid_file(self) -> None:
        result = runner.invoke(app, ["run", "stop"])

        assert result.exit_code == 0
        assert "not running" in result.stdout

    def test_sends_sigterm(self, data_dir: Path) -> None:
        (data_dir / "tranga.pid").write_text("424242")

        with patch("tranga_cli.daemon.pid._process_alive", return_value=True), patch("os.kill") as kill:
            result = runner.invoke(app, ["run", "stop"])

        assert result.exit_code == 0, result.output
        assert "Shutdown signal sent" in result.stdout
        kill.assert_called_once()
        assert kill.call_args[0][0] == 424242

    def test_permission_denied(self, data_dir: Path) -> None:
        (data_dir / "tranga.pid").write_text("424242")

        with patch("tranga_cli.daemon.pid._process_alive", return_value=True), patch(
            "os.kill", side_effect=PermissionError
        ):
            result = runner.invoke(app, ["run", "stop"])

        assert result.exit_code == ExitCode.PERMISSION_DENIED


class TestRunDaemon:
    """Tests for starting the daemon from the CLI."""

    def test_refuses_second_daemon(self, data_dir: Path) -> None:
        (data_dir / "tranga.pid").write_text(str(os.getppid()))

        result = runner.invoke(app, ["run"])

        assert result.exit_code == ExitCode.CONFLICT
        assert "already running" in result.stdout

    def test_foreground_run(self, data_dir: Path) -> None:
        """The foreground daemon holds the PID file while it runs."""
        seen = {}

        async def fake_run_daemon(config, force_shutdown=False):
            seen["pid_file"] = (data_dir / "tranga.pid").read_text()
            seen["force"] = force_shutdown

        with patch("tranga_cli.daemon.service.run_daemon", fake_run_daemon):
            result = runner.invoke(app, ["run", "--force-shutdown"])

        assert result.exit_code == 0, result.output
        assert seen == {"pid_file": str(os.getpid()), "force": True}
        assert not (data_dir / "tranga.pid").exists()
