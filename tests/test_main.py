"""Tests for the main CLI entry point."""

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from tranga_cli import main
from tranga_cli.main import app

runner = CliRunner()


@pytest.fixture(autouse=True)
def tranga_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TRANGA_CONFIG_DIR", str(tmp_path / "config"))
    monkeypatch.setenv("TRANGA_DATA_DIR", str(tmp_path / "data"))
    monkeypatch.setenv("COLUMNS", "200")


class TestGlobalOptions:
    """Tests for the global option state shared with subcommands."""

    def test_public_names(self) -> None:
        assert main.__all__ == ["app", "console", "is_json"]

    def test_json_flag_applies_to_one_invocation(self) -> None:
        result = runner.invoke(app, ["--json", "jobs", "list"])

        assert result.exit_code == 0, result.output
        assert json.loads(result.stdout) == []
        assert main.is_json() is True

        result = runner.invoke(app, ["jobs", "list"])

        assert result.exit_code == 0, result.output
        assert "No jobs found" in result.stdout
        assert main.is_json() is False

    def test_version(self) -> None:
        result = runner.invoke(app, ["--version"])

        assert result.exit_code == 0
        assert main.__version__ in result.stdout
