"""Tests for the error hierarchy and the CLI error handler."""

import pytest
import typer

from tranga_cli.cli.error_handler import handle_errors
from tranga_cli.cli.exit_codes import ExitCode
from tranga_cli.exceptions import (
    ConfigurationError,
    ConnectorError,
    DuplicateJobError,
    HttpError,
    InvalidJobSpecError,
    JobNotFoundError,
    NetworkError,
    NotFoundError,
    PersistenceError,
    SchedulerError,
    StorageError,
    TrangaError,
    ValidationError,
)


class TestTrangaError:
    """Test base TrangaError class."""

    def test_basic_error(self) -> None:
        error = TrangaError("Test error")
        assert error.message == "Test error"
        assert error.exit_code == ExitCode.GENERAL_ERROR
        assert error.details == {}

    def test_error_with_exit_code(self) -> None:
        error = TrangaError("Test error", exit_code=ExitCode.CONFIGURATION_ERROR)
        assert error.exit_code == ExitCode.CONFIGURATION_ERROR

    def test_str_without_details(self) -> None:
        assert str(TrangaError("Test error")) == "Test error"

    def test_str_with_details(self) -> None:
        error = TrangaError("Test error", details={"key": "value", "count": 42})
        assert str(error) == "Test error (key=value, count=42)"


class TestErrorExitCodes:
    """Each error class maps to its exit code."""

    @pytest.mark.parametrize(
        "error_class,exit_code",
        [
            (ConfigurationError, ExitCode.CONFIGURATION_ERROR),
            (ConnectorError, ExitCode.CONNECTOR_ERROR),
            (SchedulerError, ExitCode.SCHEDULER_ERROR),
            (NetworkError, ExitCode.NETWORK_ERROR),
            (StorageError, ExitCode.STORAGE_ERROR),
            (PersistenceError, ExitCode.STORAGE_ERROR),
            (ValidationError, ExitCode.INVALID_ARGUMENT),
            (InvalidJobSpecError, ExitCode.INVALID_ARGUMENT),
            (NotFoundError, ExitCode.NOT_FOUND),
            (JobNotFoundError, ExitCode.NOT_FOUND),
            (DuplicateJobError, ExitCode.CONFLICT),
        ],
    )
    def test_default_exit_code(self, error_class: type, exit_code: int) -> None:
        assert error_class("boom").exit_code == exit_code

    def test_hierarchy(self) -> None:
        assert issubclass(InvalidJobSpecError, ValidationError)
        assert issubclass(JobNotFoundError, NotFoundError)
        assert issubclass(PersistenceError, StorageError)
        assert issubclass(HttpError, NetworkError)


class TestHandleErrors:
    """Test handle_errors decorator."""

    def test_passes_return_value(self) -> None:
        @handle_errors
        def command() -> str:
            return "ok"

        assert command() == "ok"

    def test_preserves_metadata(self) -> None:
        @handle_errors
        def command() -> None:
            """Command docstring."""

        assert command.__name__ == "command"
        assert command.__doc__ == "Command docstring."

    def test_tranga_error_exit_code(self, capsys) -> None:
        @handle_errors
        def command() -> None:
            raise DuplicateJobError("Job already exists", details={"key": "update_libraries"})

        with pytest.raises(typer.Exit) as exc_info:
            command()

        assert exc_info.value.exit_code == ExitCode.CONFLICT
        err = capsys.readouterr().err
        assert "Job already exists" in err
        assert "update_libraries" in err

    def test_keyboard_interrupt(self) -> None:
        @handle_errors
        def command() -> None:
            raise KeyboardInterrupt

        with pytest.raises(typer.Exit) as exc_info:
            command()

        assert exc_info.value.exit_code == ExitCode.CANCELLED

    def test_typer_exit_passes_through(self) -> None:
        @handle_errors
        def command() -> None:
            raise typer.Exit(code=3)

        with pytest.raises(typer.Exit) as exc_info:
            command()

        assert exc_info.value.exit_code == 3

    def test_unexpected_error(self, capsys) -> None:
        @handle_errors
        def command() -> None:
            raise RuntimeError("something broke")

        with pytest.raises(typer.Exit) as exc_info:
            command()

        assert exc_info.value.exit_code == ExitCode.GENERAL_ERROR
        assert "something broke" in capsys.readouterr().err
