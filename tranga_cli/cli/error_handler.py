"""Global exception handling for Tranga CLI commands.

Commands are wrapped in :func:`handle_errors`, which turns the
:class:`~tranga_cli.exceptions.TrangaError` hierarchy into a short
message on stderr and the matching exit code.
"""

from functools import wraps
from typing import Any, Callable, TypeVar
import logging

import typer
from rich.console import Console

from tranga_cli.cli.exit_codes import ExitCode
from tranga_cli.exceptions import TrangaError

# Console for error output (stderr)
console = Console(stderr=True)

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])


def handle_errors(func: F) -> F:
    """Decorator for consistent error handling across CLI commands.

    - TrangaError subclasses: error message and details, the error's exit code
    - KeyboardInterrupt: cancellation message, exit code 130
    - Other exceptions: generic error, exit code 1

    Example:
        @app.command()
        @handle_errors
        def my_command():
            raise ConfigurationError("Invalid config")
    """
    @wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except TrangaError as e:
            logger.debug(f"{type(e).__name__}: {e.message}", exc_info=True)

            console.print(f"[red]Error:[/red] {e.message}")
            for key, value in e.details.items():
                console.print(f"  [dim]{key}:[/dim] {value}")

            raise typer.Exit(code=e.exit_code)

        except KeyboardInterrupt:
            console.print("\n[yellow]Operation cancelled by user.[/yellow]")
            logger.info("Operation cancelled by user (KeyboardInterrupt)")
            raise typer.Exit(code=ExitCode.CANCELLED)

        except typer.Exit:
            raise

        except Exception as e:
            logger.exception("Unexpected error occurred")
            console.print(f"[red]Unexpected error:[/red] {e}")
            console.print("[dim]Run with --debug for more details[/dim]")
            raise typer.Exit(code=ExitCode.GENERAL_ERROR)

    return wrapper  # type: ignore[return-value]
