"""Tranga run command - Start the scheduler daemon."""

import asyncio
import logging
import os
import signal
import sys
import time
from pathlib import Path
from typing import Any, Optional

import typer
from rich.console import Console

from tranga_cli.cli.error_handler import handle_errors
from tranga_cli.cli.exit_codes import ExitCode

app = typer.Typer(help="Start the Tranga scheduler daemon.")
console = Console()

logger = logging.getLogger(__name__)


def _config_option() -> Any:
    return typer.Option(
        None,
        "--config",
        "-c",
        help="Path to configuration file.",
        exists=True,
        file_okay=True,
        dir_okay=False,
        resolve_path=True,
    )


@app.callback(invoke_without_command=True)
@handle_errors
def run(
    ctx: typer.Context,
    config_file: Optional[Path] = _config_option(),
    daemon: bool = typer.Option(
        False,
        "--daemon",
        "-d",
        help="Run in background as daemon.",
    ),
    force_shutdown: bool = typer.Option(
        False,
        "--force-shutdown",
        help="On stop, abandon running jobs instead of waiting for them.",
    ),
) -> None:
    """Start the scheduler and run jobs until stopped.

    Loads the saved jobs, discovers connectors and runs every due job.
    SIGINT or SIGTERM stops the daemon; running jobs are allowed to
    finish unless --force-shutdown is given.

    Example:
        tranga run
        tranga run --daemon
        tranga run --config ~/tranga.toml --force-shutdown
    """
    if ctx.invoked_subcommand is not None:
        return

    from tranga_cli.config import ensure_directories, load_config, set_config
    from tranga_cli.daemon.pid import PIDFile
    from tranga_cli.daemon.service import configure_file_logging, daemonize, run_daemon

    config = load_config(config_file)
    set_config(config)
    ensure_directories(config)

    pid_file = PIDFile.for_data_dir(config.data_dir)
    running_pid = pid_file.get_pid()
    if running_pid is not None:
        console.print(f"[red]Error: Daemon is already running[/red] (PID: {running_pid})")
        raise typer.Exit(code=ExitCode.CONFLICT)
    pid_file.clear_if_stale()

    console.print("[bold green]Starting Tranga daemon...[/bold green]")
    console.print(f"[dim]Data directory: {config.data_dir}[/dim]")
    console.print(f"[dim]Library: {config.library_dir}[/dim]")

    log_file = config.logging.file or (config.data_dir / "daemon.log" if daemon else None)
    if log_file is not None and config.logging.file is None:
        config.logging.file = log_file
    configure_file_logging(config)

    if daemon:
        if sys.platform == "win32":
            console.print("[yellow]Warning: Daemon mode not supported on Windows, running in foreground[/yellow]")
        else:
            console.print("[dim]Forking to background...[/dim]")
            daemonize(log_file)

    with pid_file:
        try:
            asyncio.run(run_daemon(config, force_shutdown=force_shutdown))
        except KeyboardInterrupt:
            console.print("\n[yellow]Interrupted by user[/yellow]")


@app.command()
@handle_errors
def status(
    config_file: Optional[Path] = _config_option(),
) -> None:
    """Check daemon status and summarize the saved jobs.

    Example:
        tranga run status
    """
    from tranga_cli.config import load_config
    from tranga_cli.daemon.pid import PIDFile
    from tranga_cli.scheduler.job import JobState
    from tranga_cli.scheduler.job_scheduler import create_job_store

    config = load_config(config_file)
    pid_file = PIDFile.for_data_dir(config.data_dir)

    pid = pid_file.get_pid()
    if pid is not None:
        console.print(f"[green]● Daemon is running[/green] (PID: {pid})")
    else:
        console.print("[yellow]○ Daemon is not running[/yellow]")
        if pid_file.clear_if_stale():
            console.print("[dim]  (removed stale PID file)[/dim]")

    console.print(f"  Data directory: {config.data_dir}")
    console.print(f"  Config directory: {config.config_dir}")
    console.print(f"  Job store: {config.scheduler.store}")

    store = create_job_store(config)
    try:
        jobs = store.load_jobs()
    finally:
        close = getattr(store, "close", None)
        if close is not None:
            close()

    counts = {state: 0 for state in JobState}
    for job in jobs:
        counts[job.state] += 1
    summary = ", ".join(f"{count} {state.value}" for state, count in counts.items() if count)
    console.print(f"  Jobs: {len(jobs)}" + (f" ({summary})" if summary else ""))


@app.command()
@handle_errors
def stop(
    config_file: Optional[Path] = _config_option(),
    force: bool = typer.Option(
        False,
        "--force",
        "-f",
        help="Kill the daemon (SIGKILL) instead of asking it to stop.",
    ),
    wait: bool = typer.Option(
        False,
        "--wait",
        "-w",
        help="Wait until the daemon has exited.",
    ),
    timeout: float = typer.Option(
        60.0,
        "--timeout",
        help="Seconds to wait with --wait.",
    ),
) -> None:
    """Stop the daemon.

    Sends SIGTERM, letting running jobs finish. --force sends SIGKILL;
    jobs that were running are re-enqueued on the next start.

    Example:
        tranga run stop
        tranga run stop --wait
        tranga run stop --force
    """
    from tranga_cli.config import load_config
    from tranga_cli.daemon.pid import PIDFile

    config = load_config(config_file)
    pid_file = PIDFile.for_data_dir(config.data_dir)

    pid = pid_file.read()
    if pid is None:
        console.print("[yellow]Daemon is not running (no PID file found)[/yellow]")
        raise typer.Exit()

    if not pid_file.is_running():
        console.print("[yellow]Daemon is not running (stale PID file)[/yellow]")
        pid_file.clear_if_stale()
        raise typer.Exit()

    sig = signal.SIGKILL if force else signal.SIGTERM
    try:
        os.kill(pid, sig)
    except ProcessLookupError:
        console.print("[yellow]Daemon process not found (already stopped)[/yellow]")
        pid_file.clear_if_stale()
        return
    except PermissionError:
        console.print(f"[red]Permission denied: cannot signal process {pid}[/red]")
        raise typer.Exit(code=ExitCode.PERMISSION_DENIED)

    if force:
        console.print(f"[red]Force killed daemon (PID: {pid})[/red]")
        pid_file.clear_if_stale()
        return

    console.print(f"[green]Shutdown signal sent to daemon (PID: {pid})[/green]")
    if not wait:
        console.print("[dim]Daemon will shut down after running jobs finish...[/dim]")
        return

    deadline = time.monotonic() + timeout
    with console.status("Waiting for daemon to exit..."):
        while pid_file.is_running():
            if time.monotonic() >= deadline:
                console.print(f"[red]Daemon still running after {timeout:.0f}s[/red]")
                raise typer.Exit(code=ExitCode.GENERAL_ERROR)
            time.sleep(0.5)
    console.print("[green]Daemon stopped[/green]")
