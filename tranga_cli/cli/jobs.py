"""Tranga jobs command - Manage scheduled jobs.

Jobs are addressed by their index in ``tranga jobs list``. Commands work
on the saved job set directly. While a daemon owns the data directory it
holds the job set in memory, so add, remove and run refuse with a
conflict instead of racing it; stop the daemon with ``tranga run stop``
first.
"""

import logging
from pathlib import Path
from typing import Any, List, Optional

import typer
from rich.console import Console
from rich.markup import escape

from tranga_cli.cli.error_handler import handle_errors
from tranga_cli.cli.output import (
    format_duration,
    format_timestamp,
    parse_duration,
    print_json,
    print_key_value,
    print_result,
    print_table,
)
from tranga_cli.config import TrangaConfig, load_config, set_config
from tranga_cli.exceptions import NotFoundError, ValidationError
from tranga_cli.scheduler.job import Job, JobKind, JobState
from tranga_cli.scheduler.job_scheduler import create_job_store, create_scheduler

app = typer.Typer(help="Add, remove, list and run scheduled jobs.")
console = Console()

logger = logging.getLogger(__name__)

STATE_STYLES = {
    JobState.ENQUEUED: "cyan",
    JobState.RUNNING: "yellow",
    JobState.COMPLETED: "green",
    JobState.FAILED: "red",
}


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


def _load(config_file: Optional[Path]) -> TrangaConfig:
    config = load_config(config_file)
    set_config(config)
    return config


def _refuse_if_daemon_running(config: TrangaConfig) -> None:
    """Raise if a daemon owns the job set of this data directory.

    Raises:
        DaemonAlreadyRunningError: If the PID file names a live process
    """
    from tranga_cli.daemon.pid import DaemonAlreadyRunningError, PIDFile

    pid_file = PIDFile.for_data_dir(config.data_dir)
    pid = pid_file.get_pid()
    if pid is not None:
        raise DaemonAlreadyRunningError(pid, pid_file.path)


def _read_jobs(config: TrangaConfig) -> List[Job]:
    store = create_job_store(config)
    try:
        return store.load_jobs()
    finally:
        close = getattr(store, "close", None)
        if close is not None:
            close()


def _select(jobs: List[Job], index: int) -> Job:
    if index < 0 or index >= len(jobs):
        raise NotFoundError(
            f"No job at index {index}",
            details={"jobs": len(jobs)},
        )
    return jobs[index]


def _parse_kind(value: str) -> JobKind:
    normalized = value.strip().lower().replace("-", "_")
    try:
        return JobKind(normalized)
    except ValueError:
        valid = ", ".join(kind.value.replace("_", "-") for kind in JobKind)
        raise ValidationError(f"Unknown job kind: {value}", details={"expected": valid}) from None


def _publication_label(job: Job) -> str:
    if job.publication is not None:
        return job.publication.sort_name
    return job.publication_id or ""


def _is_json(json_output: bool) -> bool:
    from tranga_cli.main import is_json

    return json_output or is_json()


@app.command("list")
@handle_errors
def list_jobs(
    state: Optional[str] = typer.Option(
        None,
        "--state",
        "-s",
        help="Filter by state (enqueued, running, completed, failed).",
    ),
    search: Optional[str] = typer.Option(
        None,
        "--search",
        help="Only jobs whose connector or publication contains this text.",
    ),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON."),
    config_file: Optional[Path] = _config_option(),
) -> None:
    """List all jobs with their state and next execution.

    Example:
        tranga jobs list
        tranga jobs list --state failed
        tranga jobs list --search mangadex
    """
    config = _load(config_file)
    jobs = _read_jobs(config)

    wanted_state: Optional[JobState] = None
    if state:
        try:
            wanted_state = JobState(state.lower())
        except ValueError:
            raise ValidationError(
                f"Unknown state: {state}",
                details={"expected": ", ".join(s.value for s in JobState)},
            ) from None

    needle = search.lower() if search else None
    selected = []
    for index, job in enumerate(jobs):
        if wanted_state is not None and job.state is not wanted_state:
            continue
        if needle:
            haystack = " ".join(
                part for part in (job.connector_name, job.publication_id, _publication_label(job)) if part
            ).lower()
            if needle not in haystack:
                continue
        selected.append((index, job))

    if _is_json(json_output):
        print_json([{"index": index, **job.to_dict()} for index, job in selected])
        return

    if not selected:
        console.print("[yellow]No jobs found[/yellow]")
        return

    rows = []
    for index, job in selected:
        style = STATE_STYLES[job.state]
        rows.append({
            "index": index,
            "kind": job.kind.value,
            "connector": job.connector_name or "",
            "publication": _publication_label(job),
            "state": f"[{style}]{job.state.value}[/{style}]",
            "every": format_duration(job.reoccurrence),
            "last_executed": format_timestamp(job.last_executed) or "Never",
            "next_execution": format_timestamp(job.next_execution) or "N/A",
        })

    print_table(
        rows,
        ["index", "kind", "connector", "publication", "state", "every", "last_executed", "next_execution"],
        title="Jobs",
        column_styles={"index": "cyan", "connector": "magenta"},
    )


@app.command("show")
@handle_errors
def show_job(
    index: int = typer.Argument(..., help="Job index from 'tranga jobs list'."),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON."),
    config_file: Optional[Path] = _config_option(),
) -> None:
    """Show one job in detail.

    Example:
        tranga jobs show 0
    """
    config = _load(config_file)
    job = _select(_read_jobs(config), index)

    if _is_json(json_output):
        print_json(job.to_dict())
        return

    print_key_value(
        {
            "Kind": job.kind.value,
            "Connector": job.connector_name,
            "Publication": _publication_label(job) or None,
            "Publication ID": job.publication_id,
            "Language": job.language,
            "State": job.state.value,
            "Every": format_duration(job.reoccurrence),
            "Created": job.created_at,
            "Last executed": job.last_executed,
            "Next execution": job.next_execution,
            "Runs": job.run_count,
            "Errors": job.error_count,
            "Last error": job.last_error,
        },
        title=f"Job {index}",
    )


@app.command("add")
@handle_errors
def add_job(
    kind: str = typer.Argument(
        ...,
        help="download-new-chapters, update-publications or update-libraries.",
    ),
    connector: Optional[str] = typer.Option(
        None,
        "--connector",
        "-C",
        help="Connector name (required for download-new-chapters).",
    ),
    publication: Optional[str] = typer.Option(
        None,
        "--publication",
        "-p",
        help="Publication ID on the connector (required for download-new-chapters).",
    ),
    every: str = typer.Option(
        "0",
        "--every",
        "-e",
        help="Reoccurrence, e.g. 3h, 1d 12h, 01:30:00; 0 runs once.",
    ),
    language: str = typer.Option(
        "en",
        "--language",
        "-l",
        help="Chapter language.",
    ),
    config_file: Optional[Path] = _config_option(),
) -> None:
    """Add a job.

    Example:
        tranga jobs add update-publications --connector MangaDex --every 6h
        tranga jobs add download-new-chapters -C MangaDex -p a1c7c817 --every 3h
        tranga jobs add update-libraries --every 1d
    """
    job_kind = _parse_kind(kind)
    try:
        reoccurrence = parse_duration(every)
    except ValueError as e:
        raise ValidationError(str(e)) from None

    config = _load(config_file)
    _refuse_if_daemon_running(config)

    scheduler = create_scheduler(config, discover=connector is not None)
    try:
        scheduler.load()
        if connector and connector not in scheduler.registry:
            console.print(
                f"[yellow]Warning:[/yellow] connector '{connector}' is not installed "
                f"(available: {', '.join(scheduler.registry.names) or 'none'})"
            )
        job = scheduler.add_job(
            job_kind,
            connector_name=connector,
            publication_id=publication,
            reoccurrence=reoccurrence,
            language=language,
        )
    finally:
        scheduler.shutdown()

    print_result(
        True,
        "Job added",
        {
            "kind": job.kind.value,
            "connector": job.connector_name,
            "publication": job.publication_id,
            "every": format_duration(job.reoccurrence),
        },
    )


@app.command("remove")
@handle_errors
def remove_job(
    index: int = typer.Argument(..., help="Job index from 'tranga jobs list'."),
    force: bool = typer.Option(
        False,
        "--force",
        "-f",
        help="Skip confirmation prompt.",
    ),
    config_file: Optional[Path] = _config_option(),
) -> None:
    """Remove a job.

    Example:
        tranga jobs remove 2
        tranga jobs remove 2 --force
    """
    config = _load(config_file)
    _refuse_if_daemon_running(config)

    scheduler = create_scheduler(config, discover=False)
    try:
        job = _select(scheduler.load(), index)
        if not force and not typer.confirm(f"Remove {job}?"):
            console.print("[yellow]Cancelled[/yellow]")
            return
        scheduler.remove_job(job.key)
    finally:
        scheduler.shutdown()

    print_result(True, "Job removed", {"job": str(job.key)})


@app.command("run")
@handle_errors
def run_job(
    index: int = typer.Argument(..., help="Job index from 'tranga jobs list'."),
    config_file: Optional[Path] = _config_option(),
) -> None:
    """Run a job now, regardless of its reoccurrence.

    Blocks until the run completes and saves the updated job.

    Example:
        tranga jobs run 0
    """
    config = _load(config_file)
    _refuse_if_daemon_running(config)

    scheduler = create_scheduler(config)
    try:
        job = _select(scheduler.load(), index)
        future = scheduler.execute_now(job.key)
        if future is None:
            console.print(f"[yellow]{escape(str(job))} is already running[/yellow]")
            return

        with console.status(f"Running {escape(str(job))}..."):
            result = future.result()
    finally:
        scheduler.shutdown()

    details = {
        "found": result.items_found,
        "processed": result.items_downloaded,
        "duration": f"{result.duration.total_seconds():.1f}s" if result.duration else None,
        "error": result.error,
    }
    print_result(result.success, f"{escape(str(job))} {'completed' if result.success else 'failed'}", details)
    if not result.success:
        raise typer.Exit(code=1)
