"""Tranga config command - Configuration management."""

import json
from pathlib import Path
from typing import Any, Optional

import typer
from rich.console import Console
from rich.syntax import Syntax

from tranga_cli.cli.error_handler import handle_errors
from tranga_cli.cli.exit_codes import ExitCode
from tranga_cli.cli.output import print_key_value

app = typer.Typer(help="Manage Tranga configuration.")
console = Console()


def _config_path_option() -> Any:
    return typer.Option(
        None,
        "--config",
        "-c",
        help="Path to configuration file.",
        dir_okay=False,
        resolve_path=True,
    )


@app.command("show")
@handle_errors
def show_config(
    section: Optional[str] = typer.Argument(
        None,
        help="Configuration section to show (rate_limits, scheduler, connectors, logging).",
    ),
    format: str = typer.Option(
        "table",
        "--format",
        "-f",
        help="Output format (table, yaml, json).",
    ),
    unmask: bool = typer.Option(
        False,
        "--unmask",
        help="Show unmasked secrets (use with caution).",
    ),
    config_file: Optional[Path] = _config_path_option(),
) -> None:
    """Show current configuration.

    Example:
        tranga config show
        tranga config show rate_limits
        tranga config show --format yaml
    """
    from tranga_cli.config import _config_to_dict, load_config

    config = load_config(config_file)
    data = _config_to_dict(config, mask_secrets=not unmask)

    if section:
        if section not in data or not isinstance(data[section], dict):
            console.print(f"[red]Unknown section: {section}[/red]")
            sections = [k for k, v in data.items() if isinstance(v, dict)]
            console.print(f"Available: {', '.join(sections)}")
            raise typer.Exit(code=ExitCode.INVALID_ARGUMENT)
        data = {section: data[section]}

    if format == "yaml":
        import yaml

        console.print(Syntax(yaml.dump(data, default_flow_style=False, sort_keys=False), "yaml", theme="monokai"))
        return
    if format == "json":
        console.print(Syntax(json.dumps(data, indent=2), "json", theme="monokai"))
        return
    if format != "table":
        console.print(f"[red]Unknown format: {format}[/red] (expected table, yaml, json)")
        raise typer.Exit(code=ExitCode.INVALID_ARGUMENT)

    general = {k: v for k, v in data.items() if not isinstance(v, dict)}
    if general:
        print_key_value(general, title="Tranga Configuration")
        console.print()

    for name, values in data.items():
        if not isinstance(values, dict):
            continue
        flat = {}
        for key, value in values.items():
            if isinstance(value, dict):
                value = ", ".join(f"{k}={v}" for k, v in value.items()) or None
            elif isinstance(value, list):
                value = ", ".join(str(v) for v in value) or None
            flat[key] = value
        print_key_value(flat, title=f"\\[{name}]")
        console.print()


@app.command("set")
@handle_errors
def set_config(
    key: str = typer.Argument(
        ...,
        help="Configuration key (section.key, e.g. scheduler.tick_interval, or a top-level key).",
    ),
    value: str = typer.Argument(
        ...,
        help="Value to set. Lists are comma-separated; rate limits as 1=60,2=120.",
    ),
    config_file: Optional[Path] = _config_path_option(),
) -> None:
    """Set a configuration value.

    Example:
        tranga config set scheduler.tick_interval 10
        tranga config set rate_limits.requests_per_minute 1=60,2=30
        tranga config set download_location ~/Manga
    """
    from tranga_cli.config import clear_config_cache, set_config_value

    section, _, config_key = key.rpartition(".")
    set_config_value(section, config_key, value, config_file)
    clear_config_cache()
    console.print(f"[green]✓[/green] Set {key} = {value}")


@app.command("init")
@handle_errors
def init_config(
    force: bool = typer.Option(
        False,
        "--force",
        "-f",
        help="Overwrite existing configuration.",
    ),
    config_file: Optional[Path] = _config_path_option(),
) -> None:
    """Write a default configuration file and create the data directories.

    Example:
        tranga config init
    """
    from tranga_cli.config import (
        _load_from_env,
        default_config_path,
        ensure_directories,
        get_default_config,
        save_config,
    )

    path = config_file or default_config_path()
    if path.exists() and not force:
        console.print(f"[yellow]Configuration already exists:[/yellow] {path}")
        console.print("[dim]Use --force to overwrite[/dim]")
        raise typer.Exit(code=ExitCode.CONFLICT)

    # Defaults, with TRANGA_* environment overrides applied
    config = _load_from_env(get_default_config(), "TRANGA_")
    config.config_dir = path.parent
    save_config(config, path)
    ensure_directories(config)

    console.print(f"[green]✓[/green] Configuration written to {path}")
    console.print(f"  Data directory: {config.data_dir}")
    console.print(f"  Library: {config.library_dir}")


@app.command("path")
def config_path() -> None:
    """Show configuration file path.

    Example:
        tranga config path
    """
    from tranga_cli.config import default_config_path

    path = default_config_path()
    console.print(f"[bold]Config directory:[/bold] {path.parent}")
    console.print(f"[bold]Config file:[/bold] {path}")
    console.print(f"[bold]Exists:[/bold] {path.exists()}")


@app.command("validate")
@handle_errors
def validate_config(
    config_file: Optional[Path] = _config_path_option(),
) -> None:
    """Validate current configuration.

    Example:
        tranga config validate
    """
    from tranga_cli.config import default_config_path, load_config, validate_config as do_validate

    path = config_file or default_config_path()
    config = load_config(path)

    console.print("[bold]Validating configuration...[/bold]")
    console.print()

    if path.exists():
        console.print(f"  [green]✓[/green] Config file exists [dim]({path})[/dim]")
    else:
        console.print(f"  [yellow]![/yellow] No config file, using defaults [dim]({path})[/dim]")

    all_passed = True
    issues = do_validate(config)
    if issues:
        console.print()
        console.print("[bold yellow]Validation Results:[/bold yellow]")
        for issue in issues:
            if issue.severity == "error":
                status = "[red]✗[/red]"
                all_passed = False
            else:
                status = "[yellow]![/yellow]"
            console.print(f"  {status} \\[{issue.severity.upper()}] {issue.field}: {issue.message}")

    console.print()
    if all_passed:
        console.print("[green]Configuration is valid[/green]")
    else:
        console.print("[red]Configuration has errors[/red]")
        raise typer.Exit(code=ExitCode.CONFIGURATION_ERROR)
