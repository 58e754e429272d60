"""Output formatting utilities for Tranga CLI.

Tables, key/value listings and JSON/YAML dumps shared by the command
modules, plus the duration helpers used for job reoccurrence.
"""

import json
import re
from datetime import datetime, timedelta
from typing import Any, Dict, List

import yaml
from rich.console import Console
from rich.json import JSON as RichJSON
from rich.syntax import Syntax
from rich.table import Table

# Default console for output
console = Console()

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)\s*([dhms])", re.IGNORECASE)
_DURATION_UNITS = {"d": "days", "h": "hours", "m": "minutes", "s": "seconds"}


def print_json(data: Any, console_instance: Console | None = None) -> None:
    """Print data as formatted JSON.

    Args:
        data: Data to print (must be JSON-serializable)
        console_instance: Optional custom console instance
    """
    prog_console = console_instance or console

    json_str = json.dumps(data, indent=2, default=str)
    prog_console.print(RichJSON(json_str))


def print_yaml(
    data: Any,
    title: str | None = None,
    console_instance: Console | None = None,
) -> None:
    """Print data as YAML-formatted output."""
    prog_console = console_instance or console

    yaml_str = yaml.dump(data, default_flow_style=False, sort_keys=False)
    if title:
        prog_console.print(f"[bold]{title}[/bold]")
    prog_console.print(Syntax(yaml_str, "yaml", theme="monokai"))


def print_table(
    data: List[Dict[str, Any]],
    columns: List[str],
    title: str | None = None,
    column_styles: Dict[str, str] | None = None,
    console_instance: Console | None = None,
) -> None:
    """Print data as a formatted table.

    Args:
        data: List of dictionaries containing row data
        columns: List of column keys to display
        title: Optional table title
        column_styles: Optional dict mapping column names to Rich styles
        console_instance: Optional custom console instance

    Example:
        data = [
            {"index": 0, "kind": "update_publications", "state": "enqueued"},
        ]
        print_table(data, ["index", "kind", "state"], title="Jobs")
    """
    prog_console = console_instance or console
    column_styles = column_styles or {}

    table = Table(title=title)

    for col in columns:
        header = col.replace("_", " ").title()
        table.add_column(header, style=column_styles.get(col))

    for row in data:
        values = []
        for col in columns:
            value = row.get(col, "")
            if value is None:
                value = ""
            elif isinstance(value, bool):
                value = "[green]Yes[/green]" if value else "[red]No[/red]"
            values.append(str(value))

        table.add_row(*values)

    prog_console.print(table)


def print_result(
    success: bool,
    message: str,
    details: Dict[str, Any] | None = None,
    console_instance: Console | None = None,
) -> None:
    """Print operation result with appropriate styling.

    Example:
        print_result(True, "Job added", {"kind": "update_libraries"})
    """
    prog_console = console_instance or console

    icon = "[green]✓[/green]" if success else "[red]✗[/red]"
    prog_console.print(f"{icon} {message}")

    if details:
        for key, value in details.items():
            if value is not None:
                prog_console.print(f"  [dim]{key}:[/dim] {value}")


def print_key_value(
    data: Dict[str, Any],
    title: str | None = None,
    key_style: str = "cyan",
    console_instance: Console | None = None,
) -> None:
    """Print data as aligned key-value pairs."""
    prog_console = console_instance or console

    if title:
        prog_console.print(f"[bold]{title}[/bold]")
        prog_console.print()

    max_key_len = max(len(str(k)) for k in data.keys()) if data else 0

    for key, value in data.items():
        if isinstance(value, bool):
            formatted = "[green]Yes[/green]" if value else "[red]No[/red]"
        elif isinstance(value, (int, float)):
            formatted = f"[yellow]{value}[/yellow]"
        elif isinstance(value, datetime):
            formatted = format_timestamp(value)
        else:
            formatted = str(value) if value is not None else "[dim]N/A[/dim]"

        padded_key = str(key).ljust(max_key_len)
        prog_console.print(f"  [{key_style}]{padded_key}[/{key_style}] : {formatted}")


def format_timestamp(value: datetime | None) -> str:
    """Format a timestamp for tables, or an empty string."""
    if value is None:
        return ""
    return value.strftime("%Y-%m-%d %H:%M:%S")


def format_duration(value: timedelta) -> str:
    """Format a reoccurrence interval.

    Example:
        format_duration(timedelta(hours=3, minutes=30))  # "3h 30m"
        format_duration(timedelta(0))  # "once"
    """
    total = int(value.total_seconds())
    if total <= 0:
        return "once"

    days, rest = divmod(total, 86400)
    hours, rest = divmod(rest, 3600)
    minutes, seconds = divmod(rest, 60)

    parts = []
    for amount, unit in ((days, "d"), (hours, "h"), (minutes, "m"), (seconds, "s")):
        if amount:
            parts.append(f"{amount}{unit}")
    return " ".join(parts)


def parse_duration(value: str) -> timedelta:
    """Parse a reoccurrence interval.

    Accepts unit strings like ``"3h"``, ``"1d 12h"`` or ``"90m"``, clock
    notation ``"HH:MM:SS"`` / ``"HH:MM"``, a plain number of seconds, and
    ``"0"`` or ``"once"`` for a run-once job.

    Raises:
        ValueError: If the string is not a duration
    """
    text = value.strip().lower()
    if text in ("", "0", "once", "never"):
        return timedelta(0)

    if ":" in text:
        parts = text.split(":")
        if len(parts) not in (2, 3) or not all(p.isdigit() for p in parts):
            raise ValueError(f"Invalid duration: {value}")
        hours, minutes = int(parts[0]), int(parts[1])
        seconds = int(parts[2]) if len(parts) == 3 else 0
        return timedelta(hours=hours, minutes=minutes, seconds=seconds)

    try:
        return timedelta(seconds=float(text))
    except ValueError:
        pass

    matches = _DURATION_PART.findall(text)
    if not matches or _DURATION_PART.sub("", text).strip():
        raise ValueError(f"Invalid duration: {value}")

    kwargs: Dict[str, float] = {}
    for amount, unit in matches:
        name = _DURATION_UNITS[unit]
        kwargs[name] = kwargs.get(name, 0.0) + float(amount)
    return timedelta(**kwargs)
