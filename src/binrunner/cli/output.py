"""Rich console output for the binrunner CLI.

Results (tables, records, JSON) go to stdout. Errors and warnings go to
stderr so that ``--json`` output can be piped. Colors are disabled by
``--no-color`` or the NO_COLOR environment variable.
"""

from __future__ import annotations

import json
import os
from typing import TYPE_CHECKING, Any

from rich.console import Console
from rich.table import Table
from rich.text import Text

if TYPE_CHECKING:
    from binrunner.models import Artifact, ExecutionRecord

_STATUS_COLORS = {
    "pending": "dim",
    "building": "yellow",
    "ready": "green",
    "failed": "red",
    "running": "yellow",
    "completed": "green",
    "timeout": "magenta",
}


def create_console(*, no_color: bool = False, stderr: bool = False) -> Console:
    """Create a console writing to stdout, or stderr when ``stderr`` is set."""
    no_color = no_color or "NO_COLOR" in os.environ
    return Console(
        stderr=stderr,
        no_color=no_color,
        force_terminal=False if no_color else None,
    )


console = create_console()
err_console = create_console(stderr=True)


def set_no_color(no_color: bool) -> None:
    """Recreate both module consoles with the given color setting."""
    global console, err_console
    console = create_console(no_color=no_color)
    err_console = create_console(no_color=no_color, stderr=True)


def _marked(symbol: str, style: str, message: str) -> Text:
    # message is plain text; brackets in it must not be read as markup
    return Text.assemble((symbol, style), " ", message)


def success(message: str, **kwargs: Any) -> None:
    """Print ``✓ message`` to stdout.

    Example:
        >>> success("Registered artifact 0b6f1c3e")
        ✓ Registered artifact 0b6f1c3e
    """
    console.print(_marked("✓", "green", message), **kwargs)


def error(message: str, **kwargs: Any) -> None:
    """Print ``✗ message`` to stderr."""
    err_console.print(_marked("✗", "red", message), **kwargs)


def warning(message: str, **kwargs: Any) -> None:
    """Print ``⚠ message`` to stderr."""
    err_console.print(_marked("⚠", "yellow", message), **kwargs)


def info(message: str, **kwargs: Any) -> None:
    console.print(Text(message), **kwargs)


def print_json(data: Any) -> None:
    """Print a JSON document to stdout.

    Args:
        data: JSON-serializable value, usually a ``model_dump(mode="json")``.
    """
    console.print_json(json.dumps(data), highlight=False)


def _status_text(status: str) -> Text:
    return Text(status, style=_STATUS_COLORS.get(status, ""))


def print_artifact_table(artifacts: list[Artifact]) -> None:
    """Render artifacts as a table, one row per artifact."""
    table = Table(show_header=True, header_style="bold")
    table.add_column("ID", overflow="fold")
    table.add_column("Name", min_width=10)
    table.add_column("Status")
    table.add_column("Version")
    table.add_column("Branch")

    for artifact in artifacts:
        table.add_row(
            artifact.id,
            artifact.name,
            _status_text(artifact.status.value),
            artifact.version or "-",
            artifact.branch,
        )

    console.print(table)


def print_artifact(artifact: Artifact) -> None:
    """Render one artifact as aligned key/value lines."""
    rows: list[tuple[str, str | Text]] = [
        ("ID", artifact.id),
        ("Name", artifact.name),
        ("Description", artifact.description or "-"),
        ("Repository", artifact.repo_url),
        ("Branch", artifact.branch),
        ("Build path", artifact.build_path or "."),
        ("Status", _status_text(artifact.status.value)),
        ("Version", artifact.version or "-"),
        ("Binary", artifact.binary_location or "-"),
        ("Last built", artifact.last_built.isoformat() if artifact.last_built else "-"),
        ("Created", artifact.created_at.isoformat()),
        ("Updated", artifact.updated_at.isoformat()),
    ]
    _print_rows(rows)


def print_execution(record: ExecutionRecord, *, show_output: bool = True) -> None:
    """Render an execution record, followed by its captured output."""
    rows: list[tuple[str, str | Text]] = [
        ("Execution", record.id),
        ("Artifact", record.artifact_id),
        ("Status", _status_text(record.status.value)),
        ("Exit code", str(record.exit_code)),
        ("Duration", f"{record.duration_ms}ms"),
        ("Started", record.started_at.isoformat()),
        ("Finished", record.finished_at.isoformat() if record.finished_at else "-"),
    ]
    _print_rows(rows)

    if not show_output:
        return
    for label, content in (("stdout", record.stdout), ("stderr", record.stderr)):
        if content:
            console.print()
            console.print(f"[bold]{label}:[/bold]")
            console.print(content, markup=False, highlight=False, end="")
            if not content.endswith("\n"):
                console.print()


def _print_rows(rows: list[tuple[str, str | Text]]) -> None:
    width = max(len(key) for key, _ in rows)
    for key, value in rows:
        line = Text(f"{key.ljust(width)}  ", style="bold")
        line.append(value if isinstance(value, Text) else Text(value))
        console.print(line)
