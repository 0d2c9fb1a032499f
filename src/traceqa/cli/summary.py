"""traceqa summary — Status histogram of an Allure results directory."""

from __future__ import annotations

import json
from pathlib import Path

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from traceqa.cli import cli_settings
from traceqa.models import RESULT_SUFFIX
from traceqa.report import count_results

console = Console()

_STATUS_STYLES = {
    "passed": "green",
    "failed": "red",
    "broken": "yellow",
    "skipped": "dim",
}


def _list_results(results_dir: Path) -> list[dict]:
    """Name, status and duration of every result document."""
    rows: list[dict] = []
    for path in sorted(results_dir.glob(f"*{RESULT_SUFFIX}")):
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError):
            continue
        rows.append(
            {
                "name": data.get("fullName") or data.get("name", "?"),
                "status": data.get("status", "?"),
                "duration_ms": max(0, int(data.get("stop", 0)) - int(data.get("start", 0))),
            }
        )
    return rows


def summary(
    ctx: typer.Context,
    results_dir: Path | None = typer.Argument(
        None,
        help="Allure results directory. Default: the configured output_dir (allure-results/).",
    ),
    list_tests: bool = typer.Option(
        False,
        "--list",
        "-l",
        help="List every test result.",
    ),
    format: str = typer.Option(
        "table",
        "--format",
        "-f",
        help="Output format: table or json.",
    ),
) -> None:
    """Show how many results passed, failed, broke or were skipped.

    Exits with code 1 when any result failed or broke.
    """
    results_dir = results_dir or cli_settings(ctx).output_dir
    if not results_dir.is_dir():
        console.print(
            Panel(
                f"[yellow]Results directory not found:[/yellow] {results_dir}\n\n"
                "Run [bold]pytest --traceqa[/bold] first.",
                title="[yellow]No Results[/yellow]",
                border_style="yellow",
            )
        )
        raise typer.Exit(code=1)

    counts = count_results(results_dir)

    if format == "json":
        console.print(
            json.dumps(
                {
                    "passed": counts.passed,
                    "failed": counts.failed,
                    "broken": counts.broken,
                    "skipped": counts.skipped,
                    "total": counts.total,
                },
                indent=2,
            )
        )
    else:
        table = Table(title=f"TraceQA Results — {results_dir}", border_style="cyan")
        table.add_column("Status", style="bold")
        table.add_column("Count", justify="right")
        for status in ("passed", "failed", "broken", "skipped"):
            style = _STATUS_STYLES[status]
            table.add_row(f"[{style}]{status}[/{style}]", str(getattr(counts, status)))
        table.add_row("total", str(counts.total))
        console.print()
        console.print(table)

        if list_tests:
            tests = Table(border_style="cyan")
            tests.add_column("Test")
            tests.add_column("Status")
            tests.add_column("Duration", justify="right")
            for row in _list_results(results_dir):
                style = _STATUS_STYLES.get(row["status"], "")
                status = f"[{style}]{row['status']}[/{style}]" if style else row["status"]
                tests.add_row(row["name"], status, f"{row['duration_ms'] / 1000:.2f}s")
            console.print(tests)
        console.print()

    if counts.failures:
        raise typer.Exit(code=1)
