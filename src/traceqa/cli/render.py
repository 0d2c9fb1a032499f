"""traceqa render — Render an HTML report with the Allure CLI."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from traceqa.cli import cli_settings
from traceqa.report import allure_command, render_report

console = Console()


def render(
    ctx: typer.Context,
    results_dir: Path | None = typer.Argument(
        None,
        help="Allure results directory. Default: the configured output_dir.",
    ),
    report_dir: Path | None = typer.Option(
        None,
        "--output",
        "-o",
        help="HTML report directory.",
    ),
) -> None:
    """Render an HTML report from a results directory."""
    settings = cli_settings(ctx)
    results_dir = results_dir or settings.output_dir
    report_dir = report_dir or settings.report_dir
    if not results_dir.is_dir():
        console.print(f"[red]Results directory not found:[/red] {results_dir}")
        raise typer.Exit(code=1)
    if allure_command() is None:
        console.print("[red]Allure CLI not found.[/red] Install it or make npx available.")
        raise typer.Exit(code=1)

    with console.status("Generating Allure report..."):
        ok = render_report(results_dir, report_dir)
    if not ok:
        console.print("[red]Report generation failed.[/red]")
        raise typer.Exit(code=1)
    console.print(f"[green]Report ready at[/green] {report_dir}/")
