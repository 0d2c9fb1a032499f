"""traceqa merge — Combine Allure results directories."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from traceqa.cli import cli_settings
from traceqa.report import ReportError, merge_results, render_report

console = Console()


def merge(
    ctx: typer.Context,
    sources: list[Path] = typer.Argument(
        ...,
        help="Results directories to merge.",
    ),
    output_dir: Path | None = typer.Option(
        None,
        "--output",
        "-o",
        help="Merged results directory.",
    ),
    clean: bool = typer.Option(
        True,
        "--clean/--no-clean",
        help="Empty the output directory first.",
    ),
    report: bool = typer.Option(
        False,
        "--report",
        help="Render an HTML report from the merged results.",
    ),
    report_dir: Path | None = typer.Option(
        None,
        "--report-dir",
        help="HTML report directory.",
    ),
) -> None:
    """Merge N results directories into one.

    UUID-named result and attachment files are copied as-is;
    environment.properties keeps the last value per key and
    categories.json is de-duplicated by name.
    """
    settings = cli_settings(ctx)
    output_dir = output_dir or settings.output_dir
    report_dir = report_dir or settings.report_dir
    try:
        merged = merge_results(sources, output_dir, clean=clean)
    except ReportError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1)

    console.print(
        f"[green]Merged {merged.merged} files[/green] from {len(sources)} directories into {merged.output_dir}/"
    )
    console.print(f"  {merged.results} test results")

    if report:
        if render_report(output_dir, report_dir):
            console.print(f"  Report ready at {report_dir}/")
        else:
            console.print("[yellow]  Report generation failed; see the log for details.[/yellow]")
            raise typer.Exit(code=1)
