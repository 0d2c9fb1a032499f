"""TraceQA CLI — Main Typer entry point.

The root command loads the run settings once (``TRACEQA_*`` variables, or
the YAML file given with ``--config``) and hands them to every subcommand,
so ``traceqa summary`` with no arguments inspects the same results
directory that ``pytest --traceqa`` writes to.
"""

from __future__ import annotations

import logging
from pathlib import Path

import typer
import yaml
from rich.console import Console
from rich.logging import RichHandler

from traceqa import __version__
from traceqa.config import TraceQAConfig, TraceQAConfigError

TAGLINE = "Step traces and Allure results for pytest runs."

console = Console()


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"[bold cyan]traceqa[/bold cyan] {__version__} [dim]— {TAGLINE}[/dim]")
        raise typer.Exit()


def _enable_debug_logging() -> None:
    """Send every ``traceqa`` log record to stderr through rich."""
    root = logging.getLogger("traceqa")
    if not any(isinstance(h, RichHandler) for h in root.handlers):
        root.addHandler(RichHandler(console=Console(stderr=True), show_path=False))
    root.setLevel(logging.DEBUG)


app = typer.Typer(
    name="traceqa",
    help=TAGLINE,
    rich_markup_mode="rich",
    no_args_is_help=True,
    add_completion=False,
)


@app.callback()
def main(
    ctx: typer.Context,
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        help="Show TraceQA version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
    config_path: Path | None = typer.Option(
        None,
        "--config",
        "-c",
        help="YAML settings file; its output_dir and report_dir become the defaults.",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Log every step of the command.",
    ),
) -> None:
    """TraceQA -- inspect, merge and render Allure result directories."""
    if verbose:
        _enable_debug_logging()
    if config_path is None:
        ctx.obj = TraceQAConfig.from_env()
        return
    try:
        ctx.obj = TraceQAConfig.from_file(config_path)
    except (TraceQAConfigError, OSError, yaml.YAMLError) as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=2)


# Subcommands live in their own modules.
from traceqa.cli.merge import merge  # noqa: E402
from traceqa.cli.render import render  # noqa: E402
from traceqa.cli.summary import summary  # noqa: E402

app.command(name="merge", help="Merge several Allure results directories into one.")(merge)
app.command(name="summary", help="Show a status summary of an Allure results directory.")(summary)
app.command(name="render", help="Render an HTML report with the Allure CLI.")(render)
