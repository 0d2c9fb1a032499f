"""TraceQA command-line interface."""

from __future__ import annotations

import typer

from traceqa.config import TraceQAConfig


def cli_settings(ctx: typer.Context) -> TraceQAConfig:
    """Settings loaded by the root command; ``TRACEQA_*`` variables otherwise."""
    settings = ctx.find_root().obj
    return settings if isinstance(settings, TraceQAConfig) else TraceQAConfig.from_env()
