"""TraceQA configuration management."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

import yaml

from traceqa.models import (
    DEFAULT_FINALIZE_TIMEOUT,
    DEFAULT_OUTPUT_DIR,
    DEFAULT_REPORT_DIR,
    DEFAULT_SOURCE_DIRS,
)

logger = logging.getLogger("traceqa.config")

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


class TraceQAConfigError(Exception):
    """Raised when configuration is invalid or missing."""

    pass


@dataclass
class TraceQAConfig:
    """Configuration for a TraceQA reporting run."""

    enabled: bool = False

    # Paths
    output_dir: Path = field(default_factory=lambda: Path(DEFAULT_OUTPUT_DIR))
    report_dir: Path = field(default_factory=lambda: Path(DEFAULT_REPORT_DIR))

    # Behavior
    generate_report: bool = False
    clean: bool = True
    headless: bool = True
    finalize_timeout: float = DEFAULT_FINALIZE_TIMEOUT
    source_dirs: tuple[str, ...] = DEFAULT_SOURCE_DIRS

    # Environment facts
    project_version: str | None = None
    commit_author: str | None = None

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> TraceQAConfig:
        """Build config from ``TRACEQA_*`` environment variables.

        Never raises: unparsable values keep their defaults.
        """
        env = os.environ if environ is None else environ
        config = cls()

        config.enabled = _parse_bool(env.get("TRACEQA_ENABLED"), config.enabled, "TRACEQA_ENABLED")
        if output := env.get("TRACEQA_OUTPUT"):
            config.output_dir = Path(output)
        if report_dir := env.get("TRACEQA_REPORT_DIR"):
            config.report_dir = Path(report_dir)
        config.generate_report = _parse_bool(
            env.get("TRACEQA_GENERATE_REPORT"), config.generate_report, "TRACEQA_GENERATE_REPORT"
        )
        config.clean = _parse_bool(env.get("TRACEQA_CLEAN"), config.clean, "TRACEQA_CLEAN")
        # Interactive mode means a headed browser
        config.headless = not _parse_bool(env.get("TRACEQA_INTERACTIVE"), False, "TRACEQA_INTERACTIVE")
        config.finalize_timeout = _parse_float(
            env.get("TRACEQA_FINALIZE_TIMEOUT"), config.finalize_timeout, "TRACEQA_FINALIZE_TIMEOUT"
        )
        if source_dirs := env.get("TRACEQA_SOURCE_DIRS"):
            config.source_dirs = tuple(d for d in source_dirs.replace(";", ":").split(":") if d)
        config.project_version = env.get("TRACEQA_VERSION") or None
        config.commit_author = env.get("COMMIT_AUTHOR") or None
        return config

    @classmethod
    def from_file(cls, config_path: Path) -> TraceQAConfig:
        """Load config from a YAML file."""
        if not config_path.exists():
            raise TraceQAConfigError(f"Config file not found: {config_path}")
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        return cls._from_dict(data, config_path.parent)

    @classmethod
    def _from_dict(cls, data: dict[str, Any], project_dir: Path) -> TraceQAConfig:
        """Create config from a dictionary. Relative paths resolve against *project_dir*."""
        config = cls()

        if "enabled" in data:
            config.enabled = bool(data["enabled"])
        if "output_dir" in data:
            config.output_dir = project_dir / data["output_dir"]
        if "report_dir" in data:
            config.report_dir = project_dir / data["report_dir"]
        if "generate_report" in data:
            config.generate_report = bool(data["generate_report"])
        if "clean" in data:
            config.clean = bool(data["clean"])
        if "headless" in data:
            config.headless = bool(data["headless"])
        if "finalize_timeout" in data:
            config.finalize_timeout = _parse_float(
                str(data["finalize_timeout"]), config.finalize_timeout, "finalize_timeout"
            )
        if "source_dirs" in data and isinstance(data["source_dirs"], list):
            config.source_dirs = tuple(str(d) for d in data["source_dirs"])
        if "project_version" in data:
            config.project_version = str(data["project_version"])
        if "commit_author" in data:
            config.commit_author = str(data["commit_author"])

        return config


def _parse_bool(raw: str | None, default: bool, name: str) -> bool:
    if raw is None or raw.strip() == "":
        return default
    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    logger.warning("Ignoring unrecognized boolean for %s: %r", name, raw)
    return default


def _parse_float(raw: str | None, default: float, name: str) -> float:
    if raw is None or raw.strip() == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning("Ignoring non-numeric value for %s: %r", name, raw)
        return default
    if value <= 0:
        logger.warning("Ignoring non-positive value for %s: %r", name, raw)
        return default
    return value
