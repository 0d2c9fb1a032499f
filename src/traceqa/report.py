"""TraceQA report tooling — render, merge and count Allure result directories."""

from __future__ import annotations

import dataclasses
import json
import logging
import shutil
import subprocess
from collections import Counter
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from traceqa.models import (
    CATEGORIES_FILENAME,
    ENVIRONMENT_FILENAME,
    RESULT_SUFFIX,
    STATUS_BROKEN,
    STATUS_FAILED,
    STATUS_PASSED,
    STATUS_SKIPPED,
)

logger = logging.getLogger("traceqa.report")

RENDER_TIMEOUT = 300  # seconds


class ReportError(Exception):
    """Raised when result directories cannot be merged."""

    pass


@dataclasses.dataclass
class ResultCounts:
    passed: int = 0
    failed: int = 0
    broken: int = 0
    skipped: int = 0
    total: int = 0

    @property
    def failures(self) -> int:
        return self.failed + self.broken


@dataclasses.dataclass
class MergeSummary:
    merged: int
    results: int
    output_dir: Path


# ---------------------------------------------------------------------------
# Counting
# ---------------------------------------------------------------------------


def count_results(results_dir: Path) -> ResultCounts:
    """Histogram of result statuses in an Allure results directory."""
    counts = ResultCounts()
    if not results_dir.is_dir():
        return counts
    statuses: Counter[str] = Counter()
    for path in results_dir.glob(f"*{RESULT_SUFFIX}"):
        try:
            status = json.loads(path.read_text(encoding="utf-8")).get("status")
        except (json.JSONDecodeError, OSError) as exc:
            logger.warning("Skipping unreadable result %s: %s", path.name, exc)
            continue
        if status:
            statuses[status] += 1
    counts.passed = statuses[STATUS_PASSED]
    counts.failed = statuses[STATUS_FAILED]
    counts.broken = statuses[STATUS_BROKEN]
    counts.skipped = statuses[STATUS_SKIPPED]
    counts.total = sum(statuses.values())
    return counts


# ---------------------------------------------------------------------------
# Merging
# ---------------------------------------------------------------------------


def read_properties(path: Path) -> dict[str, str]:
    props: dict[str, str] = {}
    for line in path.read_text(encoding="utf-8").splitlines():
        if not line.strip() or "=" not in line:
            continue
        key, _, value = line.partition("=")
        props[key.strip()] = value.strip()
    return props


def _merge_environment(output_dir: Path, sources: Sequence[Path]) -> None:
    merged: dict[str, str] = {}
    for source in sources:
        path = source / ENVIRONMENT_FILENAME
        if path.is_file():
            merged.update(read_properties(path))  # later sources win
    if merged:
        lines = [f"{key} = {merged[key]}" for key in sorted(merged)]
        (output_dir / ENVIRONMENT_FILENAME).write_text("\n".join(lines) + "\n", encoding="utf-8")


def _merge_categories(output_dir: Path, sources: Sequence[Path]) -> None:
    by_name: dict[str, dict[str, Any]] = {}
    for source in sources:
        path = source / CATEGORIES_FILENAME
        if not path.is_file():
            continue
        try:
            entries = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            logger.warning("Skipping unreadable %s: %s", path, exc)
            continue
        for entry in entries if isinstance(entries, list) else []:
            if isinstance(entry, dict) and entry.get("name"):
                by_name[entry["name"]] = entry
    if by_name:
        (output_dir / CATEGORIES_FILENAME).write_text(
            json.dumps(list(by_name.values()), indent=2, ensure_ascii=False), encoding="utf-8"
        )


def merge_results(sources: Sequence[Path], output_dir: Path, clean: bool = True) -> MergeSummary:
    """Merge several results directories into *output_dir*.

    UUID-named files are copied as-is. ``environment.properties`` is merged
    with later sources winning per key; ``categories.json`` is de-duplicated
    by category name.
    """
    valid = [s for s in sources if s.is_dir()]
    if not valid:
        raise ReportError(f"No valid source directories: {', '.join(str(s) for s in sources)}")

    if clean and output_dir.exists():
        shutil.rmtree(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    copied = 0
    for source in valid:
        for path in sorted(source.iterdir()):
            if not path.is_file() or path.name in (ENVIRONMENT_FILENAME, CATEGORIES_FILENAME):
                continue
            shutil.copyfile(path, output_dir / path.name)
            copied += 1

    _merge_environment(output_dir, valid)
    _merge_categories(output_dir, valid)
    results = len(list(output_dir.glob(f"*{RESULT_SUFFIX}")))
    logger.info("Merged %d files from %d directories into %s", copied, len(valid), output_dir)
    return MergeSummary(merged=copied, results=results, output_dir=output_dir)


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


def allure_command() -> list[str] | None:
    """The command prefix for the Allure CLI, or None when it is not installed."""
    allure = shutil.which("allure")
    if allure:
        return [allure]
    npx = shutil.which("npx")
    if npx:
        return [npx, "--yes", "allure-commandline"]
    return None


def render_report(results_dir: Path, report_dir: Path) -> bool:
    """Render an HTML report with the Allure CLI. Returns True on success.

    Never raises: a missing CLI or a failed render is logged.
    """
    command = allure_command()
    if command is None:
        logger.warning("Allure CLI not found; skipping report generation")
        return False

    cmd = [*command, "generate", str(results_dir), "-o", str(report_dir), "--clean"]
    logger.info("Generating Allure report into %s", report_dir)
    try:
        result = subprocess.run(cmd, capture_output=True, text=True, timeout=RENDER_TIMEOUT)
    except (OSError, subprocess.TimeoutExpired) as exc:
        logger.warning("Allure report generation failed: %s", exc)
        return False
    if result.returncode != 0:
        logger.warning("allure generate failed (exit %d): %s", result.returncode, result.stderr.strip())
        return False
    return True
