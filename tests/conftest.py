"""Shared fixtures for TraceQA unit tests."""

from __future__ import annotations

import json
from collections.abc import Callable
from pathlib import Path

import pytest

from traceqa.config import TraceQAConfig
from traceqa.engine.context import TestContext
from traceqa.engine.hooks import EventType, ReportDispatcher, ReportEvent
from traceqa.engine.session import ReportingSession

pytest_plugins = ["pytester"]


# ---------------------------------------------------------------------------
# Fixture: results directory and configuration
# ---------------------------------------------------------------------------

@pytest.fixture
def results_dir(tmp_path: Path) -> Path:
    """An (initially missing) Allure results directory."""
    return tmp_path / "allure-results"


@pytest.fixture
def make_config(results_dir: Path) -> Callable[..., TraceQAConfig]:
    """Factory for a TraceQAConfig writing into ``results_dir``."""

    def _make(**overrides) -> TraceQAConfig:
        defaults = {
            "enabled": True,
            "output_dir": results_dir,
            "report_dir": results_dir.parent / "allure-report",
        }
        defaults.update(overrides)
        return TraceQAConfig(**defaults)

    return _make


# ---------------------------------------------------------------------------
# Fixture: a running reporting session
# ---------------------------------------------------------------------------

@pytest.fixture
def session(make_config) -> ReportingSession:
    """A ReportingSession that has begun its run; finalized on teardown if still enabled."""
    reporting = ReportingSession(make_config(), ReportDispatcher())
    reporting.begin_run()
    yield reporting
    if reporting.enabled:
        reporting.finalize()


@pytest.fixture
def ctx() -> TestContext:
    return TestContext()


# ---------------------------------------------------------------------------
# Helpers shared by several test modules
# ---------------------------------------------------------------------------

def drive_test(
    session: ReportingSession,
    test_name: str,
    body: Callable[[], None] | None = None,
    namespace: str = "pkg.tests.test_mod",
    class_name: str | None = None,
    outcome: EventType | None = EventType.PASS,
    message: str | None = None,
) -> None:
    """Emit the events of one test case inside the session's tracing wrapper."""

    def protocol() -> None:
        session.report(
            ReportEvent(EventType.BEGIN_TEST, namespace=namespace, test_name=test_name, class_name=class_name)
        )
        if body is not None:
            body()
        if outcome is not None:
            session.report(ReportEvent(outcome, message=message))
        session.report(ReportEvent(EventType.END_TEST, namespace=namespace, test_name=test_name))

    with session.tracing_wrapper():
        protocol()


def read_results(results_dir: Path) -> list[dict]:
    """Every ``*-result.json`` document in *results_dir*, ordered by fullName."""
    docs = [json.loads(p.read_text(encoding="utf-8")) for p in results_dir.glob("*-result.json")]
    return sorted(docs, key=lambda d: d["fullName"])


def label_values(doc: dict, name: str) -> list[str]:
    return [label["value"] for label in doc["labels"] if label["name"] == name]
