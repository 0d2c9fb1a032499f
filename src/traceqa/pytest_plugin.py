"""TraceQA pytest plugin — drives a reporting session from pytest's lifecycle.

Enable with ``pytest --traceqa`` or ``TRACEQA_ENABLED=1``. Lifecycle mapping:

- first test of a module       -> BEGIN_NAMESPACE (tracing wrapper injected)
- ``pytest_runtest_setup``     -> BEGIN_TEST
- each phase report            -> PASS / FAIL / ERROR / SKIP
- call phase (or a setup that did not pass) -> END_TEST
- last test of a module        -> END_NAMESPACE (wrappers restored)
- ``pytest_sessionfinish``     -> SUMMARY, then results are written

pytest (or any plugin that takes over the per-test protocol, such as a
rerun plugin) still runs the protocol; it runs inside the module's per-test
wrappers, the tracing wrapper first, so artifacts produced by fixture
teardown exist before a result references them.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import pytest

from traceqa.api import CONTEXT_ATTR, REPORTED_ATTR
from traceqa.browser import BrowserSession, api_tracing
from traceqa.browser import traced_page as open_traced_page
from traceqa.config import TraceQAConfig
from traceqa.engine.capture import capture_test_output, current_test_output
from traceqa.engine.context import current_context
from traceqa.engine.hooks import (
    EventType,
    ReportDispatcher,
    ReportEvent,
    run_wrapped,
    wrappers_for,
)
from traceqa.engine.session import ReportingSession
from traceqa.engine.steps import classify_failure, failure_message
from traceqa.models import STATUS_FAILED

logger = logging.getLogger("traceqa.pytest_plugin")

_SETTINGS_KEY = pytest.StashKey[TraceQAConfig]()
PLUGIN_NAME = "traceqa-reporter"


def _log_event(event: ReportEvent) -> None:
    logger.debug("%s %s", event.type.value, event.test_name or event.namespace or "")


# ---------------------------------------------------------------------------
# Options and configuration
# ---------------------------------------------------------------------------


def pytest_addoption(parser: pytest.Parser) -> None:
    group = parser.getgroup("traceqa", "TraceQA Allure reporting")
    group.addoption(
        "--traceqa",
        action="store_true",
        default=False,
        help="Record steps and write Allure results for this run.",
    )
    group.addoption(
        "--traceqa-output",
        default=None,
        help="Allure results directory (default: allure-results).",
    )
    group.addoption(
        "--traceqa-no-clean",
        action="store_true",
        default=False,
        help="Keep existing files in the results directory.",
    )
    group.addoption(
        "--traceqa-report",
        action="store_true",
        default=False,
        help="Render an HTML report with the Allure CLI at the end of the run.",
    )


def _settings_from(config: pytest.Config) -> TraceQAConfig:
    settings = TraceQAConfig.from_env()
    if config.getoption("traceqa"):
        settings.enabled = True
    if output := config.getoption("traceqa_output"):
        settings.output_dir = Path(output)
    if config.getoption("traceqa_no_clean"):
        settings.clean = False
    if config.getoption("traceqa_report"):
        settings.generate_report = True
    if hasattr(config, "workerinput"):
        # xdist workers share the controller's directory
        settings.clean = False
        settings.generate_report = False
    return settings


def pytest_configure(config: pytest.Config) -> None:
    settings = _settings_from(config)
    config.stash[_SETTINGS_KEY] = settings
    if settings.enabled:
        config.pluginmanager.register(TraceQAPlugin(settings), PLUGIN_NAME)


def pytest_unconfigure(config: pytest.Config) -> None:
    plugin = config.pluginmanager.get_plugin(PLUGIN_NAME)
    if plugin is not None:
        config.pluginmanager.unregister(plugin)


# ---------------------------------------------------------------------------
# Reporter
# ---------------------------------------------------------------------------


def _skip_reason(report: pytest.TestReport) -> str:
    if hasattr(report, "wasxfail"):
        return f"xfail: {report.wasxfail}" if report.wasxfail else "xfail"
    longrepr = report.longrepr
    if isinstance(longrepr, tuple) and len(longrepr) == 3:
        reason = str(longrepr[2])
        return reason.removeprefix("Skipped: ")
    return str(longrepr) if longrepr else "skipped"


class TraceQAPlugin:
    """Registered only when reporting is enabled."""

    def __init__(self, settings: TraceQAConfig) -> None:
        self.settings = settings
        self.session = ReportingSession(settings, ReportDispatcher(handler=_log_event))
        self.written: list[Path] = []
        self._namespace: str | None = None
        self._module: Any = None

    # -- Run lifecycle -------------------------------------------------------

    @pytest.hookimpl(tryfirst=True)
    def pytest_sessionstart(self, session: pytest.Session) -> None:
        self.session.begin_run()

    def pytest_sessionfinish(self, session: pytest.Session) -> None:
        self._end_namespace()
        self.session.report(ReportEvent(EventType.SUMMARY))
        self.written = self.session.finalize()

    def pytest_terminal_summary(self, terminalreporter: Any) -> None:
        terminalreporter.write_sep("-", "traceqa")
        terminalreporter.write_line(self.session.summary_line())
        terminalreporter.write_line(f"Results written to {self.session.output_dir}/")

    # -- Namespaces ----------------------------------------------------------

    def _begin_namespace(self, item: pytest.Item) -> None:
        module = getattr(item, "module", None)
        namespace = module.__name__ if module is not None else item.nodeid.split("::")[0]
        if namespace == self._namespace:
            return
        self._end_namespace()
        self._namespace, self._module = namespace, module
        self.session.report(ReportEvent(EventType.BEGIN_NAMESPACE, namespace=namespace, holder=module))

    def _end_namespace(self) -> None:
        if self._namespace is None:
            return
        self.session.report(ReportEvent(EventType.END_NAMESPACE, namespace=self._namespace, holder=self._module))
        self._namespace, self._module = None, None

    # -- Per-test protocol ---------------------------------------------------

    @pytest.hookimpl(wrapper=True, tryfirst=True)
    def pytest_runtest_protocol(self, item: pytest.Item, nextitem: pytest.Item | None) -> Any:
        self._begin_namespace(item)
        module = self._module
        wrappers = wrappers_for(module) if module is not None else []
        if not wrappers:
            wrappers = [self.session.tracing_wrapper]
        try:
            with run_wrapped(wrappers):
                return (yield)
        finally:
            if nextitem is None or getattr(nextitem, "module", None) is not module:
                self._end_namespace()

    @pytest.hookimpl(wrapper=True, tryfirst=True)
    def pytest_runtest_setup(self, item: pytest.Item) -> Any:
        # Wrapper so the test has begun before skip markers are evaluated.
        cls = getattr(item, "cls", None)
        self.session.report(
            ReportEvent(
                EventType.BEGIN_TEST,
                namespace=self._namespace,
                test_name=item.name,
                class_name=cls.__qualname__ if cls is not None else None,
            )
        )
        ctx = current_context()
        callspec = getattr(item, "callspec", None)
        if ctx is not None and callspec is not None:
            for name, value in callspec.params.items():
                ctx.add_parameter(name, value)
        return (yield)

    @pytest.hookimpl(wrapper=True, trylast=True)
    def pytest_runtest_call(self, item: pytest.Item) -> Any:
        output = current_test_output()
        if output is None:
            return (yield)
        with capture_test_output(output, passthrough=True):
            return (yield)

    @pytest.hookimpl(wrapper=True)
    def pytest_runtest_makereport(self, item: pytest.Item, call: pytest.CallInfo[None]) -> Any:
        report = yield
        self._record_outcome(report, call)
        if report.when == "call" or (report.when == "setup" and not report.passed):
            self.session.report(ReportEvent(EventType.END_TEST, namespace=self._namespace, test_name=item.name))
        return report

    def _record_outcome(self, report: pytest.TestReport, call: pytest.CallInfo[None]) -> None:
        exc = call.excinfo.value if call.excinfo is not None else None

        if report.skipped:
            self.session.report(ReportEvent(EventType.SKIP, message=_skip_reason(report)))
        elif report.failed:
            if exc is not None and getattr(exc, REPORTED_ATTR, False):
                return
            if report.when == "call" and (exc is None or classify_failure(exc) == STATUS_FAILED):
                event_type = EventType.FAIL
            else:
                event_type = EventType.ERROR
            self.session.report(
                ReportEvent(
                    event_type,
                    message=failure_message(exc) if exc is not None else report.longreprtext,
                    error=exc,
                    context=getattr(exc, CONTEXT_ATTR, None),
                )
            )
        elif report.when == "call":
            self.session.report(ReportEvent(EventType.PASS))


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session")
def traceqa_settings(request: pytest.FixtureRequest) -> TraceQAConfig:
    """The effective TraceQA configuration for this run."""
    settings = request.config.stash.get(_SETTINGS_KEY, None)
    return settings if settings is not None else TraceQAConfig.from_env()


@pytest.fixture(scope="session")
def traceqa_browser_session(traceqa_settings: TraceQAConfig):
    session = BrowserSession(headless=traceqa_settings.headless)
    session.start()
    yield session
    session.stop()


@pytest.fixture(scope="session")
def traceqa_playwright(traceqa_browser_session: BrowserSession) -> Any:
    """The Playwright driver for this run."""
    return traceqa_browser_session.playwright


@pytest.fixture(scope="session")
def traceqa_browser(traceqa_browser_session: BrowserSession) -> Any:
    """A Chromium browser shared by the whole run (headed when interactive)."""
    return traceqa_browser_session.browser


@pytest.fixture
def traced_page(traceqa_browser: Any, traceqa_settings: TraceQAConfig, request: pytest.FixtureRequest):
    """A fresh page whose trace and HAR capture are attached to the test result."""
    with open_traced_page(
        traceqa_browser,
        title=request.node.name,
        source_dirs=traceqa_settings.source_dirs,
        finalize_timeout=traceqa_settings.finalize_timeout,
    ) as page:
        yield page


@pytest.fixture
def traced_api(traceqa_browser: Any, traceqa_settings: TraceQAConfig, request: pytest.FixtureRequest):
    """An ``APIRequestContext`` whose calls are recorded in the test's trace."""
    with api_tracing(
        traceqa_browser,
        title=request.node.name,
        source_dirs=traceqa_settings.source_dirs,
        finalize_timeout=traceqa_settings.finalize_timeout,
    ) as request_context:
        yield request_context
