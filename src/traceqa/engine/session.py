"""TraceQA Reporting Session — the run-wide owner of reporting state.

A ``ReportingSession`` is created at run start and disposed at run finalize.
It owns everything that is process-wide for the duration of a run: the
enabled flag, the result counters, the state of the test currently running,
the pending-results buffer (inside its ``ResultAssembler``), the hook chain
and the fixture injector.

End-of-test handling is split in two. ``END_TEST`` only marks the test as
ended and snapshots its Context, output and artifact paths. The result is
handed to the assembler afterwards by ``tracing_wrapper``, the outermost
per-test wrapper, once every nested fixture has torn down and artifact
files are complete. Tests that never had a Context bound are handed off
immediately at ``END_TEST``.

A host plugin may run the same test more than once inside one wrapper
(reruns of flaky tests). A ``BEGIN_TEST`` that finds the previous attempt
ended but not yet handed off hands that attempt off as a result of its
own, binds a fresh Context and output for the new attempt, and takes the
earlier attempt out of the run counters.
"""

from __future__ import annotations

import contextlib
import dataclasses
import logging
import shutil
import socket
from collections.abc import Callable, Iterator
from pathlib import Path
from traceqa.config import TraceQAConfig
from traceqa.engine.capture import (
    TestOutput,
    bind_test_output,
    current_test_output,
    replace_test_output,
)
from traceqa.engine.context import (
    TestContext,
    bind_context,
    current_context,
    epoch_ms,
    replace_context,
)
from traceqa.engine.hooks import (
    ASSERTION_EVENTS,
    EventType,
    FixtureInjector,
    HookChain,
    ReportDispatcher,
    ReportEvent,
)
from traceqa.engine.results import ResultAssembler, environment_facts
from traceqa.engine.state import (
    OUTCOME_ERROR,
    OUTCOME_FAIL,
    OUTCOME_PASS,
    OUTCOME_SKIP,
    AssertionRecord,
    TestCaseState,
)
from traceqa.engine.teardown import current_tracing_scope

logger = logging.getLogger("traceqa.engine.session")

_OUTCOMES = {
    EventType.PASS: OUTCOME_PASS,
    EventType.SKIP: OUTCOME_SKIP,
    EventType.FAIL: OUTCOME_FAIL,
    EventType.ERROR: OUTCOME_ERROR,
}


@dataclasses.dataclass
class RunCounters:
    tests: int = 0
    passed: int = 0
    failed: int = 0
    errors: int = 0
    skipped: int = 0
    retried: int = 0

    def count(self, outcome: str, step: int = 1) -> None:
        if outcome == OUTCOME_PASS:
            self.passed += step
        elif outcome == OUTCOME_FAIL:
            self.failed += step
        elif outcome == OUTCOME_ERROR:
            self.errors += step
        elif outcome == OUTCOME_SKIP:
            self.skipped += step

    def discard(self, state: TestCaseState) -> None:
        """Take an attempt that is being retried out of the totals."""
        self.tests -= 1
        self.retried += 1
        for assertion in state.assertions:
            self.count(assertion.type, step=-1)


class ReportingSession:
    """Owns the state of one reporting run."""

    def __init__(self, config: TraceQAConfig, dispatcher: ReportDispatcher | None = None) -> None:
        self.config = config
        self.enabled = False
        self.counters = RunCounters()
        self.hostname: str | None = None
        self.current_namespace: str | None = None
        self.dispatcher = dispatcher or ReportDispatcher()
        self.hook_chain = HookChain(self.handle_event, lambda: self.enabled)
        self.injector = FixtureInjector(self.tracing_wrapper)
        self.assembler = ResultAssembler(Path(config.output_dir))
        self._state: TestCaseState | None = None
        self._handlers: dict[EventType, Callable[[ReportEvent], None]] = {
            EventType.BEGIN_NAMESPACE: self._on_begin_namespace,
            EventType.END_NAMESPACE: self._on_end_namespace,
            EventType.BEGIN_TEST: self._on_begin_test,
            EventType.END_TEST: self._on_end_test,
            EventType.SUMMARY: self._on_summary,
        }
        self._handlers.update(dict.fromkeys(ASSERTION_EVENTS, self._on_assertion))

    @property
    def output_dir(self) -> Path:
        return Path(self.config.output_dir)

    @property
    def state(self) -> TestCaseState | None:
        """The test currently being tracked, if any."""
        return self._state

    # ── Run lifecycle ────────────────────────────────────────────────────

    def begin_run(self) -> None:
        """Prepare the output directory and start observing events."""
        output_dir = self.output_dir
        if self.config.clean and output_dir.exists():
            logger.info("Cleaning output directory %s", output_dir)
            shutil.rmtree(output_dir, ignore_errors=True)
        output_dir.mkdir(parents=True, exist_ok=True)

        self.hostname = socket.gethostname()
        self.counters = RunCounters()
        self.assembler = ResultAssembler(output_dir, self.hostname)
        self._state = None
        self.hook_chain.install(self.dispatcher)
        self.enabled = True
        _set_active(self)
        logger.info("Reporting run started; results go to %s", output_dir)

    def finalize(self) -> list[Path]:
        """Stop observing, then correct and write every buffered result."""
        state = self._state
        if state is not None:
            if state.ended:
                self._handoff(state)
            else:
                logger.warning("Test %s never ended; its result is dropped", state.full_name)
                self._state = None
        self.enabled = False
        self.injector.restore_all()
        _set_active(None)

        written = self.assembler.flush(
            environment_facts(self.config.project_version, self.config.commit_author)
        )
        if self.config.generate_report:
            from traceqa.report import render_report

            render_report(self.output_dir, Path(self.config.report_dir))
        return written

    def report(self, event: ReportEvent) -> None:
        """Send *event* through the dispatcher (original handler first)."""
        self.dispatcher.dispatch(event)

    def summary_line(self) -> str:
        c = self.counters
        line = (
            f"TraceQA results: {c.tests} tests, {c.passed} passed, "
            f"{c.failed} failed, {c.errors} errors, {c.skipped} skipped"
        )
        if c.retried:
            line += f", {c.retried} retried"
        return line

    # ── Outermost per-test wrapper ───────────────────────────────────────

    @contextlib.contextmanager
    def tracing_wrapper(self) -> Iterator[None]:
        """Bind a fresh Context and output sink around one whole test case.

        When the block exits every nested fixture has torn down, so artifact
        files are complete and the ended test can be handed off.
        """
        if not self.enabled:
            yield
            return
        try:
            with bind_context(TestContext()), bind_test_output(TestOutput()):
                yield
        finally:
            state = self._state
            if state is not None and state.ended:
                self._handoff(state)

    def _handoff(self, state: TestCaseState) -> None:
        self._state = None
        try:
            self.assembler.assemble(state)
        except Exception as exc:
            logger.warning("Failed to assemble result for %s: %s", state.full_name, exc)

    # ── Event handlers ───────────────────────────────────────────────────

    def handle_event(self, event: ReportEvent) -> None:
        handler = self._handlers.get(event.type)
        if handler is not None:
            handler(event)

    def _on_begin_namespace(self, event: ReportEvent) -> None:
        self.current_namespace = event.namespace
        if event.namespace:
            self.injector.inject(event.namespace, event.holder)

    def _on_end_namespace(self, event: ReportEvent) -> None:
        if event.namespace:
            self.injector.restore(event.namespace)
        self.current_namespace = None

    def _on_begin_test(self, event: ReportEvent) -> None:
        previous = self._state
        if previous is not None and not previous.ended:
            logger.warning("Test %s did not end before %s began", previous.full_name, event.test_name)
        elif previous is not None and current_context() is not None:
            self._retry(previous)
        namespace = event.namespace or self.current_namespace or ""
        test_name = event.test_name or "<unknown>"
        class_name = event.class_name
        parts = [namespace, class_name, test_name] if class_name else [namespace, test_name]
        self.counters.tests += 1
        self._state = TestCaseState(
            namespace=namespace,
            test_name=test_name,
            full_name=".".join(p for p in parts if p),
            start=epoch_ms(),
            class_name=class_name,
        )
        logger.debug("Begin test %s", self._state.full_name)

    def _retry(self, previous: TestCaseState) -> None:
        logger.info("Retrying %s", previous.full_name)
        self.counters.discard(previous)
        self._handoff(previous)
        replace_context(TestContext())
        replace_test_output(TestOutput())

    def _on_assertion(self, event: ReportEvent) -> None:
        outcome = _OUTCOMES[event.type]
        self.counters.count(outcome)
        if self._state is None:
            return
        self._state.record(
            AssertionRecord(
                type=outcome,
                context=event.context,
                message=event.message,
                expected=event.expected,
                actual=event.actual,
                error=event.error,
            )
        )

    def _on_end_test(self, event: ReportEvent) -> None:
        state = self._state
        if state is None:
            return
        # Everything below is still bound: end-of-test fires inside the wrappers.
        ctx = current_context()
        output = current_test_output()
        scope = current_tracing_scope()
        state.stop = epoch_ms()
        state.context = ctx
        if output is not None:
            state.stdout, state.stderr = output.text()
        if scope is not None:
            state.trace_path = scope.trace_path
            state.har_path = scope.har_path
        state.ended = True
        if ctx is None:
            self._handoff(state)

    def _on_summary(self, event: ReportEvent) -> None:
        logger.info("%s", self.summary_line())
        logger.info("Results written to %s", self.output_dir)


# ── Active session ───────────────────────────────────────────────────────
# At most one reporting run is active per process.

_active_session: ReportingSession | None = None


def _set_active(session: ReportingSession | None) -> None:
    global _active_session
    _active_session = session


def active_session() -> ReportingSession | None:
    """The session currently observing events, if any."""
    if _active_session is not None and _active_session.enabled:
        return _active_session
    return None
