"""Per-test bookkeeping tracked by the hook chain from begin-test to end-test."""

from __future__ import annotations

import dataclasses
from pathlib import Path
from typing import Any

from traceqa.engine.context import TestContext
from traceqa.models import STATUS_BROKEN, STATUS_FAILED, STATUS_PASSED, STATUS_SKIPPED

# Assertion outcomes ordered by severity; a test's status is the worst one seen.
OUTCOME_PASS = "pass"
OUTCOME_SKIP = "skip"
OUTCOME_FAIL = "fail"
OUTCOME_ERROR = "error"

SEVERITY = {OUTCOME_PASS: 0, OUTCOME_SKIP: 1, OUTCOME_FAIL: 2, OUTCOME_ERROR: 3}

OUTCOME_STATUS = {
    OUTCOME_PASS: STATUS_PASSED,
    OUTCOME_SKIP: STATUS_SKIPPED,
    OUTCOME_FAIL: STATUS_FAILED,
    OUTCOME_ERROR: STATUS_BROKEN,
}


@dataclasses.dataclass
class AssertionRecord:
    """One assertion outcome reported while a test was running."""

    type: str  # pass, skip, fail, error
    context: str | None = None
    message: str | None = None
    expected: Any = None
    actual: Any = None
    error: BaseException | None = dataclasses.field(default=None, repr=False)

    @property
    def describable(self) -> bool:
        """Whether the record carries enough to be shown as a step of its own."""
        return self.message is not None or self.expected is not None


@dataclasses.dataclass
class TestCaseState:
    """Everything known about one test case between begin and end."""

    __test__ = False  # not a pytest test class

    namespace: str
    test_name: str
    full_name: str
    start: int
    class_name: str | None = None
    assertions: list[AssertionRecord] = dataclasses.field(default_factory=list)
    status: str = OUTCOME_PASS
    first_failure: AssertionRecord | None = None
    skip_reason: AssertionRecord | None = None
    ended: bool = False
    stop: int | None = None

    # Snapshot taken at end-of-test
    context: TestContext | None = None
    stdout: str = ""
    stderr: str = ""
    trace_path: Path | None = None
    har_path: Path | None = None

    def record(self, assertion: AssertionRecord) -> None:
        self.assertions.append(assertion)
        if SEVERITY[assertion.type] > SEVERITY[self.status]:
            self.status = assertion.type
        if assertion.type in (OUTCOME_FAIL, OUTCOME_ERROR):
            if self.first_failure is None:
                self.first_failure = assertion
        elif assertion.type == OUTCOME_SKIP and self.skip_reason is None:
            self.skip_reason = assertion

    @property
    def result_status(self) -> str:
        return OUTCOME_STATUS[self.status]

    @property
    def test_class(self) -> str:
        if self.class_name:
            return f"{self.namespace}.{self.class_name}"
        return self.namespace
