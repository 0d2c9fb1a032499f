"""TraceQA engine — core tracing and report-assembly modules.

Provides the complete reporting engine:
- TestContext: per-test step tree with handle-addressed steps
- Output capture: tees console writes into step and test buffers
- Step recorder: lambda/marker steps with failed vs broken classification
- Hook chain: lifecycle event dispatch and per-namespace fixture injection
- Teardown synchronizer: traced scopes and bounded collaborator finalize
- ReportingSession: run-wide state, deferred handoff, finalize
- ResultAssembler: result documents, common-prefix correction, run files
"""

from traceqa.engine.capture import TeeStream, TestOutput, capture_test_output
from traceqa.engine.context import (
    Attachment,
    Label,
    Link,
    Parameter,
    StatusDetails,
    Step,
    StepHandle,
    TestContext,
    bind_context,
    current_context,
)
from traceqa.engine.hooks import (
    EventType,
    FixtureInjector,
    HookChain,
    ReportDispatcher,
    ReportEvent,
)
from traceqa.engine.results import ResultAssembler, TestResult, common_package_prefix
from traceqa.engine.session import ReportingSession, active_session
from traceqa.engine.state import AssertionRecord, TestCaseState
from traceqa.engine.steps import classify_failure, lambda_step, marker_step, run_step
from traceqa.engine.teardown import TracingScope, bind_tracing_scope, run_with_deadline

__all__ = [
    "AssertionRecord",
    "Attachment",
    "EventType",
    "FixtureInjector",
    "HookChain",
    "Label",
    "Link",
    "Parameter",
    "ReportDispatcher",
    "ReportEvent",
    "ReportingSession",
    "ResultAssembler",
    "StatusDetails",
    "Step",
    "StepHandle",
    "TeeStream",
    "TestCaseState",
    "TestContext",
    "TestOutput",
    "TestResult",
    "TracingScope",
    "active_session",
    "bind_context",
    "bind_tracing_scope",
    "capture_test_output",
    "classify_failure",
    "common_package_prefix",
    "current_context",
    "lambda_step",
    "marker_step",
    "run_step",
    "run_with_deadline",
]
