"""TraceQA — step tracing and Allure result assembly for pytest.

Records a per-test tree of timed steps, captures console output into it and
writes one Allure result document per test, plus run-level environment and
category files.
"""

from traceqa.api import (
    api_step,
    attach,
    attach_api_response,
    attach_bytes,
    attach_file,
    description,
    epic,
    expect,
    feature,
    issue,
    link,
    marker,
    owner,
    parameter,
    reporter_active,
    run_step,
    screenshot,
    severity,
    step,
    story,
    tag,
    testing,
    tms,
    ui_step,
)
from traceqa.config import TraceQAConfig, TraceQAConfigError

__version__ = "0.3.0"

__all__ = [
    "TraceQAConfig",
    "TraceQAConfigError",
    "__version__",
    "api_step",
    "attach",
    "attach_api_response",
    "attach_bytes",
    "attach_file",
    "description",
    "epic",
    "expect",
    "feature",
    "issue",
    "link",
    "marker",
    "owner",
    "parameter",
    "reporter_active",
    "run_step",
    "screenshot",
    "severity",
    "step",
    "story",
    "tag",
    "testing",
    "tms",
    "ui_step",
]
