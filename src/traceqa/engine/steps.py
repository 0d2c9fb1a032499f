"""TraceQA Step Recorder — opens and closes steps, assigns status, records output.

A *lambda step* wraps a body: it is timed, captures the console while the
body runs, turns the captured lines into marker sub-steps and closes with a
status derived from how the body finished. The open-step stack is popped in a
``finally`` block so a failing body never misaddresses later steps.

Status policy:

- body returned            -> ``passed``
- ``AssertionError`` or the host framework's explicit failure outcome -> ``failed``
- the host framework's skip outcome -> ``skipped``
- anything else            -> ``broken``

The original exception is always re-raised after bookkeeping.
"""

from __future__ import annotations

import contextlib
import logging
import os
from collections.abc import Callable, Iterator, Sequence
from typing import Any, TypeVar

import pytest

from traceqa.engine.capture import capture_step_output, emit_output_markers
from traceqa.engine.context import Step, StatusDetails, TestContext
from traceqa.engine.teardown import TracingScope, current_tracing_scope
from traceqa.models import (
    DEFAULT_SOURCE_DIRS,
    STATUS_BROKEN,
    STATUS_FAILED,
    STATUS_PASSED,
    STATUS_SKIPPED,
)

logger = logging.getLogger("traceqa.engine.steps")

T = TypeVar("T")

# Source location as supplied by the caller: (file, line)
Location = tuple[str, int]

_FAILURE_TYPES: tuple[type[BaseException], ...] = (AssertionError, pytest.fail.Exception)
_SKIP_TYPES: tuple[type[BaseException], ...] = (pytest.skip.Exception,)


def classify_failure(exc: BaseException) -> str:
    """Map an exception to a step status (failed vs broken)."""
    if isinstance(exc, _FAILURE_TYPES):
        return STATUS_FAILED
    if isinstance(exc, _SKIP_TYPES):
        return STATUS_SKIPPED
    return STATUS_BROKEN


def failure_message(exc: BaseException) -> str:
    """The thrown message, exactly as ``str(exc)`` renders it (may be empty)."""
    return str(exc)


def resolve_source_file(path: str, source_dirs: Sequence[str] = DEFAULT_SOURCE_DIRS) -> str:
    """Resolve a module-relative path against the project's source directories.

    Falls back to *path* unchanged when no candidate exists.
    """
    if os.path.isabs(path) or os.path.exists(path):
        return path
    for base in source_dirs:
        candidate = os.path.join(base, path)
        if os.path.exists(candidate):
            return candidate
    return path


# ── Trace viewer groups ──────────────────────────────────────────────────


def _group_begin(scope: TracingScope | None, name: str, location: Location | None) -> bool:
    if scope is None or scope.tracing is None:
        return False
    try:
        if location is not None:
            file, line = location
            resolved = resolve_source_file(file, scope.source_dirs)
            scope.tracing.group(name, location={"file": resolved, "line": int(line)})
        else:
            scope.tracing.group(name)
    except Exception as exc:
        logger.debug("Trace group %r not recorded: %s", name, exc)
        return False
    return True


def _group_end(scope: TracingScope | None) -> None:
    try:
        scope.tracing.group_end()  # type: ignore[union-attr]
    except Exception as exc:
        logger.debug("Trace group end not recorded: %s", exc)


@contextlib.contextmanager
def trace_group(name: str, location: Location | None = None) -> Iterator[None]:
    """Mirror a block as a Playwright trace group when a traced scope is active.

    Used for steps executed without a reporting context.
    """
    scope = current_tracing_scope()
    grouped = _group_begin(scope, name, location)
    try:
        yield
    finally:
        if grouped:
            _group_end(scope)


# ── Steps ────────────────────────────────────────────────────────────────


def marker_step(ctx: TestContext, name: str) -> Step:
    """Record a zero-duration checkpoint at the current position."""
    return ctx.open_marker_step(name)


@contextlib.contextmanager
def lambda_step(ctx: TestContext, name: str, location: Location | None = None) -> Iterator[Step]:
    """Record the enclosed block as a timed, nested step of *ctx*."""
    scope = current_tracing_scope()
    handle = ctx.open_lambda_step(name)
    grouped = _group_begin(scope, name, location)
    status, detail = STATUS_PASSED, None
    out_buf = err_buf = None
    try:
        try:
            with capture_step_output() as (out_buf, err_buf):
                yield ctx.resolve(handle)
        finally:
            # Markers are appended while this step is still the innermost one.
            if out_buf is not None and err_buf is not None:
                emit_output_markers(ctx, out_buf.getvalue(), err_buf.getvalue())
    except BaseException as exc:
        status = classify_failure(exc)
        detail = StatusDetails(message=failure_message(exc))
        raise
    finally:
        if grouped:
            _group_end(scope)
        ctx.close_step(handle, status, detail=detail)


def run_step(
    ctx: TestContext,
    name: str,
    fn: Callable[..., T],
    *args: Any,
    location: Location | None = None,
    **kwargs: Any,
) -> T:
    """Call *fn* inside a lambda step and return its result."""
    with lambda_step(ctx, name, location=location):
        return fn(*args, **kwargs)
