"""TraceQA Teardown Synchronizer — artifact-producing scopes and bounded finalize.

Artifacts such as the Playwright trace archive and the HAR network capture are
only fully written once the fixture that produced them has torn down, which
happens after the host framework has already signalled end-of-test. A traced
scope therefore publishes *where* its artifacts will land via
``bind_tracing_scope``; the reporting session snapshots those paths at
end-of-test and copies the files only after the outermost per-test wrapper
has returned.

``run_with_deadline`` bounds collaborator finalizers that may hang (closing a
browser context can block on HAR export): the finalizer runs on a daemon
thread and the caller waits at most a fixed number of seconds.
"""

from __future__ import annotations

import contextlib
import contextvars
import dataclasses
import logging
import threading
from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any

from traceqa.models import DEFAULT_FINALIZE_TIMEOUT, DEFAULT_SOURCE_DIRS

logger = logging.getLogger("traceqa.engine.teardown")


@dataclasses.dataclass
class TracingScope:
    """What an active traced scope exposes to the engine."""

    trace_path: Path | None = None
    har_path: Path | None = None
    tracing: Any = None  # Playwright Tracing, used for step groups
    page: Any = None  # Playwright Page, used for automatic screenshots
    source_dirs: tuple[str, ...] = DEFAULT_SOURCE_DIRS


_tracing_scope: contextvars.ContextVar[TracingScope | None] = contextvars.ContextVar(
    "traceqa_tracing_scope", default=None
)


def current_tracing_scope() -> TracingScope | None:
    return _tracing_scope.get()


@contextlib.contextmanager
def bind_tracing_scope(scope: TracingScope) -> Iterator[TracingScope]:
    """Publish *scope* for the duration of the block."""
    token = _tracing_scope.set(scope)
    try:
        yield scope
    finally:
        _tracing_scope.reset(token)


def run_with_deadline(
    fn: Callable[[], Any],
    timeout: float = DEFAULT_FINALIZE_TIMEOUT,
    name: str = "finalize",
) -> bool:
    """Run *fn* on a daemon thread, waiting at most *timeout* seconds.

    Returns True when *fn* finished in time (even if it raised; the error is
    logged). On timeout the worker is left running and False is returned.
    """

    def _worker() -> None:
        try:
            fn()
        except Exception as exc:
            logger.warning("%s failed: %s", name, exc)

    worker = threading.Thread(target=_worker, name=f"traceqa-{name}", daemon=True)
    worker.start()
    worker.join(timeout)
    if worker.is_alive():
        logger.warning("%s did not finish within %.1fs; continuing without it", name, timeout)
        return False
    return True
