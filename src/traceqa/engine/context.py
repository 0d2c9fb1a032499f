"""TraceQA Span Tree — the per-test step tree and its metadata lists.

A ``TestContext`` lives for exactly one test case. Steps are kept in an arena
and addressed by opaque ``StepHandle`` values; every step owns its ordered
child list and a back-reference to its parent, so a handle resolves in O(1)
no matter how deep the nesting is. Children are only ever appended, which
keeps every handle on the open-step stack valid for the life of the context.

A context is not safe for concurrent mutation. Each test owns a private one.
"""

from __future__ import annotations

import contextlib
import contextvars
import dataclasses
import logging
import time
from collections.abc import Iterator
from typing import Any, NewType

from traceqa.models import STATUS_PASSED

logger = logging.getLogger("traceqa.engine.context")

StepHandle = NewType("StepHandle", int)


def epoch_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


@dataclasses.dataclass
class Parameter:
    name: str
    value: str


@dataclasses.dataclass
class Label:
    name: str
    value: str


@dataclasses.dataclass
class Link:
    name: str
    url: str
    type: str = "custom"  # custom, issue, tms


@dataclasses.dataclass
class Attachment:
    """Reference to a file written into the results directory."""

    name: str
    source: str  # "<uuid>-attachment.<ext>"
    type: str  # MIME type


@dataclasses.dataclass
class StatusDetails:
    message: str
    trace: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"message": self.message}
        if self.trace:
            data["trace"] = self.trace
        return data


@dataclasses.dataclass
class Step:
    """A named, timed unit of execution."""

    name: str
    status: str = STATUS_PASSED
    start: int = 0
    stop: int = 0
    steps: list[Step] = dataclasses.field(default_factory=list)
    attachments: list[Attachment] = dataclasses.field(default_factory=list)
    parameters: list[Parameter] = dataclasses.field(default_factory=list)
    status_details: StatusDetails | None = None
    parent: Step | None = dataclasses.field(default=None, repr=False, compare=False)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "name": self.name,
            "status": self.status,
            "start": self.start,
            "stop": self.stop,
            "steps": [child.to_dict() for child in self.steps],
            "attachments": [dataclasses.asdict(a) for a in self.attachments],
            "parameters": [dataclasses.asdict(p) for p in self.parameters],
        }
        if self.status_details is not None:
            data["statusDetails"] = self.status_details.to_dict()
        return data


class TestContext:
    """Mutable record of one test case: step tree plus test-level metadata."""

    __test__ = False  # not a pytest test class

    def __init__(self) -> None:
        self.labels: list[Label] = []
        self.links: list[Link] = []
        self.parameters: list[Parameter] = []
        self.attachments: list[Attachment] = []
        self.steps: list[Step] = []
        self.description: str | None = None
        self._arena: list[Step] = []
        self._stack: list[StepHandle] = []

    # ── Addressing ───────────────────────────────────────────────────────

    @property
    def step_stack(self) -> tuple[StepHandle, ...]:
        """Handles of the currently open lambda steps, outermost first."""
        return tuple(self._stack)

    @property
    def depth(self) -> int:
        return len(self._stack)

    def resolve(self, handle: StepHandle) -> Step:
        """Return the step a handle refers to."""
        return self._arena[handle]

    def current_step(self) -> Step | None:
        """The innermost open step, or None at test level."""
        if not self._stack:
            return None
        return self._arena[self._stack[-1]]

    def _container(self) -> list[Step]:
        current = self.current_step()
        return self.steps if current is None else current.steps

    def _register(self, step: Step) -> StepHandle:
        step.parent = self.current_step()
        self._container().append(step)
        self._arena.append(step)
        return StepHandle(len(self._arena) - 1)

    # ── Steps ────────────────────────────────────────────────────────────

    def open_marker_step(self, name: str, now: int | None = None) -> Step:
        """Append a zero-duration passed checkpoint at the current location."""
        ts = epoch_ms() if now is None else now
        marker = Step(name=name, status=STATUS_PASSED, start=ts, stop=ts)
        self._register(marker)
        return marker

    def open_lambda_step(self, name: str, start: int | None = None) -> StepHandle:
        """Append a new step at the current location and make it the innermost open step."""
        ts = epoch_ms() if start is None else start
        handle = self._register(Step(name=name, status=STATUS_PASSED, start=ts, stop=ts))
        self._stack.append(handle)
        logger.debug("Opened step %r at depth %d", name, len(self._stack))
        return handle

    def close_step(
        self,
        handle: StepHandle,
        status: str,
        stop: int | None = None,
        detail: StatusDetails | None = None,
    ) -> Step:
        """Finalize a step in place and pop it off the open-step stack."""
        step = self._arena[handle]
        step.status = status
        step.stop = max(epoch_ms() if stop is None else stop, step.start)
        if detail is not None:
            step.status_details = detail

        if self._stack and self._stack[-1] == handle:
            self._stack.pop()
        elif handle in self._stack:
            # A nested step was left open; unwind everything above this one too.
            logger.warning("Closing step %r with %d nested step(s) still open", step.name,
                           len(self._stack) - self._stack.index(handle) - 1)
            del self._stack[self._stack.index(handle):]
        else:
            logger.warning("Step %r closed twice", step.name)
        return step

    # ── Metadata ─────────────────────────────────────────────────────────

    def add_parameter(self, name: str, value: Any) -> None:
        """Attach a parameter to the innermost open step, or to the test."""
        param = Parameter(name=name, value=str(value))
        current = self.current_step()
        if current is None:
            self.parameters.append(param)
        else:
            current.parameters.append(param)

    def add_attachment(self, attachment: Attachment) -> None:
        """Attach a file reference to the innermost open step, or to the test."""
        current = self.current_step()
        if current is None:
            self.attachments.append(attachment)
        else:
            current.attachments.append(attachment)

    def add_label(self, name: str, value: str) -> None:
        self.labels.append(Label(name=name, value=value))

    def add_link(self, name: str, url: str, link_type: str = "custom") -> None:
        self.links.append(Link(name=name, url=url, type=link_type))

    def set_description(self, text: str) -> None:
        self.description = text


# ── Active context ───────────────────────────────────────────────────────

_active: contextvars.ContextVar[TestContext | None] = contextvars.ContextVar(
    "traceqa_context", default=None
)


def current_context() -> TestContext | None:
    """The context of the test running in this execution context, if any."""
    return _active.get()


@contextlib.contextmanager
def bind_context(ctx: TestContext) -> Iterator[TestContext]:
    """Make *ctx* the active context for the duration of the block."""
    token = _active.set(ctx)
    try:
        yield ctx
    finally:
        _active.reset(token)


def replace_context(ctx: TestContext) -> None:
    """Swap the active context inside an enclosing ``bind_context`` block.

    The enclosing block still restores whatever was active before it.
    """
    _active.set(ctx)
