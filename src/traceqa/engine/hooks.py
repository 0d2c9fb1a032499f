"""TraceQA Hook Chain — lifecycle events, listener registry and fixture injection.

The host test framework reports its lifecycle through a single dispatch
function. Instead of patching that function in place, the integration routes
every lifecycle event through a ``ReportDispatcher``: the host's original
handler always runs first, then the registered listeners run in registration
order, but only while the owning session is enabled.

``FixtureInjector`` puts a tracing wrapper at the front of a namespace's
per-test wrapper list so that it is the OUTERMOST wrapper of every test case
in that namespace, and restores the exact original list afterwards.
"""

from __future__ import annotations

import contextlib
import dataclasses
import enum
import logging
from collections.abc import Callable, Iterator
from typing import Any, ContextManager

logger = logging.getLogger("traceqa.engine.hooks")

# A per-test wrapper is called once per test; the test runs inside the context it returns.
Wrapper = Callable[[], ContextManager[Any]]


class EventType(str, enum.Enum):
    """Lifecycle events reported by the host test framework."""

    BEGIN_NAMESPACE = "begin-namespace"
    END_NAMESPACE = "end-namespace"
    BEGIN_TEST = "begin-test"
    END_TEST = "end-test"
    PASS = "pass"
    FAIL = "fail"
    ERROR = "error"
    SKIP = "skip"
    SUMMARY = "summary"


ASSERTION_EVENTS = frozenset({EventType.PASS, EventType.FAIL, EventType.ERROR, EventType.SKIP})


@dataclasses.dataclass
class ReportEvent:
    """One lifecycle event with whatever payload its type carries."""

    type: EventType
    namespace: str | None = None
    test_name: str | None = None
    class_name: str | None = None
    message: str | None = None
    expected: Any = None
    actual: Any = None
    error: BaseException | None = None
    context: str | None = None  # "outer > inner" testing-context string
    holder: Any = None  # object owning the namespace's per-test wrapper list


Handler = Callable[[ReportEvent], None]


def _ignore(event: ReportEvent) -> None:
    pass


class ReportDispatcher:
    """Explicit listener registry in front of the host's reporting handler."""

    def __init__(self, handler: Handler | None = None) -> None:
        self._handler: Handler = handler or _ignore
        self._original: Handler | None = None
        self._listeners: list[Handler] = []
        self._is_enabled: Callable[[], bool] = lambda: False

    @property
    def original(self) -> Handler | None:
        return self._original

    @property
    def listeners(self) -> tuple[Handler, ...]:
        return tuple(self._listeners)

    def capture_original(self) -> Handler:
        """Capture the host handler. Only the first call has any effect."""
        if self._original is None:
            self._original = self._handler
        return self._original

    def set_enabled_check(self, check: Callable[[], bool]) -> None:
        self._is_enabled = check

    def register(self, listener: Handler) -> bool:
        """Append *listener*; returns False when it is already registered."""
        if listener in self._listeners:
            return False
        self._listeners.append(listener)
        return True

    def dispatch(self, event: ReportEvent) -> None:
        """Run the original handler, then the listeners if the session is enabled."""
        (self._original or self._handler)(event)
        if not self._is_enabled():
            return
        for listener in self._listeners:
            listener(event)


class HookChain:
    """Wires a session's event handler into a dispatcher exactly once."""

    def __init__(self, handler: Handler, is_enabled: Callable[[], bool]) -> None:
        self._handler = handler
        self._is_enabled = is_enabled
        self._installed: list[ReportDispatcher] = []

    def install(self, dispatcher: ReportDispatcher) -> bool:
        """Install on *dispatcher*. Returns False if it was already installed."""
        if any(d is dispatcher for d in self._installed):
            logger.debug("Hook chain already installed; skipping")
            return False
        dispatcher.capture_original()
        dispatcher.set_enabled_check(self._is_enabled)
        dispatcher.register(self._handler)
        self._installed.append(dispatcher)
        return True


# ── Per-namespace fixture injection ──────────────────────────────────────

WRAPPERS_ATTRIBUTE = "traceqa_wrappers"

_MISSING = object()


@contextlib.contextmanager
def run_wrapped(wrappers: list[Wrapper]) -> Iterator[None]:
    """Enter every wrapper in order; the first wrapper is the outermost."""
    with contextlib.ExitStack() as stack:
        for wrapper in wrappers:
            stack.enter_context(wrapper())
        yield


def wrappers_for(holder: Any) -> list[Wrapper]:
    """The per-test wrapper list a namespace holder declares (may be empty)."""
    wrappers = getattr(holder, WRAPPERS_ATTRIBUTE, None)
    return list(wrappers) if wrappers else []


class FixtureInjector:
    """Prepends a tracing wrapper to a namespace's per-test wrappers."""

    def __init__(self, wrapper: Wrapper) -> None:
        self._wrapper = wrapper
        self._saved: dict[str, tuple[Any, Any]] = {}

    @property
    def injected(self) -> tuple[str, ...]:
        return tuple(self._saved)

    def inject(self, namespace: str, holder: Any) -> None:
        if holder is None:
            return
        # A second begin without an end keeps the first saved list.
        if namespace not in self._saved:
            self._saved[namespace] = (holder, getattr(holder, WRAPPERS_ATTRIBUTE, _MISSING))
        original = self._saved[namespace][1]
        existing = [] if original is _MISSING or original is None else list(original)
        setattr(holder, WRAPPERS_ATTRIBUTE, [self._wrapper, *existing])
        logger.debug("Injected tracing wrapper into %s (%d existing)", namespace, len(existing))

    def restore(self, namespace: str) -> None:
        """Put back the exact list object the namespace had before injection."""
        if namespace not in self._saved:
            return
        holder, original = self._saved.pop(namespace)
        if original is _MISSING:
            try:
                delattr(holder, WRAPPERS_ATTRIBUTE)
            except AttributeError:
                pass
        else:
            setattr(holder, WRAPPERS_ATTRIBUTE, original)

    def restore_all(self) -> None:
        for namespace in list(self._saved):
            self.restore(namespace)
