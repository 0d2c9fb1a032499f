"""TraceQA in-test API — metadata, attachments and steps from inside a test body.

Every function here is a no-op when no reporting Context is active for the
running test, so test code can call them unconditionally::

    from traceqa import api

    def test_checkout(traced_page):
        api.epic("Shop")
        api.severity("critical")
        with api.step("Open cart"):
            traced_page.goto("/cart")
        api.expect(traced_page.title() == "Cart", "cart page is shown")
"""

from __future__ import annotations

import contextlib
import contextvars
import json
import logging
from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any, TypeVar

from traceqa.engine import attachments
from traceqa.engine.context import Step, current_context
from traceqa.engine.hooks import EventType, ReportEvent
from traceqa.engine.session import active_session
from traceqa.engine.steps import Location, lambda_step, marker_step, trace_group
from traceqa.engine.teardown import current_tracing_scope
from traceqa.models import LINK_TYPES, SEVERITIES

logger = logging.getLogger("traceqa.api")

T = TypeVar("T")

# Attributes set on exceptions raised through this module
REPORTED_ATTR = "_traceqa_reported"
CONTEXT_ATTR = "_traceqa_context"

_BODY_PREVIEW_CHARS = 120


def reporter_active() -> bool:
    """True while a reporting run is observing tests in this process."""
    return active_session() is not None


def _output_dir() -> Path | None:
    session = active_session()
    return session.output_dir if session is not None else None


# ---------------------------------------------------------------------------
# Labels, description, links, parameters
# ---------------------------------------------------------------------------


def _add_label(name: str, value: str) -> None:
    ctx = current_context()
    if ctx is not None:
        ctx.add_label(name, str(value))


def epic(value: str) -> None:
    _add_label("epic", value)


def feature(value: str) -> None:
    _add_label("feature", value)


def story(value: str) -> None:
    _add_label("story", value)


def severity(level: str) -> None:
    """Set the severity label: blocker, critical, normal, minor or trivial."""
    if level not in SEVERITIES:
        logger.warning("Unknown severity %r; expected one of %s", level, ", ".join(SEVERITIES))
    _add_label("severity", level)


def owner(value: str) -> None:
    _add_label("owner", value)


def tag(value: str) -> None:
    _add_label("tag", value)


def description(text: str) -> None:
    """Set the test description (markdown supported)."""
    ctx = current_context()
    if ctx is not None:
        ctx.set_description(text)


def link(name: str, url: str, link_type: str = "custom") -> None:
    if link_type not in LINK_TYPES:
        logger.warning("Unknown link type %r; using 'custom'", link_type)
        link_type = "custom"
    ctx = current_context()
    if ctx is not None:
        ctx.add_link(name, url, link_type)


def issue(name: str, url: str) -> None:
    link(name, url, "issue")


def tms(name: str, url: str) -> None:
    link(name, url, "tms")


def parameter(name: str, value: Any) -> None:
    """Add a parameter to the current step, or to the test outside any step."""
    ctx = current_context()
    if ctx is not None:
        ctx.add_parameter(name, value)


# ---------------------------------------------------------------------------
# Attachments
# ---------------------------------------------------------------------------


def attach(name: str, content: str, mime_type: str = "text/plain") -> None:
    """Attach string content to the current step or test."""
    ctx, output_dir = current_context(), _output_dir()
    if ctx is None or output_dir is None:
        return
    attachment = attachments.write_text(output_dir, name, content, mime_type)
    if attachment is not None:
        ctx.add_attachment(attachment)


def attach_bytes(name: str, data: bytes, mime_type: str) -> None:
    """Attach binary content, e.g. ``image/png`` or ``application/pdf``."""
    ctx, output_dir = current_context(), _output_dir()
    if ctx is None or output_dir is None:
        return
    attachment = attachments.write_bytes(output_dir, name, data, mime_type)
    if attachment is not None:
        ctx.add_attachment(attachment)


def attach_file(name: str, source: Path | str, mime_type: str) -> None:
    """Copy a file from disk into the results and attach it. Missing files are skipped."""
    ctx, output_dir = current_context(), _output_dir()
    if ctx is None or output_dir is None:
        return
    attachment = attachments.copy_file(output_dir, source, name, mime_type)
    if attachment is not None:
        ctx.add_attachment(attachment)


def screenshot(page: Any, name: str) -> None:
    """Take a Playwright screenshot and attach it as PNG."""
    if current_context() is None:
        return
    try:
        data = page.screenshot()
    except Exception as exc:
        logger.warning("Screenshot %r failed: %s", name, exc)
        return
    if isinstance(data, (bytes, bytearray)):
        attach_bytes(name, bytes(data), "image/png")


# ---------------------------------------------------------------------------
# Steps
# ---------------------------------------------------------------------------


@contextlib.contextmanager
def step(name: str, location: Location | None = None) -> Iterator[Step | None]:
    """Record the enclosed block as a nested step.

    Usable as a context manager or as a decorator. Outside a reporting run
    the block still becomes a trace-viewer group when a traced page is active.
    """
    ctx = current_context()
    if ctx is None:
        with trace_group(name, location):
            yield None
        return
    with lambda_step(ctx, name, location=location) as recorded:
        yield recorded


def marker(name: str) -> None:
    """Record a zero-duration checkpoint step."""
    ctx = current_context()
    if ctx is not None:
        marker_step(ctx, name)


def run_step(name: str, fn: Callable[..., T], *args: Any, location: Location | None = None, **kwargs: Any) -> T:
    """Call *fn* inside a step named *name* and return its result."""
    with step(name, location=location):
        return fn(*args, **kwargs)


def _screenshot_step(page: Any, name: str) -> None:
    with step(name):
        screenshot(page, name)


@contextlib.contextmanager
def ui_step(name: str, location: Location | None = None) -> Iterator[None]:
    """A step with "Before:"/"After:" screenshots of the traced page.

    Screenshots are skipped while a Playwright trace is recording, since the
    trace already captures the page on every action. On failure an "Error:"
    screenshot is taken instead of the "After:" one.
    """
    scope = current_tracing_scope()
    page = scope.page if scope is not None else None
    shoot = page is not None and scope is not None and scope.trace_path is None and current_context() is not None

    with step(name, location=location):
        if shoot:
            _screenshot_step(page, f"Before: {name}")
        try:
            yield
        except BaseException:
            if shoot:
                try:
                    _screenshot_step(page, f"Error: {name}")
                except Exception as exc:
                    logger.debug("Error screenshot for %r failed: %s", name, exc)
            raise
        if shoot:
            _screenshot_step(page, f"After: {name}")


# ---------------------------------------------------------------------------
# API responses
# ---------------------------------------------------------------------------


def pretty_json(text: str | None) -> str | None:
    """Re-indent well-formed JSON for display; anything else is returned as-is."""
    if not text or len(text) < 2 or text.lstrip()[:1] not in ("{", "["):
        return text
    try:
        return json.dumps(json.loads(text), indent=2, ensure_ascii=False)
    except ValueError:
        return text


def _looks_like_api_response(value: Any) -> bool:
    return all(hasattr(value, attr) for attr in ("status", "status_text", "url", "headers", "text"))


def _body_mime(content_type: str | None) -> str:
    if content_type:
        if "json" in content_type:
            return "application/json"
        if "xml" in content_type:
            return "text/xml"
        if "html" in content_type:
            return "text/html"
    return "text/plain"


def format_response_headers(status: int, status_text: str, headers: dict[str, str]) -> str:
    lines = [f"HTTP {status} {status_text}"]
    lines.extend(f"{key}: {value}" for key, value in sorted(headers.items()))
    return "\n".join(lines)


def attach_api_response(response: Any) -> None:
    """Record a Playwright ``APIResponse`` on the current step.

    Adds status, status-text, url, ok?, content-type and content-length as
    parameters, attaches "Response Headers" and "Response Body", and prints a
    short summary that shows up as marker steps. Never raises.
    """
    if response is None:
        return
    try:
        status = response.status
        status_text = response.status_text
        url = response.url
        ok = response.ok
        headers = dict(response.headers)
        try:
            body = response.text()
        except Exception:
            body = None
        content_type = headers.get("content-type")
        content_length = headers.get("content-length")

        print(f"← {status} {status_text}")
        print(f"  {url}")
        if content_type:
            print(f"  Content-Type: {content_type}")
        if content_length:
            print(f"  Content-Length: {content_length} bytes")
        if body:
            preview = body if len(body) <= _BODY_PREVIEW_CHARS else body[:_BODY_PREVIEW_CHARS] + "…"
            print(f"  Body: {preview}")

        parameter("status", status)
        parameter("status-text", status_text)
        parameter("url", url)
        parameter("ok?", str(ok).lower())
        if content_type:
            parameter("content-type", content_type)
        if content_length:
            parameter("content-length", content_length)

        attach("Response Headers", format_response_headers(status, status_text, headers), "text/plain")
        if body:
            mime = _body_mime(content_type)
            display = pretty_json(body) if mime == "application/json" else body
            attach("Response Body", display or body, mime)
    except Exception as exc:
        logger.warning("Could not record API response: %s", exc)


def api_step(name: str, fn: Callable[..., T], *args: Any, location: Location | None = None, **kwargs: Any) -> T:
    """Run *fn* in a step; an ``APIResponse`` result is recorded on that step."""
    with step(name, location=location):
        result = fn(*args, **kwargs)
        if _looks_like_api_response(result):
            attach_api_response(result)
        return result


# ---------------------------------------------------------------------------
# Expectations and testing contexts
# ---------------------------------------------------------------------------

_testing_stack: contextvars.ContextVar[tuple[str, ...]] = contextvars.ContextVar(
    "traceqa_testing_stack", default=()
)


def testing_context() -> str | None:
    """The active testing labels joined as ``"outer > inner"``."""
    stack = _testing_stack.get()
    return " > ".join(stack) if stack else None


@contextlib.contextmanager
def testing(label: str) -> Iterator[None]:
    """Name a group of expectations; nests with enclosing ``testing`` blocks."""
    token = _testing_stack.set(_testing_stack.get() + (label,))
    try:
        yield
    except BaseException as exc:
        if not hasattr(exc, CONTEXT_ATTR):
            _mark(exc, CONTEXT_ATTR, testing_context())
        raise
    finally:
        _testing_stack.reset(token)


# Imported into test modules; keep pytest from collecting them.
testing.__test__ = False  # type: ignore[attr-defined]
testing_context.__test__ = False  # type: ignore[attr-defined]


def _mark(exc: BaseException, attr: str, value: Any) -> None:
    try:
        setattr(exc, attr, value)
    except AttributeError:
        logger.debug("Cannot annotate %s", type(exc).__name__)


def _report(event_type: EventType, message: str | None, expected: Any, actual: Any, error: BaseException | None) -> None:
    session = active_session()
    if session is None:
        return
    session.report(
        ReportEvent(
            type=event_type,
            message=message,
            expected=expected,
            actual=actual,
            error=error,
            context=testing_context(),
        )
    )


def expect(condition: Any, message: str | None = None, *, expected: Any = None, actual: Any = None) -> None:
    """Assert *condition*, recording the expectation as its own step.

    A falsy condition raises ``AssertionError`` (status ``failed``). The
    expectation is also reported as a pass/fail assertion of the test.
    """
    label = f"expect: {message}" if message else "expect"
    with step(label):
        if condition:
            _report(EventType.PASS, message, expected, actual, None)
            return
        error = AssertionError(message or "Expectation failed")
        _report(EventType.FAIL, message, expected, actual, error)
        if reporter_active():
            _mark(error, REPORTED_ATTR, True)
        raise error

