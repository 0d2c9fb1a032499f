"""TraceQA Browser — Playwright lifecycle and traced scopes.

``BrowserSession`` launches Chromium once per run. ``traced_page`` and
``api_tracing`` create a fresh browser context per test that records a
Playwright trace and a HAR network capture into temporary files, publish
those paths as the active ``TracingScope``, and finalize the context on exit:

1. close the page,
2. stop tracing (writes the trace archive),
3. close the context on a daemon thread with a bounded wait (writes the HAR;
   Playwright can block here indefinitely when tracing was active).

The reporting session copies the files into the results after the scope has
fully exited.
"""

from __future__ import annotations

import contextlib
import logging
import tempfile
from collections.abc import Iterator, Sequence
from pathlib import Path
from typing import Any

from traceqa.engine.session import active_session
from traceqa.engine.teardown import TracingScope, bind_tracing_scope, run_with_deadline
from traceqa.models import DEFAULT_FINALIZE_TIMEOUT, DEFAULT_SOURCE_DIRS

logger = logging.getLogger("traceqa.browser")


class BrowserSession:
    """Owns a Playwright driver and one Chromium browser."""

    def __init__(self, headless: bool = True) -> None:
        self.headless = headless
        self._playwright: Any = None
        self._browser: Any = None

    @property
    def playwright(self) -> Any:
        return self._playwright

    @property
    def browser(self) -> Any:
        return self._browser

    def start(self) -> None:
        """Launch the Playwright browser. Call once before creating pages."""
        from playwright.sync_api import sync_playwright

        self._playwright = sync_playwright().start()
        self._browser = self._playwright.chromium.launch(headless=self.headless)
        logger.debug("Launched Chromium (headless=%s)", self.headless)

    def stop(self) -> None:
        """Close the browser and Playwright."""
        try:
            if self._browser is not None:
                self._browser.close()
        except Exception as exc:
            logger.debug("Browser close failed: %s", exc)
        try:
            if self._playwright is not None:
                self._playwright.stop()
        except Exception as exc:
            logger.debug("Playwright stop failed: %s", exc)
        self._browser = None
        self._playwright = None


def _artifact_paths(record: bool) -> tuple[Path | None, Path | None]:
    if not record:
        return None, None
    workdir = Path(tempfile.mkdtemp(prefix="traceqa-"))
    return workdir / "trace.zip", workdir / "network.har"


def _start_tracing(context: Any, title: str | None, snapshots: bool) -> Any:
    tracing = context.tracing
    tracing.start(screenshots=snapshots, snapshots=snapshots, sources=True, title=title or "traceqa")
    return tracing


def _finalize_context(
    context: Any,
    tracing: Any,
    trace_path: Path | None,
    timeout: float,
    page: Any = None,
) -> None:
    if page is not None:
        try:
            page.close()
        except Exception as exc:
            logger.debug("Page close failed: %s", exc)
    if tracing is not None and trace_path is not None:
        try:
            tracing.stop(path=str(trace_path))
        except Exception as exc:
            logger.warning("Stopping the trace failed: %s", exc)
    if not run_with_deadline(context.close, timeout=timeout, name="browser context close"):
        logger.warning("Network capture may be missing: context close exceeded %.1fs", timeout)


@contextlib.contextmanager
def traced_page(
    browser: Any,
    *,
    record: bool | None = None,
    title: str | None = None,
    context_options: dict[str, Any] | None = None,
    source_dirs: Sequence[str] = DEFAULT_SOURCE_DIRS,
    finalize_timeout: float = DEFAULT_FINALIZE_TIMEOUT,
) -> Iterator[Any]:
    """Yield a page whose context records a trace and a HAR capture.

    *record* defaults to whether a reporting run is active; without
    recording the page is still published so ``ui_step`` can take
    screenshots.
    """
    if record is None:
        record = active_session() is not None
    trace_path, har_path = _artifact_paths(record)
    options = dict(context_options or {})
    if har_path is not None:
        options.update(record_har_path=str(har_path), record_har_mode="full")

    context = browser.new_context(**options)
    tracing = _start_tracing(context, title, snapshots=True) if record else None
    page = context.new_page()
    scope = TracingScope(
        trace_path=trace_path,
        har_path=har_path,
        tracing=tracing,
        page=page,
        source_dirs=tuple(source_dirs),
    )
    try:
        with bind_tracing_scope(scope):
            yield page
    finally:
        _finalize_context(context, tracing, trace_path, finalize_timeout, page=page)


@contextlib.contextmanager
def api_tracing(
    browser: Any,
    *,
    record: bool | None = None,
    title: str | None = None,
    context_options: dict[str, Any] | None = None,
    source_dirs: Sequence[str] = DEFAULT_SOURCE_DIRS,
    finalize_timeout: float = DEFAULT_FINALIZE_TIMEOUT,
) -> Iterator[Any]:
    """Yield an ``APIRequestContext`` whose calls land in the trace.

    For API-only tests: no page, and the trace records no screenshots or
    DOM snapshots.
    """
    if record is None:
        record = active_session() is not None
    trace_path, har_path = _artifact_paths(record)
    options = dict(context_options or {})
    if har_path is not None:
        options.update(record_har_path=str(har_path), record_har_mode="full")

    context = browser.new_context(**options)
    tracing = _start_tracing(context, title, snapshots=False) if record else None
    scope = TracingScope(
        trace_path=trace_path,
        har_path=har_path,
        tracing=tracing,
        source_dirs=tuple(source_dirs),
    )
    try:
        with bind_tracing_scope(scope):
            yield context.request
    finally:
        _finalize_context(context, tracing, trace_path, finalize_timeout)
