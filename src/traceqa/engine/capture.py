"""TraceQA Output Capture — duplicates console writes into step and test buffers.

While a step body runs, ``sys.stdout``/``sys.stderr`` are replaced by a
``TeeStream`` that writes to a fresh step-local buffer and to the single
per-test sink. Output never fans out through ancestor steps, so each line
becomes exactly one marker, on the step that printed it.
"""

from __future__ import annotations

import contextlib
import contextvars
import dataclasses
import io
import logging
import sys
from collections.abc import Iterable, Iterator
from typing import Any, TextIO

from traceqa.engine.context import TestContext
from traceqa.models import STDERR_GLYPH, STDOUT_GLYPH

logger = logging.getLogger("traceqa.engine.capture")


class TeeStream(io.TextIOBase):
    """Text stream writing everything to both *local* and *parent*.

    ``close()`` flushes and never closes the underlying streams. Anything
    else a console stream offers (``buffer``, ``fileno()``, ``isatty()``)
    is the parent's; bytes written through ``buffer`` are not captured.
    """

    def __init__(self, local: TextIO, parent: TextIO) -> None:
        super().__init__()
        self._local = local
        self._parent = parent

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_"):
            raise AttributeError(name)
        return getattr(self._parent, name)

    @property
    def encoding(self) -> str:  # type: ignore[override]
        return getattr(self._parent, "encoding", None) or "utf-8"

    @property
    def errors(self) -> str | None:  # type: ignore[override]
        return getattr(self._parent, "errors", None)

    def writable(self) -> bool:
        return True

    def fileno(self) -> int:
        return self._parent.fileno()

    def isatty(self) -> bool:
        return self._parent.isatty()

    def write(self, s: str) -> int:
        self._local.write(s)
        self._parent.write(s)
        return len(s)

    def writelines(self, lines: Iterable[str]) -> None:  # type: ignore[override]
        for line in lines:
            self.write(line)

    def flush(self) -> None:
        for stream in (self._local, self._parent):
            if not getattr(stream, "closed", False):
                stream.flush()


@dataclasses.dataclass
class TestOutput:
    """Per-test stdout/stderr accumulation shared by every step of the test."""

    __test__ = False  # not a pytest test class

    stdout: io.StringIO = dataclasses.field(default_factory=io.StringIO)
    stderr: io.StringIO = dataclasses.field(default_factory=io.StringIO)
    # Sinks steps tee into; set while the test body is running.
    out_sink: TextIO | None = None
    err_sink: TextIO | None = None

    def text(self) -> tuple[str, str]:
        return self.stdout.getvalue(), self.stderr.getvalue()


_test_output: contextvars.ContextVar[TestOutput | None] = contextvars.ContextVar(
    "traceqa_test_output", default=None
)


def current_test_output() -> TestOutput | None:
    return _test_output.get()


@contextlib.contextmanager
def redirect_console(stdout: TextIO, stderr: TextIO) -> Iterator[None]:
    """Swap the process console sinks, restoring the previous ones on exit."""
    saved_out, saved_err = sys.stdout, sys.stderr
    sys.stdout, sys.stderr = stdout, stderr
    try:
        yield
    finally:
        sys.stdout, sys.stderr = saved_out, saved_err


@contextlib.contextmanager
def bind_test_output(output: TestOutput) -> Iterator[TestOutput]:
    """Make *output* the per-test sink without touching the console."""
    token = _test_output.set(output)
    try:
        yield output
    finally:
        _test_output.reset(token)


def replace_test_output(output: TestOutput) -> None:
    """Swap the per-test sink inside an enclosing ``bind_test_output`` block."""
    _test_output.set(output)


@contextlib.contextmanager
def capture_test_output(output: TestOutput, passthrough: bool = True) -> Iterator[TestOutput]:
    """Route console writes of a whole test body into *output*.

    With *passthrough* the writes also reach whatever sink the host had
    installed, so the host framework's own output capture keeps working.
    """
    out_sink: TextIO = TeeStream(output.stdout, sys.stdout) if passthrough else output.stdout
    err_sink: TextIO = TeeStream(output.stderr, sys.stderr) if passthrough else output.stderr
    output.out_sink, output.err_sink = out_sink, err_sink
    try:
        with bind_test_output(output), redirect_console(out_sink, err_sink):
            yield output
    finally:
        output.out_sink = output.err_sink = None


@contextlib.contextmanager
def capture_step_output() -> Iterator[tuple[io.StringIO, io.StringIO]]:
    """Capture the console for one step body.

    Yields the step-local (stdout, stderr) buffers. When a per-test sink is
    bound every write is duplicated into it as well.
    """
    out_buf, err_buf = io.StringIO(), io.StringIO()
    test_output = _test_output.get()
    if test_output is not None:
        out_parent = test_output.out_sink or test_output.stdout
        err_parent = test_output.err_sink or test_output.stderr
        out_stream: TextIO = TeeStream(out_buf, out_parent)
        err_stream: TextIO = TeeStream(err_buf, err_parent)
    else:
        out_stream, err_stream = out_buf, err_buf
    with redirect_console(out_stream, err_stream):
        yield out_buf, err_buf


def lines_to_markers(ctx: TestContext, text: str, glyph: str) -> int:
    """Append one marker step per non-blank line of *text*. Returns the count."""
    count = 0
    for line in text.splitlines():
        if not line.strip():
            continue
        ctx.open_marker_step(f"{glyph} {line}")
        count += 1
    return count


def emit_output_markers(ctx: TestContext, stdout_text: str, stderr_text: str) -> None:
    """Convert a step's captured output into marker sub-steps, stdout first."""
    n_out = lines_to_markers(ctx, stdout_text, STDOUT_GLYPH)
    n_err = lines_to_markers(ctx, stderr_text, STDERR_GLYPH)
    if n_out or n_err:
        logger.debug("Recorded %d stdout and %d stderr marker(s)", n_out, n_err)
