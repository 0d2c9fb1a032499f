"""TraceQA attachment store — writes attachment files into the results directory.

Every writer returns the ``Attachment`` reference on success and ``None`` on
failure. Failures are logged and swallowed: a broken attachment must never
abort the test being observed.
"""

from __future__ import annotations

import logging
import shutil
import uuid
from pathlib import Path

from traceqa.engine.context import Attachment
from traceqa.models import (
    ATTACHMENT_INFIX,
    BINARY_EXTENSIONS,
    DEFAULT_BINARY_EXTENSION,
    DEFAULT_TEXT_EXTENSION,
    TEXT_EXTENSIONS,
)

logger = logging.getLogger("traceqa.engine.attachments")


def extension_for(mime_type: str, binary: bool = False) -> str:
    """Map a MIME type to the file extension used in the results directory."""
    if mime_type in TEXT_EXTENSIONS:
        return TEXT_EXTENSIONS[mime_type]
    if mime_type in BINARY_EXTENSIONS:
        return BINARY_EXTENSIONS[mime_type]
    if mime_type.startswith("text/") or not binary:
        return DEFAULT_TEXT_EXTENSION
    return DEFAULT_BINARY_EXTENSION


def _attachment_filename(ext: str) -> str:
    return f"{uuid.uuid4()}{ATTACHMENT_INFIX}{ext.lstrip('.')}"


def write_text(output_dir: Path, name: str, content: str, mime_type: str = "text/plain") -> Attachment | None:
    """Write string content as an attachment file."""
    filename = _attachment_filename(extension_for(mime_type))
    try:
        output_dir.mkdir(parents=True, exist_ok=True)
        (output_dir / filename).write_text(content, encoding="utf-8")
    except OSError as exc:
        logger.warning("Failed to write attachment %r: %s", name, exc)
        return None
    return Attachment(name=name, source=filename, type=mime_type)


def write_bytes(output_dir: Path, name: str, data: bytes, mime_type: str) -> Attachment | None:
    """Write binary content as an attachment file."""
    filename = _attachment_filename(extension_for(mime_type, binary=True))
    try:
        output_dir.mkdir(parents=True, exist_ok=True)
        (output_dir / filename).write_bytes(data)
    except OSError as exc:
        logger.warning("Failed to write attachment %r: %s", name, exc)
        return None
    return Attachment(name=name, source=filename, type=mime_type)


def copy_file(
    output_dir: Path,
    source: Path | str,
    name: str,
    mime_type: str,
    ext: str | None = None,
) -> Attachment | None:
    """Copy an existing file into the results directory.

    Returns None when the source is missing or empty, so a partially
    produced artifact is never referenced.
    """
    src = Path(source)
    try:
        if not src.is_file() or src.stat().st_size == 0:
            logger.debug("Skipping attachment %r: %s is missing or empty", name, src)
            return None
        filename = _attachment_filename(ext or extension_for(mime_type, binary=True))
        output_dir.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(src, output_dir / filename)
    except OSError as exc:
        logger.warning("Failed to copy attachment %r from %s: %s", name, src, exc)
        return None
    return Attachment(name=name, source=filename, type=mime_type)
