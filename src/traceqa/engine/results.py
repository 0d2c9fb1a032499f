"""TraceQA Result Assembler — turns finished test state into Allure result documents.

Each finished test is converted into a ``TestResult`` as soon as its artifacts
are available (attachment files are copied at that point) but the result
documents themselves are buffered. At run end the assembler computes the
common package prefix across every result of the run, rewrites the
``parentSuite`` label accordingly and only then writes:

- one ``<uuid>-result.json`` per test,
- ``environment.properties`` (runtime facts),
- ``categories.json`` (fixed failure categories).
"""

from __future__ import annotations

import dataclasses
import hashlib
import json
import locale
import logging
import platform
import traceback
import uuid
from collections.abc import Iterable
from importlib import metadata
from pathlib import Path
from typing import Any

import pytest

from traceqa.engine import attachments
from traceqa.engine.context import Attachment, Label, Link, Parameter, Step, StatusDetails
from traceqa.engine.state import (
    OUTCOME_ERROR,
    OUTCOME_FAIL,
    OUTCOME_STATUS,
    AssertionRecord,
    TestCaseState,
)
from traceqa.models import (
    CATEGORIES,
    CATEGORIES_FILENAME,
    ENVIRONMENT_FILENAME,
    FRAMEWORK,
    FRAMEWORK_TAG,
    HAR_MIME,
    LANGUAGE,
    RESULT_SUFFIX,
    THREAD,
    TRACE_MIME,
)

logger = logging.getLogger("traceqa.engine.results")

CONTEXT_SEPARATOR = " > "


def md5_hex(text: str) -> str:
    return hashlib.md5(text.encode("utf-8")).hexdigest()


def namespace_package(namespace: str) -> str:
    """``"pkg.sub.test_mod"`` -> ``"pkg.sub"``; top-level modules have no package."""
    package, _, _ = namespace.rpartition(".")
    return package


def dumps(data: Any) -> str:
    return json.dumps(data, indent=2, ensure_ascii=False)


# ---------------------------------------------------------------------------
# Common-prefix inference
# ---------------------------------------------------------------------------


def common_package_prefix(packages: Iterable[str]) -> str | None:
    """Longest shared leading dot-segment sequence across the distinct packages.

    One distinct value is returned unchanged. None means no correction should
    be applied: there were no packages at all, or the values share no leading
    segment.
    """
    distinct = sorted({p for p in packages if p})
    if not distinct:
        return None
    if len(distinct) == 1:
        return distinct[0]

    common: list[str] = []
    for segments in zip(*(p.split(".") for p in distinct)):
        if any(s != segments[0] for s in segments):
            break
        common.append(segments[0])
    return ".".join(common) or None


def shared_context_prefix(assertions: list[AssertionRecord]) -> str | None:
    """The testing-context prefix every describable assertion shares, if any."""
    describable = [a for a in assertions if a.describable]
    if not describable or any(not a.context for a in describable):
        return None

    common: list[str] = []
    for segments in zip(*(a.context.split(CONTEXT_SEPARATOR) for a in describable)):  # type: ignore[union-attr]
        if any(s != segments[0] for s in segments):
            break
        common.append(segments[0])
    return CONTEXT_SEPARATOR.join(common) or None


# ---------------------------------------------------------------------------
# Result document
# ---------------------------------------------------------------------------


@dataclasses.dataclass
class TestResult:
    """One Allure test-result document."""

    __test__ = False  # not a pytest test class

    uuid: str
    history_id: str
    full_name: str
    name: str
    status: str
    start: int
    stop: int
    labels: list[Label] = dataclasses.field(default_factory=list)
    parameters: list[Parameter] = dataclasses.field(default_factory=list)
    links: list[Link] = dataclasses.field(default_factory=list)
    status_details: StatusDetails | None = None
    attachments: list[Attachment] = dataclasses.field(default_factory=list)
    steps: list[Step] = dataclasses.field(default_factory=list)
    description: str | None = None

    @property
    def filename(self) -> str:
        return f"{self.uuid}{RESULT_SUFFIX}"

    def label(self, name: str) -> str | None:
        for label in self.labels:
            if label.name == name:
                return label.value
        return None

    def set_label(self, name: str, value: str, after: str = "suite") -> None:
        """Replace the first label called *name*, or insert it after *after*."""
        set_label_value(self.labels, name, value, after)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "uuid": self.uuid,
            "historyId": self.history_id,
            "testCaseId": self.history_id,
            "fullName": self.full_name,
            "name": self.name,
            "status": self.status,
            "stage": "finished",
            "start": self.start,
            "stop": self.stop,
            "labels": [dataclasses.asdict(label) for label in self.labels],
            "parameters": [dataclasses.asdict(p) for p in self.parameters],
            "links": [dataclasses.asdict(link) for link in self.links],
        }
        if self.status_details is not None:
            data["statusDetails"] = self.status_details.to_dict()
        if self.attachments:
            data["attachments"] = [dataclasses.asdict(a) for a in self.attachments]
        if self.steps:
            data["steps"] = [step.to_dict() for step in self.steps]
        if self.description:
            data["description"] = self.description
        return data


def set_label_value(
    labels: list[Any], name: str, value: str, after: str = "suite", as_dict: bool = False
) -> None:
    """Works on both ``Label`` objects and already-serialized label dicts."""

    def _name(label: Any) -> str:
        return label["name"] if isinstance(label, dict) else label.name

    for label in labels:
        if _name(label) == name:
            if isinstance(label, dict):
                label["value"] = value
            else:
                label.value = value
            return
    position = next((i + 1 for i, label in enumerate(labels) if _name(label) == after), 0)
    new = {"name": name, "value": value} if as_dict else Label(name, value)
    labels.insert(position, new)


# ---------------------------------------------------------------------------
# Building blocks
# ---------------------------------------------------------------------------


def build_labels(state: TestCaseState, hostname: str | None) -> list[Label]:
    package = namespace_package(state.namespace)
    prefix = shared_context_prefix(state.assertions)
    labels = [Label("suite", state.namespace)]
    if package:
        labels.append(Label("parentSuite", package))
    if prefix:
        labels.append(Label("subSuite", prefix.split(CONTEXT_SEPARATOR)[0]))
    if hostname:
        labels.append(Label("host", hostname))
    labels.extend(
        [
            Label("thread", THREAD),
            Label("language", LANGUAGE),
            Label("framework", FRAMEWORK),
            Label("tag", FRAMEWORK_TAG),
        ]
    )
    if package:
        labels.append(Label("package", package))
    labels.append(Label("testClass", state.test_class))
    labels.append(Label("testMethod", state.test_name))
    return labels


def build_display_name(state: TestCaseState) -> str:
    prefix = shared_context_prefix(state.assertions)
    if prefix:
        return f"{prefix}{CONTEXT_SEPARATOR}{state.test_name}"
    return state.test_name


def _assertion_step_name(a: AssertionRecord) -> str:
    if a.context and a.message:
        return f"{a.context}{CONTEXT_SEPARATOR}{a.message}"
    if a.context:
        return f"{a.context}{CONTEXT_SEPARATOR}{a.expected!r}"
    if a.message:
        return a.message
    return repr(a.expected)


def build_steps_from_assertions(assertions: list[AssertionRecord], start: int, stop: int) -> list[Step]:
    """One step per describable assertion, used when the test recorded no steps."""
    steps = []
    for a in assertions:
        if not a.describable:
            continue
        step = Step(name=_assertion_step_name(a), status=OUTCOME_STATUS[a.type], start=start, stop=stop)
        if a.expected is not None:
            step.parameters.append(Parameter("expected", repr(a.expected)))
        if a.actual is not None:
            step.parameters.append(Parameter("actual", repr(a.actual)))
        if a.type == OUTCOME_FAIL:
            step.status_details = StatusDetails(message=a.message or "Assertion failed")
        elif a.type == OUTCOME_ERROR:
            step.status_details = StatusDetails(message=a.message or "Unexpected error")
        steps.append(step)
    return steps


def format_trace(error: BaseException | None) -> str | None:
    if error is None:
        return None
    return "".join(traceback.format_exception(type(error), error, error.__traceback__))


def build_status_details(state: TestCaseState) -> StatusDetails | None:
    """Top-level details from the first failure (or the skip reason)."""
    record = state.first_failure or state.skip_reason
    if record is None:
        return None
    message = record.message or (str(record.error) if record.error else "") or "Test failed"
    if record.expected is not None:
        message += f"\nExpected: {record.expected!r}\nActual: {record.actual!r}"
    return StatusDetails(message=message, trace=format_trace(record.error))


# ---------------------------------------------------------------------------
# Environment facts
# ---------------------------------------------------------------------------


def environment_facts(project_version: str | None = None, commit_author: str | None = None) -> dict[str, str]:
    facts = {
        "python.version": platform.python_version(),
        "python.implementation": platform.python_implementation(),
        "os.name": platform.system(),
        "os.arch": platform.machine(),
        "os.version": platform.release(),
        "file.encoding": locale.getpreferredencoding(False),
        "pytest.version": pytest.__version__,
    }
    try:
        facts["traceqa.version"] = metadata.version("traceqa")
    except metadata.PackageNotFoundError:
        pass
    if project_version:
        facts["project.version"] = project_version
    if commit_author:
        facts["commit.author"] = commit_author
    return facts


def write_environment(output_dir: Path, facts: dict[str, str]) -> Path:
    path = output_dir / ENVIRONMENT_FILENAME
    lines = [f"{key} = {value}" for key, value in facts.items()]
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


def write_categories(output_dir: Path) -> Path:
    path = output_dir / CATEGORIES_FILENAME
    path.write_text(dumps(CATEGORIES), encoding="utf-8")
    return path


# ---------------------------------------------------------------------------
# Assembler
# ---------------------------------------------------------------------------


class ResultAssembler:
    """Builds results from finished test state and buffers them until the run ends."""

    def __init__(self, output_dir: Path, hostname: str | None = None) -> None:
        self.output_dir = output_dir
        self.hostname = hostname
        self.pending: list[TestResult] = []

    def assemble(self, state: TestCaseState) -> TestResult:
        """Convert *state* into a result, copy its artifacts and buffer it."""
        ctx = state.context
        stop = state.stop if state.stop is not None else state.start
        stop = max(stop, state.start)

        if ctx is not None and ctx.steps:
            steps = list(ctx.steps)
        else:
            steps = build_steps_from_assertions(state.assertions, state.start, stop)

        io_attachments = [
            self._text_attachment("Full stdout log", state.stdout),
            self._text_attachment("Full stderr log", state.stderr),
        ]
        if state.trace_path is not None:
            io_attachments.append(
                attachments.copy_file(self.output_dir, state.trace_path, "Playwright Trace", TRACE_MIME, ext="zip")
            )
        if state.har_path is not None:
            io_attachments.append(
                attachments.copy_file(self.output_dir, state.har_path, "Network Activity (HAR)", HAR_MIME, ext="har")
            )

        result = TestResult(
            uuid=str(uuid.uuid4()),
            history_id=md5_hex(state.full_name),
            full_name=state.full_name,
            name=build_display_name(state),
            status=state.result_status,
            start=state.start,
            stop=stop,
            labels=build_labels(state, self.hostname) + (list(ctx.labels) if ctx else []),
            parameters=list(ctx.parameters) if ctx else [],
            links=list(ctx.links) if ctx else [],
            status_details=build_status_details(state),
            attachments=[a for a in io_attachments if a is not None] + (list(ctx.attachments) if ctx else []),
            steps=steps,
            description=ctx.description if ctx else None,
        )
        self.pending.append(result)
        logger.debug("Buffered result %s for %s (%s)", result.uuid, state.full_name, result.status)
        return result

    def _text_attachment(self, name: str, content: str) -> Attachment | None:
        if not content or not content.strip():
            return None
        return attachments.write_text(self.output_dir, name, content)

    # ── Finalize ─────────────────────────────────────────────────────────

    def _existing_result_files(self) -> list[Path]:
        own = {result.filename for result in self.pending}
        if not self.output_dir.is_dir():
            return []
        return sorted(p for p in self.output_dir.glob(f"*{RESULT_SUFFIX}") if p.name not in own)

    def _read_existing(self) -> dict[Path, dict[str, Any]]:
        existing: dict[Path, dict[str, Any]] = {}
        for path in self._existing_result_files():
            try:
                existing[path] = json.loads(path.read_text(encoding="utf-8"))
            except (json.JSONDecodeError, OSError) as exc:
                logger.warning("Ignoring unreadable result file %s: %s", path, exc)
        return existing

    def correct_parent_suite(self) -> str | None:
        """Rewrite ``parentSuite`` on every result of the run to the common prefix.

        Also covers result files left in the output directory by earlier
        invocations. Returns the prefix applied, or None.
        """
        existing = self._read_existing()
        packages = [result.label("package") or "" for result in self.pending]
        for data in existing.values():
            packages.extend(
                label.get("value", "") for label in data.get("labels", []) if label.get("name") == "package"
            )

        prefix = common_package_prefix(packages)
        if prefix is None:
            logger.debug("No common package prefix across %d result(s)", len(packages))
            return None

        for result in self.pending:
            result.set_label("parentSuite", prefix)
        for path, data in existing.items():
            set_label_value(data.setdefault("labels", []), "parentSuite", prefix, as_dict=True)
            try:
                path.write_text(dumps(data), encoding="utf-8")
            except OSError as exc:
                logger.warning("Failed to rewrite %s: %s", path, exc)
        logger.info("Corrected parentSuite to %r", prefix)
        return prefix

    def flush(self, facts: dict[str, str]) -> list[Path]:
        """Correct, then write every buffered result plus the run-level documents."""
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self.correct_parent_suite()

        written: list[Path] = []
        for result in self.pending:
            path = self.output_dir / result.filename
            try:
                path.write_text(dumps(result.to_dict()), encoding="utf-8")
            except OSError as exc:
                logger.warning("Failed to write result %s: %s", path, exc)
                continue
            written.append(path)
        self.pending.clear()

        written.append(write_environment(self.output_dir, facts))
        written.append(write_categories(self.output_dir))
        logger.info("Wrote %d result file(s) to %s", len(written) - 2, self.output_dir)
        return written
