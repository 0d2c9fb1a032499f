"""Unit tests for traceqa.engine.results — result documents and parent-suite correction."""

from __future__ import annotations

import hashlib
import json
from pathlib import Path

import pytest

from conftest import label_values, read_results
from traceqa.engine.context import TestContext
from traceqa.engine.results import (
    ResultAssembler,
    build_display_name,
    build_labels,
    build_status_details,
    build_steps_from_assertions,
    common_package_prefix,
    environment_facts,
    shared_context_prefix,
)
from traceqa.engine.state import AssertionRecord, TestCaseState
from traceqa.models import ATTACHMENT_INFIX


def _make_state(**overrides) -> TestCaseState:
    defaults = {
        "namespace": "shop.tests.test_cart",
        "test_name": "test_add_item",
        "full_name": "shop.tests.test_cart.test_add_item",
        "start": 1000,
        "stop": 1500,
        "ended": True,
    }
    defaults.update(overrides)
    return TestCaseState(**defaults)


def _make_record(**overrides) -> AssertionRecord:
    defaults = {"type": "pass", "message": "item added"}
    defaults.update(overrides)
    return AssertionRecord(**defaults)


def _write_result(results_dir: Path, name: str, package: str) -> Path:
    results_dir.mkdir(parents=True, exist_ok=True)
    path = results_dir / f"{name}-result.json"
    doc = {
        "uuid": name,
        "fullName": f"{package}.test_mod.{name}",
        "status": "passed",
        "labels": [
            {"name": "suite", "value": f"{package}.test_mod"},
            {"name": "parentSuite", "value": package},
            {"name": "package", "value": package},
        ],
    }
    path.write_text(json.dumps(doc), encoding="utf-8")
    return path


# ---------------------------------------------------------------------------
# 1. Common package prefix
# ---------------------------------------------------------------------------

class TestCommonPackagePrefix:
    """Longest shared leading dot-segment sequence over distinct packages."""

    def test_shared_prefix(self):
        assert common_package_prefix(["a.b.c", "a.b.d", "a.b"]) == "a.b"

    def test_single_value_is_itself(self):
        assert common_package_prefix(["a.b.c"]) == "a.b.c"
        assert common_package_prefix(["a.b.c", "a.b.c"]) == "a.b.c"

    def test_nothing_shared_means_no_correction(self):
        assert common_package_prefix(["a.b", "x.y"]) is None

    def test_empty_means_no_correction(self):
        assert common_package_prefix([]) is None
        assert common_package_prefix(["", ""]) is None

    def test_segments_not_characters(self):
        assert common_package_prefix(["app.core", "app.cores"]) == "app"


class TestSharedContextPrefix:
    def test_prefix_across_describable_assertions(self):
        records = [
            _make_record(context="Cart > empty"),
            _make_record(context="Cart > full"),
            AssertionRecord(type="pass"),
        ]
        assert shared_context_prefix(records) == "Cart"

    def test_missing_context_means_none(self):
        records = [_make_record(context="Cart"), _make_record(context=None)]
        assert shared_context_prefix(records) is None


# ---------------------------------------------------------------------------
# 2. Labels and names
# ---------------------------------------------------------------------------

class TestLabels:
    """Labels are emitted in a fixed order, then in-test labels."""

    def test_label_order(self):
        labels = build_labels(_make_state(), "ci-host")
        assert [label.name for label in labels] == [
            "suite",
            "parentSuite",
            "host",
            "thread",
            "language",
            "framework",
            "tag",
            "package",
            "testClass",
            "testMethod",
        ]

    def test_label_values(self):
        values = {label.name: label.value for label in build_labels(_make_state(), "ci-host")}
        assert values["suite"] == "shop.tests.test_cart"
        assert values["parentSuite"] == "shop.tests"
        assert values["package"] == "shop.tests"
        assert values["language"] == "python"
        assert values["framework"] == "pytest"
        assert values["testClass"] == "shop.tests.test_cart"
        assert values["testMethod"] == "test_add_item"

    def test_sub_suite_from_shared_context(self):
        state = _make_state(assertions=[_make_record(context="Cart > add")])
        values = {label.name: label.value for label in build_labels(state, None)}
        assert values["subSuite"] == "Cart"
        assert "host" not in values

    def test_top_level_module_has_no_package(self):
        state = _make_state(namespace="test_cart", full_name="test_cart.test_add_item")
        names = [label.name for label in build_labels(state, None)]
        assert "package" not in names
        assert "parentSuite" not in names

    def test_display_name_with_shared_context(self):
        state = _make_state(assertions=[_make_record(context="Cart"), _make_record(context="Cart")])
        assert build_display_name(state) == "Cart > test_add_item"

    def test_display_name_without_context(self):
        assert build_display_name(_make_state()) == "test_add_item"


# ---------------------------------------------------------------------------
# 3. Steps and status details from the assertion log
# ---------------------------------------------------------------------------

class TestAssertionSteps:
    def test_one_step_per_describable_assertion(self):
        records = [
            _make_record(message="first"),
            AssertionRecord(type="pass"),
            _make_record(type="fail", message=None, expected=2, actual=3),
        ]
        steps = build_steps_from_assertions(records, 100, 200)
        assert [s.name for s in steps] == ["first", "2"]
        assert steps[1].status == "failed"
        assert steps[1].status_details.message == "Assertion failed"
        assert [(p.name, p.value) for p in steps[1].parameters] == [("expected", "2"), ("actual", "3")]

    def test_error_step_is_broken(self):
        steps = build_steps_from_assertions([_make_record(type="error", message="boom")], 0, 0)
        assert steps[0].status == "broken"
        assert steps[0].status_details.message == "boom"

    def test_context_prefixes_step_name(self):
        steps = build_steps_from_assertions([_make_record(context="Cart", message="has items")], 0, 0)
        assert steps[0].name == "Cart > has items"

    def test_status_details_from_first_failure(self):
        try:
            raise AssertionError("totals differ")
        except AssertionError as exc:
            error = exc
        state = _make_state()
        state.record(_make_record(type="fail", message="totals differ", expected=10, actual=12, error=error))
        state.record(_make_record(type="error", message="later"))
        details = build_status_details(state)
        assert details.message == "totals differ\nExpected: 10\nActual: 12"
        assert "AssertionError: totals differ" in details.trace

    def test_no_details_when_passed(self):
        assert build_status_details(_make_state()) is None


# ---------------------------------------------------------------------------
# 4. ResultAssembler
# ---------------------------------------------------------------------------

class TestResultAssembler:
    def test_result_document_fields(self, results_dir: Path):
        assembler = ResultAssembler(results_dir, "ci-host")
        result = assembler.assemble(_make_state())
        data = result.to_dict()
        expected_id = hashlib.md5(b"shop.tests.test_cart.test_add_item").hexdigest()
        assert data["historyId"] == expected_id
        assert data["testCaseId"] == expected_id
        assert data["stage"] == "finished"
        assert data["status"] == "passed"
        assert (data["start"], data["stop"]) == (1000, 1500)
        assert "statusDetails" not in data
        assert "steps" not in data

    def test_context_metadata_is_carried(self, results_dir: Path):
        ctx = TestContext()
        ctx.open_marker_step("Login")
        ctx.add_label("epic", "Shop")
        ctx.add_parameter("browser", "chromium")
        ctx.add_link("SHOP-1", "https://issues.example/SHOP-1", "issue")
        ctx.set_description("Adds an item")
        result = ResultAssembler(results_dir).assemble(_make_state(context=ctx))
        data = result.to_dict()
        assert data["steps"][0]["name"] == "Login"
        assert data["labels"][-1] == {"name": "epic", "value": "Shop"}
        assert data["parameters"] == [{"name": "browser", "value": "chromium"}]
        assert data["links"][0]["type"] == "issue"
        assert data["description"] == "Adds an item"

    def test_output_logs_attached_only_when_not_blank(self, results_dir: Path):
        assembler = ResultAssembler(results_dir)
        result = assembler.assemble(_make_state(stdout="hello\n", stderr="  \n"))
        (attachment,) = result.attachments
        assert attachment.name == "Full stdout log"
        assert attachment.type == "text/plain"
        assert attachment.source.endswith(f"{ATTACHMENT_INFIX}txt")
        assert (results_dir / attachment.source).read_text(encoding="utf-8") == "hello\n"

    def test_stop_clamped_to_start(self, results_dir: Path):
        result = ResultAssembler(results_dir).assemble(_make_state(stop=None))
        assert result.stop == result.start


class TestParentSuiteCorrection:
    """parentSuite is rewritten to the common prefix across the whole run."""

    def test_correction_across_pending_results(self, results_dir: Path):
        assembler = ResultAssembler(results_dir)
        assembler.assemble(_make_state(namespace="shop.api.test_a", full_name="shop.api.test_a.t"))
        assembler.assemble(_make_state(namespace="shop.ui.test_b", full_name="shop.ui.test_b.t"))
        assembler.flush({"python.version": "3"})

        docs = read_results(results_dir)
        assert [label_values(d, "parentSuite") for d in docs] == [["shop"], ["shop"]]
        assert [label_values(d, "package") for d in docs] == [["shop.api"], ["shop.ui"]]

    def test_existing_result_files_are_rewritten(self, results_dir: Path):
        earlier = _write_result(results_dir, "earlier", "shop.legacy")
        assembler = ResultAssembler(results_dir)
        assembler.assemble(_make_state(namespace="shop.api.test_a", full_name="shop.api.test_a.t"))
        assembler.flush({})

        rewritten = json.loads(earlier.read_text(encoding="utf-8"))
        assert label_values(rewritten, "parentSuite") == ["shop"]

    def test_no_shared_segment_leaves_labels(self, results_dir: Path):
        assembler = ResultAssembler(results_dir)
        assembler.assemble(_make_state(namespace="alpha.test_a", full_name="alpha.test_a.t"))
        assembler.assemble(_make_state(namespace="beta.test_b", full_name="beta.test_b.t"))
        assert assembler.correct_parent_suite() is None
        assert [r.label("parentSuite") for r in assembler.pending] == ["alpha", "beta"]

    def test_zero_results_no_correction(self, results_dir: Path):
        assert ResultAssembler(results_dir).correct_parent_suite() is None

    def test_unreadable_existing_file_is_ignored(self, results_dir: Path):
        results_dir.mkdir(parents=True)
        (results_dir / "broken-result.json").write_text("{not json", encoding="utf-8")
        assembler = ResultAssembler(results_dir)
        assembler.assemble(_make_state())
        assert assembler.correct_parent_suite() == "shop.tests"


# ---------------------------------------------------------------------------
# 5. Run-level documents
# ---------------------------------------------------------------------------

class TestRunDocuments:
    def test_flush_writes_environment_and_categories(self, results_dir: Path):
        assembler = ResultAssembler(results_dir)
        assembler.assemble(_make_state())
        written = assembler.flush({"python.version": "3.12.1", "commit.author": "ci"})

        assert len(written) == 3
        assert assembler.pending == []
        env = (results_dir / "environment.properties").read_text(encoding="utf-8")
        assert "python.version = 3.12.1\n" in env
        assert "commit.author = ci\n" in env
        categories = json.loads((results_dir / "categories.json").read_text(encoding="utf-8"))
        assert [c["name"] for c in categories] == ["Assertion failures", "Unexpected errors"]
        assert categories[0]["matchedStatuses"] == ["failed"]
        assert categories[1]["matchedStatuses"] == ["broken"]

    def test_environment_facts(self):
        facts = environment_facts(project_version="1.2.3", commit_author="dev")
        assert facts["pytest.version"] == pytest.__version__
        assert facts["project.version"] == "1.2.3"
        assert facts["commit.author"] == "dev"
        for key in ("python.version", "os.name", "os.arch", "file.encoding"):
            assert key in facts

    def test_optional_facts_omitted(self):
        facts = environment_facts()
        assert "project.version" not in facts
        assert "commit.author" not in facts
