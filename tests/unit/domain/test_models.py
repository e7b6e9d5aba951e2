"""
spec-reconciler — unit tests for domain models

File: tests/unit/domain/test_models.py
Last updated: 2026-10-17

Purpose
- Validate value semantics of the core spec and issue records.

What this test file should cover
- Content hashes change with text and are stable otherwise.
- Issue normalization (sorted unique locations, collapsed whitespace).
- Severity/confidence ordering helpers.
"""

from __future__ import annotations

import json

import pytest

from spec_reconciler.domain.models import (
    Confidence,
    Issue,
    IssueKind,
    NodeKind,
    ScopeOutcome,
    ScopeStatus,
    Severity,
    SpecEdge,
    SpecNode,
    TestCase,
    TestStatus,
    TraceLink,
    node_id_for,
)


def _node(text: str = "Body.") -> SpecNode:
    return SpecNode(file_path="auth.md", heading_id="login", title="Login", text=text)


def test_node_id_joins_path_and_heading() -> None:
    assert node_id_for("docs/auth.md", "login") == "docs/auth.md#login"


def test_content_hash_tracks_text_only_when_it_changes() -> None:
    original = _node()
    assert original.content_hash == _node().content_hash

    edited = original.with_text("Different body.")
    assert edited.content_hash != original.content_hash
    assert original.text == "Body."
    assert edited.node_id == original.node_id


def test_node_rejects_invalid_level() -> None:
    with pytest.raises(ValueError):
        SpecNode(file_path="a.md", heading_id="x", title="X", text="", level=7)


def test_node_kind_is_coerced_from_string() -> None:
    node = SpecNode(file_path="a.md", heading_id="x", title="X", text="t", kind="interface")
    assert node.kind is NodeKind.INTERFACE


def test_edge_id_uses_source_then_target() -> None:
    edge = SpecEdge(source="b.md#child", target="a.md#parent")
    assert edge.edge_id == "b.md#child->a.md#parent"


def test_issue_normalizes_locations_and_explanation() -> None:
    issue = Issue(
        kind=IssueKind.GAP,
        severity="warning",
        locations=("b.md#x", "a.md#y", "b.md#x"),
        explanation="  missing\n  detail  ",
    )
    assert issue.locations == ("a.md#y", "b.md#x")
    assert issue.explanation == "missing detail"
    assert issue.severity is Severity.WARNING
    assert not issue.is_blocking
    assert issue.dedupe_key == ("gap", ("a.md#y", "b.md#x"))


def test_issue_sort_key_puts_errors_first() -> None:
    warning = Issue(
        kind=IssueKind.ORPHAN, severity=Severity.WARNING, locations=("a",), explanation="w"
    )
    error = Issue(
        kind=IssueKind.CYCLE, severity=Severity.ERROR, locations=("z",), explanation="e"
    )
    assert sorted([warning, error], key=Issue.sort_key) == [error, warning]


def test_severity_and_confidence_helpers() -> None:
    assert Severity.ERROR.at_least(Severity.WARNING)
    assert not Severity.INFO.at_least(Severity.WARNING)
    assert Confidence.HIGH.cap(Confidence.MEDIUM) is Confidence.MEDIUM
    assert Confidence.LOW.cap(Confidence.HIGH) is Confidence.LOW


def test_trace_link_and_test_case_serialize_canonically() -> None:
    link = TraceLink(node_id="a.md#x", unit_path="src/x.py", confidence="high")
    payload = json.loads(link.to_json())
    assert payload == {"confidence": "high", "node_id": "a.md#x", "unit_path": "src/x.py"}

    case = TestCase(id="tc-1", node_id="a.md#x", name="test_x.py", content="def test(): ...")
    passed = case.with_status(TestStatus.PASS)
    assert case.status is TestStatus.UNKNOWN
    assert passed.status is TestStatus.PASS


def test_scope_status_failure_flags() -> None:
    assert ScopeStatus.FAILED.is_failure
    assert ScopeStatus.CONFLICT.is_failure
    assert not ScopeStatus.PASSED.is_failure

    outcome = ScopeOutcome(scope_id="scope-1", status=ScopeStatus.PASSED, node_ids=("a.md#x",))
    entry = outcome.to_report_entry()
    assert entry["scope_id"] == "scope-1"
    assert entry["status"] == "PASSED"
