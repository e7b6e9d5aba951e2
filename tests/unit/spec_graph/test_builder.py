"""
spec-reconciler — unit tests for spec graph construction

File: tests/unit/spec_graph/test_builder.py
Last updated: 2026-10-17

Purpose
- Validate edge resolution and structural issue reporting.

What this test file should cover
- ``specifies`` edges point from the refining node to its parent.
- Broken links, non-spec targets and malformed declarations are errors.
- One cycle issue per cyclic component; orphans and empty headings warn.
"""

from __future__ import annotations

from pathlib import Path

from spec_reconciler.domain.models import IssueKind, NodeKind, Severity
from spec_reconciler.spec_graph.builder import (
    BuildResult,
    build_spec_graph,
    build_spec_graph_from_texts,
)


def _kinds(result: BuildResult) -> list[IssueKind]:
    return [issue.kind for issue in result.issues]


def test_edges_point_from_child_to_parent() -> None:
    result = build_spec_graph_from_texts(
        {
            "product.md": "# Product\nA todo app.\n",
            "api.md": "# Create item\nspecifies: product.md#product\n\nPOST /items.\n",
        }
    )
    graph = result.graph

    assert result.issues == ()
    assert graph.parents("api.md#create-item") == ("product.md#product",)
    assert graph.children("product.md#product") == ("api.md#create-item",)
    assert graph.node("api.md#create-item").kind is NodeKind.BEHAVIORAL
    assert graph.node("product.md#product").kind is NodeKind.INTENT


def test_targets_resolve_relative_to_declaring_file() -> None:
    result = build_spec_graph_from_texts(
        {
            "docs/root.md": "# Root\nTop.\n",
            "docs/leaf.md": "# Leaf\nspecifies: root.md#root\n\nDetail.\n",
        }
    )
    assert result.errors == ()
    assert result.graph.has_edge("docs/leaf.md#leaf", "docs/root.md#root")


def test_broken_link_to_missing_heading_and_file() -> None:
    result = build_spec_graph_from_texts(
        {
            "a.md": "# A\nspecifies: b.md#nope\nspecifies: ghost.md#x\n\nText.\n",
            "b.md": "# B\nText.\n",
        }
    )

    broken = [issue for issue in result.issues if issue.kind is IssueKind.BROKEN_LINK]
    assert len(broken) == 2
    assert all(issue.severity is Severity.ERROR for issue in broken)
    assert {issue.locations for issue in broken} == {
        ("a.md#a->b.md#nope",),
        ("a.md#a->ghost.md#x",),
    }
    assert result.graph.edges == ()


def test_non_spec_target_is_reported(tmp_path: Path) -> None:
    (tmp_path / "notes.txt").write_text("plain", encoding="utf-8")
    (tmp_path / "a.md").write_text("# A\nspecifies: notes.txt#intro\n\nText.\n", encoding="utf-8")

    result = build_spec_graph(tmp_path)

    assert IssueKind.NON_SPEC_TARGET in _kinds(result)
    assert len(result.graph) == 1


def test_two_node_cycle_reported_once() -> None:
    result = build_spec_graph_from_texts(
        {
            "a.md": "# A\nspecifies: b.md#b\n\nText.\n",
            "b.md": "# B\nspecifies: a.md#a\n\nText.\n",
        }
    )

    cycles = [issue for issue in result.issues if issue.kind is IssueKind.CYCLE]
    assert len(cycles) == 1
    assert cycles[0].locations == ("a.md#a", "b.md#b")
    assert cycles[0].is_blocking


def test_orphan_versus_outgoing_only_node() -> None:
    result = build_spec_graph_from_texts(
        {
            "lonely.md": "# Lonely\nNothing links here.\n",
            "child.md": "# Child\nspecifies: parent.md#parent\n\nText.\n",
            "parent.md": "# Parent\nText.\n",
        }
    )

    orphans = [issue.locations for issue in result.issues if issue.kind is IssueKind.ORPHAN]
    assert orphans == [("lonely.md#lonely",)]


def test_missing_description_and_malformed_declaration() -> None:
    result = build_spec_graph_from_texts(
        {"a.md": "# Empty\n\n# Other\nBody text.\nspecifies: a.md#empty\n"}
    )

    by_kind = {issue.kind: issue for issue in result.issues}
    assert by_kind[IssueKind.MISSING_DESCRIPTION].severity is Severity.WARNING
    assert by_kind[IssueKind.MISSING_DESCRIPTION].locations == ("a.md#empty",)
    assert by_kind[IssueKind.MALFORMED_DECLARATION].severity is Severity.ERROR
    assert by_kind[IssueKind.MALFORMED_DECLARATION].locations == ("a.md#other",)


def test_build_from_directory_skips_hidden_and_reports_unreadable(tmp_path: Path) -> None:
    (tmp_path / "good.md").write_text("# Good\nText.\n", encoding="utf-8")
    (tmp_path / "bad.md").write_bytes(b"# Bad\n\xff\xfe\n")
    hidden = tmp_path / ".cache"
    hidden.mkdir()
    (hidden / "skip.md").write_text("# Skip\nText.\n", encoding="utf-8")

    result = build_spec_graph(tmp_path)

    assert [node.node_id for node in result.graph] == ["good.md#good"]
    unreadable = [issue for issue in result.issues if issue.kind is IssueKind.UNREADABLE_FILE]
    assert [issue.locations for issue in unreadable] == [("bad.md",)]


def test_issue_order_is_deterministic() -> None:
    texts = {
        "a.md": "# A\nspecifies: b.md#b\n\nText.\n",
        "b.md": "# B\nspecifies: a.md#a\n\nText.\n",
        "c.md": "# C\n",
    }
    first = build_spec_graph_from_texts(texts)
    second = build_spec_graph_from_texts(dict(reversed(list(texts.items()))))

    assert first.issues == second.issues
    assert first.graph.snapshot_hash == second.graph.snapshot_hash
