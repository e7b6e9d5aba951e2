"""Unit tests for spec snapshot diffing."""

from __future__ import annotations

from spec_reconciler.spec_graph.builder import build_spec_graph_from_texts
from spec_reconciler.spec_graph.diff import (
    count_changed_lines,
    diff_against_hashes,
    diff_spec_graphs,
)
from spec_reconciler.spec_graph.graph import SpecGraph


def _graph(texts: dict[str, str]) -> SpecGraph:
    return build_spec_graph_from_texts(texts).graph


def test_first_snapshot_counts_everything_as_added() -> None:
    graph = _graph({"a.md": "# A\nLine one.\nLine two.\n"})
    diff = diff_spec_graphs(None, graph)

    assert diff.added == ("a.md#a",)
    assert diff.touched == ("a.md#a",)
    assert diff.spec_lines_changed == 2


def test_changed_and_removed_nodes() -> None:
    before = _graph({"a.md": "# A\nOld text.\n\n# B\nGone soon.\n"})
    after = _graph({"a.md": "# A\nNew text.\n\n# C\nFresh.\n"})

    diff = diff_spec_graphs(before, after)

    assert diff.changed == ("a.md#a",)
    assert diff.removed == ("a.md#b",)
    assert diff.added == ("a.md#c",)
    assert diff.touched == ("a.md#a", "a.md#c")
    # one deleted + one inserted line for A, one line removed, one line added
    assert diff.spec_lines_changed == 4


def test_identical_snapshots_are_empty() -> None:
    graph = _graph({"a.md": "# A\nText.\n"})
    assert diff_spec_graphs(graph, graph).is_empty


def test_diff_against_persisted_hashes_without_texts() -> None:
    before = _graph({"a.md": "# A\nOld.\n"})
    after = _graph({"a.md": "# A\nNew.\nMore.\n"})

    diff = diff_against_hashes({n.node_id: n.content_hash for n in before}, after)

    assert diff.changed == ("a.md#a",)
    assert diff.spec_lines_changed == 2


def test_count_changed_lines() -> None:
    assert count_changed_lines("a\nb\nc", "a\nB\nc") == 2
    assert count_changed_lines("same", "same") == 0
