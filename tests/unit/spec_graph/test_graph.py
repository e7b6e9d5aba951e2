"""Unit tests for spec graph relations and cycle detection."""

from __future__ import annotations

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from spec_reconciler.domain.models import SpecEdge, SpecNode
from spec_reconciler.spec_graph.graph import SpecGraph


def _node(name: str, text: str = "Text.") -> SpecNode:
    return SpecNode(file_path=f"{name}.md", heading_id=name, title=name.upper(), text=text)


def _graph(names: list[str], edges: list[tuple[str, str]]) -> SpecGraph:
    return SpecGraph(
        [_node(name) for name in names],
        [SpecEdge(source=f"{s}.md#{s}", target=f"{t}.md#{t}") for s, t in edges],
    )


def _has_cycle_reference(names: list[str], edges: list[tuple[str, str]]) -> bool:
    adjacency: dict[str, set[str]] = {name: set() for name in names}
    for source, target in edges:
        adjacency[source].add(target)
    remaining = dict(adjacency)
    while True:
        sinks = [name for name, targets in remaining.items() if not targets & remaining.keys()]
        if not sinks:
            return bool(remaining)
        for name in sinks:
            del remaining[name]


def test_relations() -> None:
    graph = _graph(["p", "a", "b", "c"], [("a", "p"), ("b", "p"), ("c", "a")])

    assert graph.parents("a.md#a") == ("p.md#p",)
    assert graph.children("p.md#p") == ("a.md#a", "b.md#b")
    assert graph.siblings("a.md#a") == ("b.md#b",)
    assert graph.neighborhood("a.md#a") == ("b.md#b", "c.md#c", "p.md#p")
    assert graph.sibling_pairs() == (("a.md#a", "b.md#b"),)
    assert graph.parent_child_pairs() == (
        ("a.md#a", "c.md#c"),
        ("p.md#p", "a.md#a"),
        ("p.md#p", "b.md#b"),
    )
    assert graph.orphans() == ()
    assert graph.detect_cycles() == ()


def test_unknown_nodes_and_dangling_edges_raise() -> None:
    graph = _graph(["a"], [])
    with pytest.raises(KeyError):
        graph.node("missing.md#x")
    with pytest.raises(ValueError, match="edge target"):
        _graph(["a"], [("a", "b")])


def test_self_loop_is_a_cycle() -> None:
    graph = _graph(["a"], [("a", "a")])
    assert graph.detect_cycles() == (("a.md#a",),)


def test_cycles_reported_per_component() -> None:
    graph = _graph(
        ["a", "b", "c", "d", "e"],
        [("a", "b"), ("b", "a"), ("c", "d"), ("d", "e"), ("e", "c")],
    )
    assert graph.detect_cycles() == (
        ("a.md#a", "b.md#b"),
        ("c.md#c", "d.md#d", "e.md#e"),
    )


_NAMES = ["n0", "n1", "n2", "n3", "n4", "n5"]


@settings(max_examples=150)
@given(
    st.lists(
        st.tuples(st.sampled_from(_NAMES), st.sampled_from(_NAMES)),
        max_size=12,
    )
)
def test_cycle_detection_matches_reference(edges: list[tuple[str, str]]) -> None:
    graph = _graph(_NAMES, edges)
    assert bool(graph.detect_cycles()) == _has_cycle_reference(_NAMES, edges)
