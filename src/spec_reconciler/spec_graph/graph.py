"""
spec-reconciler — immutable specification graph

File: src/spec_reconciler/spec_graph/graph.py
Last updated: 2026-10-17

Purpose
- Hold one immutable snapshot of spec nodes and ``specifies`` edges.

Functional requirements
- Provide parent/child/sibling/neighborhood queries in deterministic order.
- Report every strongly connected component that contains a cycle exactly once.
- Expose a content-addressed ``snapshot_hash``.

Non-functional requirements
- Iterative traversal only; no recursion-depth dependence on corpus size.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from types import MappingProxyType

from spec_reconciler.domain.models import SpecEdge, SpecNode, edge_id_for
from spec_reconciler.utils.hashing import sha256_json

_WHITE = 0
_GREY = 1
_BLACK = 2


class SpecGraph:
    """Immutable spec snapshot. Edges point from the refining node to its parent."""

    __slots__ = ("_nodes", "_edges", "_parents", "_children", "_snapshot_hash")

    def __init__(self, nodes: Iterable[SpecNode], edges: Iterable[SpecEdge]) -> None:
        node_map: dict[str, SpecNode] = {}
        for node in nodes:
            if node.node_id in node_map:
                raise ValueError(f"duplicate spec node: {node.node_id}")
            node_map[node.node_id] = node

        edge_map: dict[str, SpecEdge] = {}
        parents: dict[str, set[str]] = {node_id: set() for node_id in node_map}
        children: dict[str, set[str]] = {node_id: set() for node_id in node_map}
        for edge in edges:
            if edge.source not in node_map:
                raise ValueError(f"edge source is not a node: {edge.source}")
            if edge.target not in node_map:
                raise ValueError(f"edge target is not a node: {edge.target}")
            edge_map.setdefault(edge.edge_id, edge)
            parents[edge.source].add(edge.target)
            children[edge.target].add(edge.source)

        self._nodes: Mapping[str, SpecNode] = MappingProxyType(dict(sorted(node_map.items())))
        self._edges: Mapping[str, SpecEdge] = MappingProxyType(dict(sorted(edge_map.items())))
        self._parents: Mapping[str, tuple[str, ...]] = MappingProxyType(
            {key: tuple(sorted(value)) for key, value in parents.items()}
        )
        self._children: Mapping[str, tuple[str, ...]] = MappingProxyType(
            {key: tuple(sorted(value)) for key, value in children.items()}
        )
        self._snapshot_hash = sha256_json(
            {
                "nodes": {node_id: node.content_hash for node_id, node in self._nodes.items()},
                "edges": sorted(self._edges),
            }
        )

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def nodes(self) -> Mapping[str, SpecNode]:
        return self._nodes

    @property
    def edges(self) -> tuple[SpecEdge, ...]:
        return tuple(self._edges.values())

    @property
    def snapshot_hash(self) -> str:
        return self._snapshot_hash

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._nodes

    def __iter__(self) -> Iterator[SpecNode]:
        return iter(self._nodes.values())

    def node(self, node_id: str) -> SpecNode:
        try:
            return self._nodes[node_id]
        except KeyError as exc:
            raise KeyError(f"unknown spec node: {node_id}") from exc

    def has_edge(self, source: str, target: str) -> bool:
        return edge_id_for(source, target) in self._edges

    # ------------------------------------------------------------------
    # Relations
    # ------------------------------------------------------------------

    def parents(self, node_id: str) -> tuple[str, ...]:
        """Nodes that ``node_id`` specifies (outgoing edge targets)."""
        self._assert_node(node_id)
        return self._parents[node_id]

    def children(self, node_id: str) -> tuple[str, ...]:
        """Nodes that specify ``node_id`` (incoming edge sources)."""
        self._assert_node(node_id)
        return self._children[node_id]

    def siblings(self, node_id: str) -> tuple[str, ...]:
        """Other children of any parent of ``node_id``."""
        self._assert_node(node_id)
        result: set[str] = set()
        for parent in self._parents[node_id]:
            result.update(self._children[parent])
        result.discard(node_id)
        return tuple(sorted(result))

    def neighborhood(self, node_id: str) -> tuple[str, ...]:
        """Direct neighborhood: parents, siblings and children (excluding the node)."""
        result = set(self.parents(node_id))
        result.update(self.siblings(node_id))
        result.update(self.children(node_id))
        result.discard(node_id)
        return tuple(sorted(result))

    def orphans(self) -> tuple[str, ...]:
        return tuple(
            node_id
            for node_id in self._nodes
            if not self._parents[node_id] and not self._children[node_id]
        )

    def sibling_pairs(self) -> tuple[tuple[str, str], ...]:
        pairs: set[tuple[str, str]] = set()
        for parent in self._nodes:
            kids = self._children[parent]
            for index, left in enumerate(kids):
                for right in kids[index + 1 :]:
                    pairs.add((left, right))
        return tuple(sorted(pairs))

    def parent_child_pairs(self) -> tuple[tuple[str, str], ...]:
        return tuple(sorted((edge.target, edge.source) for edge in self._edges.values()))

    # ------------------------------------------------------------------
    # Cycles
    # ------------------------------------------------------------------

    def detect_cycles(self) -> tuple[tuple[str, ...], ...]:
        """Return the node set of each cyclic strongly connected component.

        A three-colour DFS over outgoing edges yields the finishing order, and a
        second pass over reversed edges collects components. Components with
        more than one node, or a single node with a self-loop, are cycles.
        """
        finish_order = self._finish_order()
        assigned: set[str] = set()
        components: list[tuple[str, ...]] = []

        for root in reversed(finish_order):
            if root in assigned:
                continue
            assigned.add(root)
            members = [root]
            pending = [root]
            while pending:
                current = pending.pop()
                for neighbour in self._children[current]:
                    if neighbour not in assigned:
                        assigned.add(neighbour)
                        members.append(neighbour)
                        pending.append(neighbour)
            if len(members) > 1 or self.has_edge(root, root):
                components.append(tuple(sorted(members)))

        return tuple(sorted(components))

    def _finish_order(self) -> list[str]:
        state: dict[str, int] = {}
        order: list[str] = []

        for start in self._nodes:
            if state.get(start, _WHITE) != _WHITE:
                continue
            state[start] = _GREY
            frames: list[tuple[str, Iterator[str]]] = [(start, iter(self._parents[start]))]

            while frames:
                node, targets = frames[-1]
                try:
                    target = next(targets)
                except StopIteration:
                    frames.pop()
                    state[node] = _BLACK
                    order.append(node)
                    continue
                if state.get(target, _WHITE) == _WHITE:
                    state[target] = _GREY
                    frames.append((target, iter(self._parents[target])))

        return order

    # ------------------------------------------------------------------
    # Derivation
    # ------------------------------------------------------------------

    def spec_lines(self, node_ids: Iterable[str] | None = None) -> int:
        selected = self._nodes.keys() if node_ids is None else node_ids
        total = 0
        for node_id in selected:
            node = self._nodes.get(node_id)
            if node is not None and node.text:
                total += len(node.text.splitlines())
        return total

    def _assert_node(self, node_id: str) -> None:
        if node_id not in self._nodes:
            raise KeyError(f"unknown spec node: {node_id}")

    def __repr__(self) -> str:
        return (
            f"SpecGraph(nodes={len(self._nodes)}, edges={len(self._edges)}, "
            f"snapshot={self._snapshot_hash[:12]})"
        )


__all__ = ["SpecGraph"]
