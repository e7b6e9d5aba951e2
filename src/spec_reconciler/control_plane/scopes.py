"""
spec-reconciler — scope partitioning and conflict-aware waves

File: src/spec_reconciler/control_plane/scopes.py
Last updated: 2026-10-17

Purpose
- Group changed spec nodes into scopes and order scopes so that two scopes
  sharing a code unit never run at the same time.

Functional requirements
- Scopes are connected components of changed nodes under shared primary units.
- A scope's unit set is the union of every link of its nodes, primary or not.
- Conflict edges join scopes whose unit sets intersect.
- Waves come from greedy colouring in scope id order; scopes in one wave are
  pairwise conflict-free.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from typing import TYPE_CHECKING

from spec_reconciler.domain.ids import scope_id_for

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping, Sequence

    from spec_reconciler.traceability.index import TraceabilityIndex


@dataclass(frozen=True, slots=True)
class Scope:
    scope_id: str
    node_ids: tuple[str, ...]
    unit_paths: tuple[str, ...] = ()

    def conflicts_with(self, other: Scope) -> bool:
        return bool(set(self.unit_paths) & set(other.unit_paths))


def compute_scopes(node_ids: Iterable[str], index: TraceabilityIndex) -> list[Scope]:
    """Partition ``node_ids`` into scopes using the index's current links."""

    nodes = sorted(set(node_ids))
    parent: dict[str, str] = {node_id: node_id for node_id in nodes}

    def find(item: str) -> str:
        while parent[item] != item:
            parent[item] = parent[parent[item]]
            item = parent[item]
        return item

    def union(left: str, right: str) -> None:
        root_left, root_right = find(left), find(right)
        if root_left == root_right:
            return
        if root_right < root_left:
            root_left, root_right = root_right, root_left
        parent[root_right] = root_left

    owner_by_unit: dict[str, str] = {}
    for node_id in nodes:
        for path in sorted(index.units_for([node_id], primary_only=True)):
            existing = owner_by_unit.setdefault(path, node_id)
            if existing != node_id:
                union(existing, node_id)

    members: dict[str, list[str]] = defaultdict(list)
    for node_id in nodes:
        members[find(node_id)].append(node_id)

    scopes = [
        Scope(
            scope_id=scope_id_for(group),
            node_ids=tuple(sorted(group)),
            unit_paths=tuple(sorted(index.units_for(group))),
        )
        for group in members.values()
    ]
    return sorted(scopes, key=lambda scope: scope.scope_id)


def build_conflict_graph(scopes: Sequence[Scope]) -> dict[str, frozenset[str]]:
    scopes_by_unit: dict[str, set[str]] = defaultdict(set)
    for scope in scopes:
        for path in scope.unit_paths:
            scopes_by_unit[path].add(scope.scope_id)

    adjacency: dict[str, set[str]] = {scope.scope_id: set() for scope in scopes}
    for sharing in scopes_by_unit.values():
        for scope_id in sharing:
            adjacency[scope_id].update(sharing - {scope_id})
    return {scope_id: frozenset(neighbours) for scope_id, neighbours in adjacency.items()}


def plan_waves(
    scopes: Sequence[Scope],
    conflicts: Mapping[str, frozenset[str]] | None = None,
) -> list[tuple[Scope, ...]]:
    """Greedy colouring of the conflict graph; each colour is one wave."""

    graph = conflicts if conflicts is not None else build_conflict_graph(scopes)
    wave_of: dict[str, int] = {}
    waves: list[list[Scope]] = []
    for scope in sorted(scopes, key=lambda item: item.scope_id):
        taken = {wave_of[other] for other in graph.get(scope.scope_id, ()) if other in wave_of}
        wave = 0
        while wave in taken:
            wave += 1
        wave_of[scope.scope_id] = wave
        if wave == len(waves):
            waves.append([])
        waves[wave].append(scope)
    return [tuple(wave) for wave in waves]


__all__ = ["Scope", "build_conflict_graph", "compute_scopes", "plan_waves"]
