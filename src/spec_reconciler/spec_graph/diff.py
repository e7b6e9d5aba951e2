"""Node-level diff between two spec graph snapshots."""

from __future__ import annotations

import difflib
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Mapping

    from spec_reconciler.spec_graph.graph import SpecGraph


@dataclass(frozen=True, slots=True)
class SpecGraphDiff:
    added: tuple[str, ...] = ()
    removed: tuple[str, ...] = ()
    changed: tuple[str, ...] = ()
    spec_lines_changed: int = 0

    @property
    def touched(self) -> tuple[str, ...]:
        """Added and changed node ids; removed nodes have nothing left to reconcile."""
        return tuple(sorted(set(self.added) | set(self.changed)))

    @property
    def is_empty(self) -> bool:
        return not (self.added or self.removed or self.changed)


def diff_spec_graphs(old: SpecGraph | None, new: SpecGraph) -> SpecGraphDiff:
    """Compare ``old`` and ``new`` by node id and content hash."""

    old_hashes = {} if old is None else {n.node_id: n.content_hash for n in old}
    old_texts = {} if old is None else {n.node_id: n.text for n in old}
    return diff_against_hashes(old_hashes, new, old_texts=old_texts)


def diff_against_hashes(
    old_hashes: Mapping[str, str],
    new: SpecGraph,
    *,
    old_texts: Mapping[str, str] | None = None,
) -> SpecGraphDiff:
    """Diff ``new`` against a persisted ``{node_id: content_hash}`` map.

    Without old texts, a changed node counts all of its new lines as changed.
    """

    texts = old_texts or {}
    new_ids = set(new.nodes)
    old_ids = set(old_hashes)

    added = sorted(new_ids - old_ids)
    removed = sorted(old_ids - new_ids)
    changed = sorted(
        node_id
        for node_id in new_ids & old_ids
        if new.node(node_id).content_hash != old_hashes[node_id]
    )

    line_delta = 0
    for node_id in added:
        line_delta += _line_count(new.node(node_id).text)
    for node_id in removed:
        line_delta += _line_count(texts.get(node_id, ""))
    for node_id in changed:
        before = texts.get(node_id)
        after = new.node(node_id).text
        if before is None:
            line_delta += max(1, _line_count(after))
        else:
            line_delta += max(1, count_changed_lines(before, after))

    return SpecGraphDiff(
        added=tuple(added),
        removed=tuple(removed),
        changed=tuple(changed),
        spec_lines_changed=line_delta,
    )


def count_changed_lines(before: str, after: str) -> int:
    """Count inserted plus deleted lines in a unified diff of two texts."""

    total = 0
    for line in difflib.unified_diff(before.splitlines(), after.splitlines(), lineterm="", n=0):
        if line.startswith(("+++", "---")):
            continue
        if line.startswith(("+", "-")):
            total += 1
    return total


def _line_count(text: str) -> int:
    return len(text.splitlines())


__all__ = ["SpecGraphDiff", "count_changed_lines", "diff_against_hashes", "diff_spec_graphs"]
