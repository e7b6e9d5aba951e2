"""Line-level change statistics between two code snapshots."""

from __future__ import annotations

import difflib
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from spec_reconciler.code_artifact.snapshot import CodeSnapshot


@dataclass(frozen=True, slots=True)
class CodeDiff:
    """Aggregate change size; ``per_file`` maps path to inserted plus deleted lines."""

    lines_changed: int = 0
    files_touched: int = 0
    per_file: dict[str, int] = field(default_factory=dict)

    @property
    def changed_files(self) -> tuple[str, ...]:
        return tuple(sorted(self.per_file))


def diff_snapshots(before: CodeSnapshot, after: CodeSnapshot) -> CodeDiff:
    per_file: dict[str, int] = {}
    for path in sorted(set(before) | set(after)):
        old_unit = before.get(path)
        new_unit = after.get(path)
        if old_unit is not None and new_unit is not None:
            if old_unit.content_hash == new_unit.content_hash:
                continue
            per_file[path] = max(1, count_line_changes(before.text(path), after.text(path)))
        elif new_unit is not None:
            per_file[path] = max(1, new_unit.line_count)
        elif old_unit is not None:
            per_file[path] = max(1, old_unit.line_count)

    return CodeDiff(
        lines_changed=sum(per_file.values()),
        files_touched=len(per_file),
        per_file=per_file,
    )


def count_line_changes(before: str | None, after: str | None) -> int:
    old_lines = (before or "").splitlines()
    new_lines = (after or "").splitlines()
    matcher = difflib.SequenceMatcher(a=old_lines, b=new_lines, autojunk=False)
    total = 0
    for tag, i1, i2, j1, j2 in matcher.get_opcodes():
        if tag == "equal":
            continue
        total += (i2 - i1) + (j2 - j1)
    return total


__all__ = ["CodeDiff", "count_line_changes", "diff_snapshots"]
