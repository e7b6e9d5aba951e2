"""Unit tests for code diff sizing."""

from __future__ import annotations

from spec_reconciler.code_artifact.diff import count_line_changes, diff_snapshots
from spec_reconciler.code_artifact.snapshot import CodeSnapshot


def test_diff_counts_inserted_and_deleted_lines() -> None:
    before = CodeSnapshot.from_texts({"a.py": "one\ntwo\nthree\n", "same.py": "x\n"})
    after = CodeSnapshot.from_texts(
        {"a.py": "one\nTWO\nthree\nfour\n", "same.py": "x\n", "new.py": "n1\nn2\n"}
    )

    diff = diff_snapshots(before, after)

    assert diff.per_file == {"a.py": 3, "new.py": 2}
    assert diff.lines_changed == 5
    assert diff.files_touched == 2
    assert diff.changed_files == ("a.py", "new.py")


def test_deleted_and_empty_files_count_at_least_one_line() -> None:
    before = CodeSnapshot.from_texts({"gone.py": "a\nb\n", "empty.py": ""})
    after = CodeSnapshot.from_texts({"empty.py": "", "blank.py": ""})

    diff = diff_snapshots(before, after)

    assert diff.per_file == {"blank.py": 1, "gone.py": 2}


def test_no_change_is_empty() -> None:
    snapshot = CodeSnapshot.from_texts({"a.py": "a\n"})
    diff = diff_snapshots(snapshot, snapshot)
    assert diff.lines_changed == 0
    assert diff.changed_files == ()


def test_count_line_changes_handles_missing_sides() -> None:
    assert count_line_changes(None, "a\nb") == 2
    assert count_line_changes("a\nb", None) == 2
