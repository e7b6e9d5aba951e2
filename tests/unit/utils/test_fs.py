"""Unit tests for atomic writes and path containment."""

from __future__ import annotations

from pathlib import Path

import pytest

from spec_reconciler.utils.fs import atomic_write, is_within, temp_directory
from spec_reconciler.utils.hashing import sha256_bytes, sha256_json, sha256_text


def test_atomic_write_creates_parents_and_replaces(tmp_path: Path) -> None:
    target = tmp_path / "a" / "b" / "file.py"

    atomic_write(target, "first\n")
    atomic_write(target, b"second\n")

    assert target.read_text(encoding="utf-8") == "second\n"
    assert [path.name for path in target.parent.iterdir()] == ["file.py"]


def test_atomic_write_keeps_newlines_verbatim(tmp_path: Path) -> None:
    target = tmp_path / "crlf.txt"

    atomic_write(target, "a\r\nb\n")

    assert target.read_bytes() == b"a\r\nb\n"


def test_failed_write_leaves_no_temp_file(tmp_path: Path) -> None:
    target = tmp_path / "file.txt"

    with pytest.raises(UnicodeEncodeError):
        atomic_write(target, "\udcff", encoding="ascii")

    assert list(tmp_path.iterdir()) == []


@pytest.mark.parametrize(
    ("child", "expected"),
    [("src/app.py", True), ("src/../src/app.py", True), ("../outside.py", False), (".", True)],
)
def test_is_within(tmp_path: Path, child: str, expected: bool) -> None:
    assert is_within(tmp_path / child, tmp_path) is expected


def test_temp_directory_is_removed() -> None:
    with temp_directory(prefix="specrec-test-") as root:
        (root / "x.txt").write_text("x", encoding="utf-8")
        assert root.name.startswith("specrec-test-")

    assert not root.exists()


def test_hash_helpers_are_canonical() -> None:
    assert sha256_text("abc") == sha256_bytes(b"abc")
    assert sha256_json({"b": 1, "a": [1, 2]}) == sha256_json({"a": [1, 2], "b": 1})
    assert sha256_json({"a": 1}) != sha256_json({"a": "1"})
