"""
spec-reconciler — code unit exclusion list

File: src/spec_reconciler/code_artifact/exclusions.py
Last updated: 2026-10-17

Purpose
- Decide which code units are intentionally outside the reconciled surface.

Functional requirements
- One glob per line; ``#`` comments and blank lines are ignored.
- ``**`` matches across directories, including zero directories.
- A pattern without glob magic matches the path itself or anything beneath it.
"""

from __future__ import annotations

from dataclasses import dataclass
from fnmatch import fnmatchcase
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable

# Directories never treated as part of the code artifact.
DEFAULT_EXCLUDED_DIRECTORIES: frozenset[str] = frozenset(
    {
        ".git",
        ".hg",
        ".specrec",
        ".venv",
        "venv",
        "__pycache__",
        ".mypy_cache",
        ".pytest_cache",
        ".ruff_cache",
        "node_modules",
    }
)


@dataclass(frozen=True, slots=True)
class ExclusionList:
    patterns: tuple[str, ...] = ()

    @classmethod
    def parse(cls, text: str) -> ExclusionList:
        patterns: list[str] = []
        for raw_line in text.splitlines():
            line = raw_line.strip()
            if not line or line.startswith("#"):
                continue
            patterns.append(_normalize_pattern(line))
        return cls(patterns=tuple(dict.fromkeys(patterns)))

    @classmethod
    def load(cls, path: str | Path | None) -> ExclusionList:
        """Load an exclusion file; a missing file means no exclusions."""
        if path is None:
            return cls()
        candidate = Path(path)
        if not candidate.is_file():
            return cls()
        return cls.parse(candidate.read_text(encoding="utf-8"))

    def with_patterns(self, patterns: Iterable[str]) -> ExclusionList:
        merged = list(self.patterns)
        merged.extend(_normalize_pattern(pattern) for pattern in patterns)
        return ExclusionList(patterns=tuple(dict.fromkeys(merged)))

    def is_excluded(self, path: str) -> bool:
        candidate = PurePosixPath(path).as_posix()
        return any(path_matches_glob(candidate, pattern) for pattern in self.patterns)

    def filter(self, paths: Iterable[str]) -> tuple[str, ...]:
        """Return the paths that are not excluded, in sorted order."""
        return tuple(sorted(path for path in paths if not self.is_excluded(path)))

    def __bool__(self) -> bool:
        return bool(self.patterns)


def path_matches_glob(rel_path: str, pattern: str) -> bool:
    if pattern in {"**", "**/*"}:
        return True

    if not _contains_glob_magic(pattern):
        stripped = pattern.rstrip("/")
        return rel_path == stripped or rel_path.startswith(f"{stripped}/")

    if pattern.endswith("/"):
        pattern = f"{pattern}**"

    if fnmatchcase(rel_path, pattern):
        return True
    # ``**/`` may also match zero directories.
    if pattern.startswith("**/") and path_matches_glob(rel_path, pattern[3:]):
        return True
    if "/**/" in pattern:
        return fnmatchcase(rel_path, pattern.replace("/**/", "/", 1))
    if pattern.endswith("/**"):
        return rel_path.startswith(pattern[:-3] + "/")
    return False


def _normalize_pattern(pattern: str) -> str:
    cleaned = pattern.strip()
    while cleaned.startswith("./"):
        cleaned = cleaned[2:]
    return cleaned.lstrip("/")


def _contains_glob_magic(pattern: str) -> bool:
    return any(symbol in pattern for symbol in ("*", "?", "["))


__all__ = ["DEFAULT_EXCLUDED_DIRECTORIES", "ExclusionList", "path_matches_glob"]
