"""
spec-reconciler — code artifact snapshot

File: src/spec_reconciler/code_artifact/snapshot.py
Last updated: 2026-10-17

Purpose
- Immutable, content-addressed view of the code tree at one instant.

Functional requirements
- Units are keyed by relative POSIX path and carry a SHA-256 content hash.
- Text is available for UTF-8 files; binary files are inventoried but have no text.
- ``inventory()`` exposes paths, line counts and hashes only, never contents.

Non-functional requirements
- Deterministic traversal order; symlinks are not followed.
"""

from __future__ import annotations

import os
from collections.abc import Iterable, Iterator, Mapping
from pathlib import Path, PurePosixPath
from types import MappingProxyType

from spec_reconciler.code_artifact.exclusions import DEFAULT_EXCLUDED_DIRECTORIES
from spec_reconciler.domain.models import CodeUnit
from spec_reconciler.utils.hashing import sha256_bytes, sha256_json


class CodeSnapshot(Mapping[str, CodeUnit]):
    """Read-only mapping ``path -> CodeUnit`` with a text accessor."""

    __slots__ = ("_units", "_texts", "_snapshot_hash")

    def __init__(self, units: Mapping[str, CodeUnit], texts: Mapping[str, str | None]) -> None:
        ordered = dict(sorted(units.items()))
        self._units: Mapping[str, CodeUnit] = MappingProxyType(ordered)
        self._texts: Mapping[str, str | None] = MappingProxyType(
            {path: texts.get(path) for path in ordered}
        )
        self._snapshot_hash = sha256_json(
            {path: unit.content_hash for path, unit in ordered.items()}
        )

    @classmethod
    def from_texts(cls, files: Mapping[str, str]) -> CodeSnapshot:
        units: dict[str, CodeUnit] = {}
        texts: dict[str, str | None] = {}
        for raw_path, text in files.items():
            path = normalize_unit_path(raw_path)
            units[path] = unit_for_text(path, text)
            texts[path] = text
        return cls(units, texts)

    @classmethod
    def from_directory(cls, root: str | Path) -> CodeSnapshot:
        base = Path(root)
        units: dict[str, CodeUnit] = {}
        texts: dict[str, str | None] = {}
        if not base.is_dir():
            return cls(units, texts)

        for current_dir, dir_names, file_names in os.walk(base, topdown=True, followlinks=False):
            dir_names[:] = sorted(
                name for name in dir_names if name not in DEFAULT_EXCLUDED_DIRECTORIES
            )
            current = Path(current_dir)
            for file_name in sorted(file_names):
                file_path = current / file_name
                if file_path.is_symlink() or not file_path.is_file():
                    continue
                relative = file_path.relative_to(base).as_posix()
                data = file_path.read_bytes()
                try:
                    text: str | None = data.decode("utf-8")
                except UnicodeDecodeError:
                    text = None
                units[relative] = CodeUnit(
                    path=relative,
                    content_hash=sha256_bytes(data),
                    line_count=0 if text is None else _line_count(text),
                )
                texts[relative] = text
        return cls(units, texts)

    # Mapping protocol ---------------------------------------------------

    def __getitem__(self, path: str) -> CodeUnit:
        return self._units[path]

    def __iter__(self) -> Iterator[str]:
        return iter(self._units)

    def __len__(self) -> int:
        return len(self._units)

    # Accessors ----------------------------------------------------------

    @property
    def snapshot_hash(self) -> str:
        return self._snapshot_hash

    @property
    def units(self) -> tuple[CodeUnit, ...]:
        return tuple(self._units.values())

    def text(self, path: str) -> str | None:
        """Return UTF-8 text of ``path``; ``None`` for binary or unknown units."""
        return self._texts.get(path)

    def hashes(self) -> dict[str, str]:
        return {path: unit.content_hash for path, unit in self._units.items()}

    def inventory(self, paths: Iterable[str] | None = None) -> list[dict[str, object]]:
        selected = self._units.keys() if paths is None else paths
        return [
            {
                "path": path,
                "line_count": self._units[path].line_count,
                "content_hash": self._units[path].content_hash,
            }
            for path in selected
            if path in self._units
        ]

    def with_files(self, files: Mapping[str, str | None]) -> CodeSnapshot:
        """Return a new snapshot with ``files`` applied; ``None`` deletes a unit."""
        units = dict(self._units)
        texts = dict(self._texts)
        for raw_path, text in files.items():
            path = normalize_unit_path(raw_path)
            if text is None:
                units.pop(path, None)
                texts.pop(path, None)
                continue
            units[path] = unit_for_text(path, text)
            texts[path] = text
        return CodeSnapshot(units, texts)

    def __repr__(self) -> str:
        return f"CodeSnapshot(units={len(self._units)}, snapshot={self._snapshot_hash[:12]})"


def unit_for_text(path: str, text: str) -> CodeUnit:
    return CodeUnit(
        path=path,
        content_hash=sha256_bytes(text.encode("utf-8")),
        line_count=_line_count(text),
    )


def normalize_unit_path(path: str) -> str:
    """Normalize a unit path to a safe relative POSIX path."""

    candidate = PurePosixPath(path.replace("\\", "/"))
    if candidate.is_absolute():
        raise ValueError(f"code unit path must be relative: {path!r}")
    parts = [part for part in candidate.parts if part not in {"", "."}]
    if not parts or any(part == ".." for part in parts):
        raise ValueError(f"code unit path escapes the code root: {path!r}")
    return "/".join(parts)


def _line_count(text: str) -> int:
    return len(text.splitlines())


__all__ = ["CodeSnapshot", "normalize_unit_path", "unit_for_text"]
