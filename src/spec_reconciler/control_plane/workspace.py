"""
spec-reconciler — staged code workspace

File: src/spec_reconciler/control_plane/workspace.py
Last updated: 2026-10-17

Purpose
- Hold per-scope writes in memory until the session commits, and apply them to the
  code store all-or-nothing.

What should be included in this file
- ``CodeStore`` protocol plus directory-backed and in-memory stores.
- Optimistic versioning: a scope expects session-base hashes, checked against the
  store when the scope stages its writes and again at commit.

Functional requirements
- Nothing reaches the code store before ``commit``.
- Each path has one owner at commit: contested same-wave writes go to the lowest
  scope id, and later waves build on earlier waves.
- A failed apply restores every file already written.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

import structlog

from spec_reconciler.code_artifact.snapshot import CodeSnapshot, normalize_unit_path
from spec_reconciler.domain.errors import CommitRefusedError, ScopeConflictError
from spec_reconciler.utils.fs import atomic_write, is_within
from spec_reconciler.utils.hashing import sha256_bytes, sha256_text


@runtime_checkable
class CodeStore(Protocol):
    """Durable home of the code artifact."""

    def snapshot(self) -> CodeSnapshot: ...

    def current_hashes(self, paths: Iterable[str]) -> dict[str, str | None]: ...

    def read_texts(self, paths: Iterable[str]) -> dict[str, str | None]: ...

    def apply(self, files: Mapping[str, str | None]) -> None: ...


class DirectoryCodeStore:
    """Code store over a directory tree; writes are atomic per file."""

    def __init__(self, root: str | Path) -> None:
        self._root = Path(root)

    @property
    def root(self) -> Path:
        return self._root

    def snapshot(self) -> CodeSnapshot:
        return CodeSnapshot.from_directory(self._root)

    def current_hashes(self, paths: Iterable[str]) -> dict[str, str | None]:
        hashes: dict[str, str | None] = {}
        for path in paths:
            target = self._resolve(path)
            hashes[path] = sha256_bytes(target.read_bytes()) if target.is_file() else None
        return hashes

    def read_texts(self, paths: Iterable[str]) -> dict[str, str | None]:
        texts: dict[str, str | None] = {}
        for path in paths:
            target = self._resolve(path)
            try:
                texts[path] = target.read_bytes().decode("utf-8") if target.is_file() else None
            except UnicodeDecodeError:
                texts[path] = None
        return texts

    def apply(self, files: Mapping[str, str | None]) -> None:
        originals: dict[str, bytes | None] = {}
        try:
            for path in sorted(files):
                target = self._resolve(path)
                originals[path] = target.read_bytes() if target.is_file() else None
                text = files[path]
                if text is None:
                    target.unlink(missing_ok=True)
                else:
                    atomic_write(target, text)
        except OSError:
            for path, original in originals.items():
                target = self._resolve(path)
                if original is None:
                    target.unlink(missing_ok=True)
                else:
                    atomic_write(target, original)
            raise

    def _resolve(self, path: str) -> Path:
        target = self._root / normalize_unit_path(path)
        if not is_within(target, self._root):
            raise ValueError(f"path escapes code root: {path}")
        return target


class InMemoryCodeStore:
    """Dictionary-backed code store for offline runs and tests."""

    def __init__(self, files: Mapping[str, str] | None = None) -> None:
        self._files: dict[str, str] = {
            normalize_unit_path(path): text for path, text in (files or {}).items()
        }

    @property
    def files(self) -> dict[str, str]:
        return dict(self._files)

    def snapshot(self) -> CodeSnapshot:
        return CodeSnapshot.from_texts(self._files)

    def current_hashes(self, paths: Iterable[str]) -> dict[str, str | None]:
        return {
            path: sha256_text(self._files[path]) if path in self._files else None
            for path in paths
        }

    def read_texts(self, paths: Iterable[str]) -> dict[str, str | None]:
        return {path: self._files.get(path) for path in paths}

    def apply(self, files: Mapping[str, str | None]) -> None:
        for path, text in files.items():
            if text is None:
                self._files.pop(normalize_unit_path(path), None)
            else:
                self._files[normalize_unit_path(path)] = text


@dataclass(frozen=True, slots=True)
class StagedChange:
    scope_id: str
    path: str
    text: str | None
    expected_hash: str | None


class StagedWorkspace:
    """Session-scoped staging area between the scopes and the code store.

    Scopes of one wave stage into a pending area; ``resolve_wave`` settles it so
    that scopes of later waves build on the settled writes. Every change keeps
    the store hash it expects at commit.
    """

    def __init__(self, base: CodeSnapshot, store: CodeStore, *, logger: Any | None = None) -> None:
        self._base = base
        self._store = store
        self._staged: dict[str, StagedChange] = {}
        self._pending: dict[str, dict[str, StagedChange]] = {}
        self._committed = False
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @property
    def base(self) -> CodeSnapshot:
        return self._base

    @property
    def committed(self) -> bool:
        return self._committed

    def open_view(
        self, paths: Iterable[str], refresh: Iterable[str] = ()
    ) -> tuple[CodeSnapshot, dict[str, str | None]]:
        """Snapshot a scope works against, plus the store hash expected per path.

        Paths are expected at their session-base hash, so an edit made to the store
        after the session started is caught when the scope stages. ``refresh``
        paths are re-read from the store instead. Writes settled by earlier waves
        are part of the view.
        """

        settled = {path: change.text for path, change in self._staged.items()}
        fresh_paths = sorted(set(refresh) - set(settled))
        fresh = self._store.read_texts(fresh_paths) if fresh_paths else {}
        fresh_hashes = self._store.current_hashes(fresh_paths) if fresh_paths else {}

        expected: dict[str, str | None] = {}
        for path in sorted(set(paths) | set(fresh)):
            if path in fresh_hashes:
                expected[path] = fresh_hashes[path]
            else:
                expected[path] = self._expected_hash(path, {})
        view = self._base.with_files({**settled, **fresh}) if settled or fresh else self._base
        return view, expected

    def stage(
        self,
        scope_id: str,
        files: Mapping[str, str | None],
        captured: Mapping[str, str | None],
    ) -> tuple[str, ...]:
        """Stage a scope's writes after re-checking every expected hash.

        Scopes of the same wave may stage the same path; ``resolve_wave`` decides
        which one keeps it.
        """

        paths = sorted(normalize_unit_path(path) for path in files)
        expected = {path: self._expected_hash(path, captured) for path in paths}
        guarded = sorted(set(expected) | set(captured))
        current = self._store.current_hashes(guarded)
        moved = [
            path
            for path in guarded
            if current.get(path) != (expected[path] if path in expected else captured[path])
        ]
        if moved:
            raise ScopeConflictError(scope_id, moved)

        self._drop_pending(scope_id)
        for raw_path, text in files.items():
            path = normalize_unit_path(raw_path)
            self._pending.setdefault(path, {})[scope_id] = StagedChange(
                scope_id=scope_id, path=path, text=text, expected_hash=expected[path]
            )
        self._logger.info("scope_staged", scope_id=scope_id, paths=paths)
        return tuple(paths)

    def resolve_wave(self) -> dict[str, tuple[str, ...]]:
        """Settle pending writes; on a contested path the lowest scope id wins.

        A scope loses all of its writes when any of its paths was claimed by a
        lower scope id. Returns each losing scope with its contested paths.
        """

        by_scope: dict[str, dict[str, StagedChange]] = {}
        for path, owners in self._pending.items():
            for scope_id, change in owners.items():
                by_scope.setdefault(scope_id, {})[path] = change

        claimed: dict[str, str] = {}
        losers: dict[str, tuple[str, ...]] = {}
        for scope_id in sorted(by_scope):
            changes = by_scope[scope_id]
            contested = sorted(path for path in changes if path in claimed)
            if contested:
                losers[scope_id] = tuple(contested)
                self._logger.warning(
                    "scope_writes_contested",
                    scope_id=scope_id,
                    paths=contested,
                    kept_by=sorted({claimed[path] for path in contested}),
                )
                continue
            for path, change in changes.items():
                claimed[path] = scope_id
                self._staged[path] = change
        self._pending.clear()
        return losers

    def staged_files(self) -> dict[str, str | None]:
        files = {path: change.text for path, change in self._staged.items()}
        for path, owners in self._pending.items():
            files[path] = owners[min(owners)].text
        return dict(sorted(files.items()))

    def staged_view(self) -> CodeSnapshot:
        return self._base.with_files(self.staged_files())

    def discard(self, scope_id: str | None = None) -> None:
        if scope_id is None:
            self._staged.clear()
            self._pending.clear()
            return
        self._drop_pending(scope_id)
        for path in [p for p, change in self._staged.items() if change.scope_id == scope_id]:
            del self._staged[path]

    def commit(self) -> tuple[str, ...]:
        """Verify every staged path, then apply all staged writes at once."""

        if self._committed:
            raise CommitRefusedError("workspace already committed")
        contested = self.resolve_wave()
        if contested:
            raise CommitRefusedError(f"contested writes left unresolved: {', '.join(contested)}")
        paths = sorted(self._staged)
        current = self._store.current_hashes(paths)
        moved = [path for path in paths if current[path] != self._staged[path].expected_hash]
        if moved:
            raise CommitRefusedError(f"code units changed since staging: {', '.join(moved)}")
        self._store.apply(self.staged_files())
        self._committed = True
        self._logger.info("workspace_committed", paths=paths)
        return tuple(paths)

    def _drop_pending(self, scope_id: str) -> None:
        for path in list(self._pending):
            self._pending[path].pop(scope_id, None)
            if not self._pending[path]:
                del self._pending[path]

    def _expected_hash(self, path: str, captured: Mapping[str, str | None]) -> str | None:
        if path in captured:
            return captured[path]
        if path in self._staged:
            return self._staged[path].expected_hash
        unit = self._base.get(path)
        return None if unit is None else unit.content_hash


__all__ = [
    "CodeStore",
    "DirectoryCodeStore",
    "InMemoryCodeStore",
    "StagedChange",
    "StagedWorkspace",
]
