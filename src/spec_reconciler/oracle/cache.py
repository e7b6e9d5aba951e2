"""
spec-reconciler — analysis result cache

File: src/spec_reconciler/oracle/cache.py
Last updated: 2026-10-17

Purpose
- Memoise analysis-path oracle results by a caller-supplied deterministic key.

Functional requirements
- Only analysis results are ever stored; the generation path has no cache access.
- Optional on-disk persistence under ``cache_dir`` as canonical JSON, one file per key.
- Failures are never cached; callers store only validated payloads.

Non-functional requirements
- Safe under concurrent asyncio callers (single event loop, no awaits while mutating).
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path

from spec_reconciler.domain.models import JSONValue, canonical_json
from spec_reconciler.utils.fs import atomic_write
from spec_reconciler.utils.hashing import sha256_json, sha256_text


@dataclass(slots=True)
class CacheStats:
    hits: int = 0
    misses: int = 0
    stores: int = 0


class AnalysisCache:
    """Key/value store for analysis payloads with optional JSON-file persistence."""

    def __init__(self, cache_dir: str | Path | None = None, *, namespace: str = "analysis") -> None:
        self._entries: dict[str, JSONValue] = {}
        self._namespace = namespace
        self._directory = Path(cache_dir) / namespace if cache_dir is not None else None
        self.stats = CacheStats()

    @staticmethod
    def make_key(*parts: JSONValue) -> str:
        return sha256_json(list(parts))

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and self.get(key, count=False) is not None

    def get(self, key: str, *, count: bool = True) -> JSONValue | None:
        if key in self._entries:
            if count:
                self.stats.hits += 1
            return self._entries[key]
        loaded = self._load(key)
        if loaded is not None:
            self._entries[key] = loaded
            if count:
                self.stats.hits += 1
            return loaded
        if count:
            self.stats.misses += 1
        return None

    def put(self, key: str, value: JSONValue) -> None:
        self._entries[key] = value
        self.stats.stores += 1
        if self._directory is not None:
            atomic_write(self._path_for(key), canonical_json(value) + "\n")

    def clear(self) -> None:
        """Drop every entry, in memory and on disk."""
        self._entries.clear()
        if self._directory is not None and self._directory.is_dir():
            for path in self._directory.glob("*.json"):
                path.unlink(missing_ok=True)

    def keys(self) -> tuple[str, ...]:
        return tuple(sorted(self._entries))

    def _path_for(self, key: str) -> Path:
        assert self._directory is not None
        return self._directory / f"{sha256_text(key)[:32]}.json"

    def _load(self, key: str) -> JSONValue | None:
        if self._directory is None:
            return None
        path = self._path_for(key)
        if not path.is_file():
            return None
        try:
            loaded: JSONValue = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            return None
        return loaded


__all__ = ["AnalysisCache", "CacheStats"]
