"""
spec-reconciler — hashing utilities

File: src/spec_reconciler/utils/hashing.py
Last updated: 2026-10-17

Purpose
- Provide deterministic SHA-256 helpers for bytes, text and JSON payloads.
- Content hashes are the addressing scheme for spec nodes, code units and cache keys.

Non-functional requirements
- Standard library only; behavior is cross-platform deterministic.
"""

from __future__ import annotations

import hashlib
import json

__all__ = [
    "sha256_bytes",
    "sha256_json",
    "sha256_text",
]


def sha256_bytes(data: bytes) -> str:
    """Return SHA-256 hex digest for raw bytes."""

    return hashlib.sha256(data).hexdigest()


def sha256_text(text: str, *, encoding: str = "utf-8") -> str:
    """Return SHA-256 hex digest for text encoded with ``encoding``."""

    return sha256_bytes(text.encode(encoding))


def sha256_json(value: object) -> str:
    """Return SHA-256 hex digest of the canonical JSON rendering of ``value``."""

    return sha256_text(
        json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    )
