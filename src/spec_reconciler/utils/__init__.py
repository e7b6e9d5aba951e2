"""Utility exports for filesystem, hashing, and concurrency helpers."""

from spec_reconciler.utils.concurrency import (
    BoundedSemaphore,
    CancellationToken,
    WorkerPool,
)
from spec_reconciler.utils.fs import atomic_write, is_within, temp_directory
from spec_reconciler.utils.hashing import sha256_bytes, sha256_json, sha256_text

__all__ = [
    "BoundedSemaphore",
    "CancellationToken",
    "WorkerPool",
    "atomic_write",
    "is_within",
    "sha256_bytes",
    "sha256_json",
    "sha256_text",
    "temp_directory",
]
