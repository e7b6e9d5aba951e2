"""Canonical ID generation for reconciliation entities."""

from __future__ import annotations

import hashlib
import secrets
import time
from collections.abc import Callable, Iterable
from typing import Final

CROCKFORD_BASE32_ALPHABET: Final[str] = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"
ULID_LENGTH: Final[int] = 26
ULID_RANDOM_BYTES: Final[int] = 10
ULID_MAX_TIMESTAMP_MS: Final[int] = (1 << 48) - 1
_PREFIX_SEPARATOR: Final[str] = "-"
_DIGEST_ID_LENGTH: Final[int] = 12

# Stable entity ID prefixes.
SESSION_ID_PREFIX: Final[str] = "ses"
SCOPE_ID_PREFIX: Final[str] = "scope"
TEST_CASE_ID_PREFIX: Final[str] = "tc"
REQUEST_ID_PREFIX: Final[str] = "req"

_RandBytes = Callable[[int], bytes]

__all__ = [
    "CROCKFORD_BASE32_ALPHABET",
    "REQUEST_ID_PREFIX",
    "SCOPE_ID_PREFIX",
    "SESSION_ID_PREFIX",
    "TEST_CASE_ID_PREFIX",
    "ULID_LENGTH",
    "digest_id",
    "generate_prefixed_id",
    "generate_request_id",
    "generate_session_id",
    "generate_ulid",
    "scope_id_for",
    "derive_test_case_id",
]


def generate_ulid(
    *,
    timestamp_ms: int | None = None,
    randbytes: _RandBytes | None = None,
) -> str:
    """Generate a ULID as a 26-character uppercase Crockford Base32 string."""
    ts_ms = _resolve_timestamp_ms(timestamp_ms)
    random_bytes = _resolve_random_bytes(randbytes)
    ulid_value = (ts_ms << 80) | int.from_bytes(random_bytes, "big")
    return _encode_crockford_base32(ulid_value, ULID_LENGTH)


def generate_prefixed_id(
    prefix: str,
    *,
    timestamp_ms: int | None = None,
    randbytes: _RandBytes | None = None,
) -> str:
    """Generate a prefixed ID in the form ``<prefix>-<ulid>``."""
    _validate_prefix(prefix)
    ulid = generate_ulid(timestamp_ms=timestamp_ms, randbytes=randbytes)
    return f"{prefix}{_PREFIX_SEPARATOR}{ulid}"


def generate_session_id(
    *, timestamp_ms: int | None = None, randbytes: _RandBytes | None = None
) -> str:
    return generate_prefixed_id(SESSION_ID_PREFIX, timestamp_ms=timestamp_ms, randbytes=randbytes)


def generate_request_id(
    *, timestamp_ms: int | None = None, randbytes: _RandBytes | None = None
) -> str:
    return generate_prefixed_id(REQUEST_ID_PREFIX, timestamp_ms=timestamp_ms, randbytes=randbytes)


def digest_id(prefix: str, parts: Iterable[str]) -> str:
    """Return a content-derived ID ``<prefix>-<12 hex>`` over sorted unique ``parts``."""
    _validate_prefix(prefix)
    normalized = sorted({part for part in parts})
    if not normalized:
        raise ValueError("digest_id requires at least one part")
    digest = hashlib.sha256("\n".join(normalized).encode("utf-8")).hexdigest()
    return f"{prefix}{_PREFIX_SEPARATOR}{digest[:_DIGEST_ID_LENGTH]}"


def scope_id_for(node_ids: Iterable[str]) -> str:
    """Scope IDs depend only on member node IDs so re-runs are comparable."""
    return digest_id(SCOPE_ID_PREFIX, node_ids)


def derive_test_case_id(node_id: str, name: str) -> str:
    return digest_id(TEST_CASE_ID_PREFIX, (f"{node_id}::{name}",))


# ------------------------
# Internal helper routines
# ------------------------


def _resolve_timestamp_ms(timestamp_ms: int | None) -> int:
    resolved = time.time_ns() // 1_000_000 if timestamp_ms is None else timestamp_ms
    if not isinstance(resolved, int):
        raise ValueError(f"timestamp_ms must be an int, got {type(resolved).__name__}")
    if not 0 <= resolved <= ULID_MAX_TIMESTAMP_MS:
        raise ValueError(
            f"timestamp_ms out of range: expected 0..{ULID_MAX_TIMESTAMP_MS}, got {resolved}"
        )
    return resolved


def _resolve_random_bytes(randbytes: _RandBytes | None) -> bytes:
    provider = secrets.token_bytes if randbytes is None else randbytes
    raw = provider(ULID_RANDOM_BYTES)
    if not isinstance(raw, (bytes, bytearray, memoryview)):
        raise ValueError("randbytes must return a bytes-like object")
    as_bytes = bytes(raw)
    if len(as_bytes) != ULID_RANDOM_BYTES:
        raise ValueError(f"randbytes must return exactly {ULID_RANDOM_BYTES} bytes")
    return as_bytes


def _encode_crockford_base32(value: int, length: int) -> str:
    if value < 0:
        raise ValueError("value must be non-negative")

    mask = 0b11111
    chars = ["0"] * length
    working = value
    for index in range(length - 1, -1, -1):
        chars[index] = CROCKFORD_BASE32_ALPHABET[working & mask]
        working >>= 5

    if working != 0:
        raise ValueError(f"value does not fit into {length} Crockford Base32 characters")
    return "".join(chars)


def _validate_prefix(prefix: str) -> None:
    if not isinstance(prefix, str):
        raise ValueError(f"prefix must be a string, got {type(prefix).__name__}")
    if not prefix:
        raise ValueError("prefix must be non-empty")
    if _PREFIX_SEPARATOR in prefix:
        raise ValueError(f"prefix must not contain '{_PREFIX_SEPARATOR}'")
