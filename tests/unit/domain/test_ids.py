"""Unit tests for canonical ID helpers."""

from __future__ import annotations

import pytest

from spec_reconciler.domain import ids


def _zero_bytes(size: int) -> bytes:
    return b"\x00" * size


def test_generate_ulid_no_collision() -> None:
    generated = {ids.generate_ulid() for _ in range(5_000)}
    assert len(generated) == 5_000


def test_ulid_is_deterministic_for_fixed_inputs() -> None:
    first = ids.generate_ulid(timestamp_ms=42, randbytes=_zero_bytes)
    second = ids.generate_ulid(timestamp_ms=42, randbytes=_zero_bytes)
    assert first == second
    assert len(first) == 26
    assert set(first) <= set(ids.CROCKFORD_BASE32_ALPHABET)


def test_ulid_rejects_out_of_range_timestamp() -> None:
    with pytest.raises(ValueError, match="timestamp_ms out of range"):
        ids.generate_ulid(timestamp_ms=-1)


def test_session_and_request_ids_carry_prefixes() -> None:
    session_id = ids.generate_session_id()
    request_id = ids.generate_request_id()

    assert session_id.startswith(f"{ids.SESSION_ID_PREFIX}-")
    assert request_id.startswith(f"{ids.REQUEST_ID_PREFIX}-")
    assert len(session_id) == len(ids.SESSION_ID_PREFIX) + 1 + ids.ULID_LENGTH

    with pytest.raises(ValueError, match="must not contain"):
        ids.generate_prefixed_id("bad-prefix")


def test_scope_id_ignores_member_order_and_duplicates() -> None:
    left = ids.scope_id_for(["b.md#x", "a.md#y"])
    right = ids.scope_id_for(["a.md#y", "b.md#x", "a.md#y"])

    assert left == right
    assert left.startswith(f"{ids.SCOPE_ID_PREFIX}-")
    assert ids.scope_id_for(["a.md#y"]) != left


def test_digest_id_requires_parts() -> None:
    with pytest.raises(ValueError, match="at least one part"):
        ids.digest_id("scope", [])


def test_test_case_id_depends_on_node_and_name() -> None:
    base = ids.derive_test_case_id("a.md#x", "test_x.py")
    assert base == ids.derive_test_case_id("a.md#x", "test_x.py")
    assert base != ids.derive_test_case_id("a.md#y", "test_x.py")
    assert base != ids.derive_test_case_id("a.md#x", "test_y.py")
