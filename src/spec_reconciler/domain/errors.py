"""
spec-reconciler — error taxonomy

File: src/spec_reconciler/domain/errors.py
Last updated: 2026-10-17

Purpose
- Exception hierarchy for conditions that interrupt control flow.

Functional requirements
- Oracle failures carry a deterministic ``retryable`` classification.
- Structural and semantic problems are reported as ``Issue`` values, not raised.

Non-functional requirements
- Messages are machine-parseable ``key=value`` strings where fields exist.
"""

from __future__ import annotations

from collections.abc import Sequence


class ReconcilerError(RuntimeError):
    """Base class for reconciler failures."""


class OracleFailure(ReconcilerError):
    """Normalized oracle failure with deterministic machine-readable fields."""

    def __init__(
        self,
        *,
        capability: str,
        code: str,
        detail: str,
        retryable: bool,
    ) -> None:
        self.capability = capability
        self.code = code
        self.detail = " ".join(str(detail).split()) or "no detail"
        self.retryable = bool(retryable)
        super().__init__(
            f"capability={self.capability} code={self.code} "
            f"retryable={str(self.retryable).lower()} detail={self.detail}"
        )


class OracleTimeoutError(OracleFailure):
    """Oracle call exceeded its deadline (retryable)."""

    def __init__(self, detail: str, *, capability: str = "unknown") -> None:
        super().__init__(capability=capability, code="timeout", detail=detail, retryable=True)


class OracleUnavailableError(OracleFailure):
    """Oracle backend is temporarily unreachable (retryable)."""

    def __init__(self, detail: str, *, capability: str = "unknown") -> None:
        super().__init__(capability=capability, code="unavailable", detail=detail, retryable=True)


class OracleResponseError(OracleFailure):
    """Malformed or empty oracle response."""

    def __init__(
        self, detail: str, *, capability: str = "unknown", retryable: bool = True
    ) -> None:
        super().__init__(
            capability=capability, code="response_invalid", detail=detail, retryable=retryable
        )


class ScopeConflictError(ReconcilerError):
    """A code unit changed in the store underneath a scope before its write."""

    def __init__(self, scope_id: str, paths: Sequence[str]) -> None:
        self.scope_id = scope_id
        self.paths = tuple(sorted(paths))
        super().__init__(f"scope={scope_id} conflicting_units={','.join(self.paths)}")


class TestDerivationFailure(ReconcilerError):
    """Tests could not be derived for a spec node."""

    __test__ = False

    def __init__(self, node_id: str, detail: str) -> None:
        self.node_id = node_id
        self.detail = detail
        super().__init__(f"node={node_id} detail={detail}")


class GateClosedError(ReconcilerError):
    """Code reconciliation requested before the spec graph is consistent."""


class InvalidTransitionError(ReconcilerError):
    """Illegal session phase transition."""

    def __init__(self, current: str, target: str) -> None:
        self.current = current
        self.target = target
        super().__init__(f"illegal session transition {current} -> {target}")


class CommitRefusedError(ReconcilerError):
    """Commit requested while a blocking condition exists or trust is missing."""


def is_retryable(error: BaseException) -> bool:
    """Return retryability classification for normalized oracle errors."""

    return isinstance(error, OracleFailure) and error.retryable


__all__ = [
    "CommitRefusedError",
    "GateClosedError",
    "InvalidTransitionError",
    "OracleFailure",
    "OracleResponseError",
    "OracleTimeoutError",
    "OracleUnavailableError",
    "ReconcilerError",
    "ScopeConflictError",
    "TestDerivationFailure",
    "is_retryable",
]
