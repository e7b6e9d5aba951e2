"""
spec-reconciler — domain types

File: src/spec_reconciler/domain/__init__.py
Last updated: 2026-10-17

Purpose
- Domain types shared across planes: SpecNode, SpecEdge, Issue, CodeUnit, TraceLink, TestCase, etc.

Functional requirements
- Domain layer stays free of IO side effects.
"""

from spec_reconciler.domain.errors import (
    CommitRefusedError,
    GateClosedError,
    InvalidTransitionError,
    OracleFailure,
    OracleResponseError,
    OracleTimeoutError,
    OracleUnavailableError,
    ReconcilerError,
    ScopeConflictError,
    TestDerivationFailure,
)
from spec_reconciler.domain.models import (
    CodeUnit,
    Confidence,
    Issue,
    IssueCategory,
    IssueKind,
    NodeKind,
    ProportionalityFlag,
    ResidueFinding,
    ResidueHint,
    ScopeOutcome,
    ScopeStatus,
    SessionPhase,
    Severity,
    SpecEdge,
    SpecNode,
    TestCase,
    TestStatus,
    TraceLink,
    TrustLevel,
)

__all__ = [
    "CodeUnit",
    "CommitRefusedError",
    "Confidence",
    "GateClosedError",
    "InvalidTransitionError",
    "Issue",
    "IssueCategory",
    "IssueKind",
    "NodeKind",
    "OracleFailure",
    "OracleResponseError",
    "OracleTimeoutError",
    "OracleUnavailableError",
    "ProportionalityFlag",
    "ReconcilerError",
    "ResidueFinding",
    "ResidueHint",
    "ScopeConflictError",
    "ScopeOutcome",
    "ScopeStatus",
    "SessionPhase",
    "Severity",
    "SpecEdge",
    "SpecNode",
    "TestCase",
    "TestDerivationFailure",
    "TestStatus",
    "TraceLink",
    "TrustLevel",
]
