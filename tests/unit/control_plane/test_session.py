"""Unit tests for the reconciliation session state machine."""

from __future__ import annotations

import pytest

from spec_reconciler.code_artifact.snapshot import CodeSnapshot
from spec_reconciler.control_plane.session import (
    ALLOWED_TRANSITIONS,
    TERMINAL_PHASES,
    ReconciliationSession,
)
from spec_reconciler.domain.errors import InvalidTransitionError
from spec_reconciler.domain.ids import SESSION_ID_PREFIX
from spec_reconciler.domain.models import (
    Issue,
    IssueKind,
    ScopeOutcome,
    ScopeStatus,
    SessionPhase,
    Severity,
)
from spec_reconciler.spec_graph.builder import build_spec_graph_from_texts


def _session() -> ReconciliationSession:
    graph = build_spec_graph_from_texts({"a.md": "# A\nText.\n"}).graph
    return ReconciliationSession(spec_graph=graph, code=CodeSnapshot.from_texts({}))


def test_new_session_starts_in_spec_reconcile() -> None:
    session = _session()
    assert session.session_id.startswith(f"{SESSION_ID_PREFIX}-")
    assert session.phase is SessionPhase.SPEC_RECONCILE
    assert not session.is_terminal


def test_happy_path_transitions_are_recorded() -> None:
    session = _session()
    for phase in ("CONSISTENT", "CODE_RECONCILE", "VERIFIED", "COMMITTED"):
        session.transition(phase)

    assert session.phase is SessionPhase.COMMITTED
    assert session.is_terminal
    assert [change.target for change in session.history] == [
        SessionPhase.CONSISTENT,
        SessionPhase.CODE_RECONCILE,
        SessionPhase.VERIFIED,
        SessionPhase.COMMITTED,
    ]
    assert all(change.at.endswith("Z") for change in session.history)


def test_code_reconcile_requires_consistent_first() -> None:
    session = _session()
    assert not session.can_transition(SessionPhase.CODE_RECONCILE)
    with pytest.raises(InvalidTransitionError):
        session.transition(SessionPhase.CODE_RECONCILE)


def test_terminal_phases_have_no_exits() -> None:
    assert TERMINAL_PHASES == {SessionPhase.COMMITTED, SessionPhase.CANCELLED}
    for phase, targets in ALLOWED_TRANSITIONS.items():
        if phase not in TERMINAL_PHASES:
            assert SessionPhase.CANCELLED in targets


def test_rebase_only_while_reconciling_spec() -> None:
    session = _session()
    other = build_spec_graph_from_texts({"b.md": "# B\nText.\n"}).graph
    session.rebase_spec(other)
    assert session.spec_graph is other

    session.transition(SessionPhase.CONSISTENT)
    with pytest.raises(InvalidTransitionError):
        session.rebase_spec(other)


def test_blocking_condition_from_failed_scope_or_error_issue() -> None:
    session = _session()
    assert not session.has_blocking_condition()

    session.record_outcome(
        ScopeOutcome(scope_id="scope-b", status=ScopeStatus.PASSED, tests_incomplete=True)
    )
    assert not session.has_blocking_condition()
    assert [outcome.scope_id for outcome in session.incomplete_scopes()] == ["scope-b"]

    session.record_outcome(ScopeOutcome(scope_id="scope-a", status=ScopeStatus.CONFLICT))
    assert [outcome.scope_id for outcome in session.failed_scopes()] == ["scope-a"]
    assert session.has_blocking_condition()

    fresh = _session()
    fresh.issues = (
        Issue(kind=IssueKind.GAP, severity=Severity.ERROR, locations=("a",), explanation="x"),
    )
    assert fresh.has_blocking_condition()
