"""
spec-reconciler — reconciliation session state

File: src/spec_reconciler/control_plane/session.py
Last updated: 2026-10-17

Purpose
- The unit of orchestration work: phase, trigger set, scopes and per-scope outcomes
  against one fixed (spec snapshot, code snapshot) pair.

Functional requirements
- Phase changes go through ``transition``; anything outside the allowed map raises
  ``InvalidTransitionError``.
- ``COMMITTED`` and ``CANCELLED`` are terminal.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Final

from spec_reconciler.domain import ids
from spec_reconciler.domain.errors import InvalidTransitionError
from spec_reconciler.domain.models import (
    Issue,
    ProportionalityFlag,
    ResidueFinding,
    ScopeOutcome,
    SessionPhase,
    Severity,
)

if TYPE_CHECKING:
    from spec_reconciler.code_artifact.diff import CodeDiff
    from spec_reconciler.code_artifact.snapshot import CodeSnapshot
    from spec_reconciler.control_plane.scopes import Scope
    from spec_reconciler.spec_graph.graph import SpecGraph

ALLOWED_TRANSITIONS: Final[dict[SessionPhase, frozenset[SessionPhase]]] = {
    SessionPhase.SPEC_RECONCILE: frozenset({SessionPhase.CONSISTENT, SessionPhase.CANCELLED}),
    SessionPhase.CONSISTENT: frozenset(
        {SessionPhase.CODE_RECONCILE, SessionPhase.SPEC_RECONCILE, SessionPhase.CANCELLED}
    ),
    SessionPhase.CODE_RECONCILE: frozenset(
        {SessionPhase.VERIFIED, SessionPhase.FLAGGED, SessionPhase.CANCELLED}
    ),
    SessionPhase.VERIFIED: frozenset({SessionPhase.COMMITTED, SessionPhase.CANCELLED}),
    SessionPhase.FLAGGED: frozenset({SessionPhase.COMMITTED, SessionPhase.CANCELLED}),
    SessionPhase.COMMITTED: frozenset(),
    SessionPhase.CANCELLED: frozenset(),
}

TERMINAL_PHASES: Final[frozenset[SessionPhase]] = frozenset(
    phase for phase, targets in ALLOWED_TRANSITIONS.items() if not targets
)


@dataclass(frozen=True, slots=True)
class PhaseChange:
    source: SessionPhase
    target: SessionPhase
    at: str


@dataclass(slots=True)
class ReconciliationSession:
    spec_graph: SpecGraph
    code: CodeSnapshot
    session_id: str = field(default_factory=ids.generate_session_id)
    phase: SessionPhase = SessionPhase.SPEC_RECONCILE
    triggers: tuple[str, ...] = ()
    changed_units: tuple[str, ...] = ()
    scopes: tuple[Scope, ...] = ()
    outcomes: dict[str, ScopeOutcome] = field(default_factory=dict)
    issues: tuple[Issue, ...] = ()
    residue: tuple[ResidueFinding, ...] = ()
    proportionality_flags: tuple[ProportionalityFlag, ...] = ()
    unresolved: list[str] = field(default_factory=list)
    code_diff: CodeDiff | None = None
    spec_lines_changed: int = 0
    history: list[PhaseChange] = field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return self.phase in TERMINAL_PHASES

    def can_transition(self, target: SessionPhase) -> bool:
        return SessionPhase(target) in ALLOWED_TRANSITIONS[self.phase]

    def transition(self, target: SessionPhase | str) -> PhaseChange:
        next_phase = SessionPhase(target)
        if next_phase not in ALLOWED_TRANSITIONS[self.phase]:
            raise InvalidTransitionError(self.phase.value, next_phase.value)
        change = PhaseChange(source=self.phase, target=next_phase, at=_utc_now_iso())
        self.phase = next_phase
        self.history.append(change)
        return change

    def rebase_spec(self, graph: SpecGraph) -> None:
        """Swap the spec snapshot; only legal while the spec is still being reconciled."""
        if self.phase is not SessionPhase.SPEC_RECONCILE:
            raise InvalidTransitionError(self.phase.value, "rebase spec snapshot")
        self.spec_graph = graph

    def record_outcome(self, outcome: ScopeOutcome) -> None:
        self.outcomes[outcome.scope_id] = outcome

    def failed_scopes(self) -> tuple[ScopeOutcome, ...]:
        return tuple(
            outcome
            for _, outcome in sorted(self.outcomes.items())
            if outcome.status.is_failure
        )

    def incomplete_scopes(self) -> tuple[ScopeOutcome, ...]:
        return tuple(
            outcome for _, outcome in sorted(self.outcomes.items()) if outcome.tests_incomplete
        )

    def error_issues(self) -> tuple[Issue, ...]:
        return tuple(issue for issue in self.issues if issue.severity is Severity.ERROR)

    def has_blocking_condition(self) -> bool:
        return bool(self.failed_scopes() or self.error_issues())


def _utc_now_iso() -> str:
    return datetime.now(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")


__all__ = [
    "ALLOWED_TRANSITIONS",
    "TERMINAL_PHASES",
    "PhaseChange",
    "ReconciliationSession",
]
