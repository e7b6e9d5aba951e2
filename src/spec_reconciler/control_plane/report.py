"""
spec-reconciler — session report

File: src/spec_reconciler/control_plane/report.py
Last updated: 2026-10-17

Purpose
- The externally observed contract of a session, plus its exit-code mapping.

Functional requirements
- ``0`` clean, ``1`` warnings or non-blocking flags, ``2`` blocking errors,
  findings at the blocking severity, or any failed/conflicted scope.
- JSON and YAML renderings carry the same keys in the same order.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import IntEnum
from typing import TYPE_CHECKING

import yaml

from spec_reconciler.constants import SESSION_REPORT_SCHEMA_VERSION
from spec_reconciler.domain.models import (
    Issue,
    JSONValue,
    ProportionalityFlag,
    ResidueFinding,
    ScopeOutcome,
    SessionPhase,
    Severity,
)

if TYPE_CHECKING:
    from collections.abc import Iterable

    from spec_reconciler.control_plane.session import ReconciliationSession


class ExitCode(IntEnum):
    CLEAN = 0
    WARNINGS = 1
    BLOCKING = 2


def exit_code_for_issues(issues: Iterable[Issue]) -> ExitCode:
    worst = ExitCode.CLEAN
    for issue in issues:
        if issue.severity is Severity.ERROR:
            return ExitCode.BLOCKING
        if issue.severity is Severity.WARNING:
            worst = ExitCode.WARNINGS
    return worst


@dataclass(frozen=True, slots=True)
class SessionReport:
    session_id: str
    final_state: SessionPhase
    changed_files: tuple[str, ...] = ()
    triggers: tuple[str, ...] = ()
    scope_outcomes: tuple[ScopeOutcome, ...] = ()
    residue: tuple[ResidueFinding, ...] = ()
    proportionality_flags: tuple[ProportionalityFlag, ...] = ()
    issues: tuple[Issue, ...] = ()
    unresolved: tuple[str, ...] = field(default_factory=tuple)
    blocking_severity: Severity = Severity.ERROR

    @classmethod
    def from_session(
        cls,
        session: ReconciliationSession,
        *,
        blocking_severity: Severity = Severity.ERROR,
    ) -> SessionReport:
        changed = () if session.code_diff is None else session.code_diff.changed_files
        return cls(
            session_id=session.session_id,
            final_state=session.phase,
            changed_files=changed,
            triggers=session.triggers,
            scope_outcomes=tuple(outcome for _, outcome in sorted(session.outcomes.items())),
            residue=session.residue,
            proportionality_flags=session.proportionality_flags,
            issues=session.issues,
            unresolved=tuple(session.unresolved),
            blocking_severity=blocking_severity,
        )

    @property
    def has_failed_scope(self) -> bool:
        return any(outcome.status.is_failure for outcome in self.scope_outcomes)

    @property
    def has_blocking_finding(self) -> bool:
        """Residue or proportionality findings at or above the blocking severity."""
        findings = (*self.residue, *self.proportionality_flags)
        return any(finding.severity.at_least(self.blocking_severity) for finding in findings)

    def exit_code(self) -> ExitCode:
        if self.has_failed_scope or self.final_state is SessionPhase.CANCELLED:
            return ExitCode.BLOCKING
        issue_code = exit_code_for_issues(self.issues)
        if issue_code is ExitCode.BLOCKING or self.has_blocking_finding:
            return ExitCode.BLOCKING
        if (
            issue_code is ExitCode.WARNINGS
            or self.residue
            or self.proportionality_flags
            or self.unresolved
            or self.final_state is SessionPhase.FLAGGED
            or any(outcome.tests_incomplete for outcome in self.scope_outcomes)
        ):
            return ExitCode.WARNINGS
        return ExitCode.CLEAN

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "schema_version": SESSION_REPORT_SCHEMA_VERSION,
            "session_id": self.session_id,
            "final_state": self.final_state.value,
            "exit_code": int(self.exit_code()),
            "changed_files": list(self.changed_files),
            "triggers": list(self.triggers),
            "scope_outcomes": [outcome.to_report_entry() for outcome in self.scope_outcomes],
            "scope_details": {
                outcome.scope_id: list(outcome.details)
                for outcome in self.scope_outcomes
                if outcome.details
            },
            "residue": [finding.path for finding in self.residue],
            "residue_findings": [finding.to_dict() for finding in self.residue],
            "proportionality_flags": [flag.to_dict() for flag in self.proportionality_flags],
            "issues": [issue.to_dict() for issue in self.issues],
            "unresolved": list(self.unresolved),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2, sort_keys=False, ensure_ascii=False) + "\n"

    def to_yaml(self) -> str:
        return yaml.safe_dump(self.to_dict(), sort_keys=False, allow_unicode=True)


__all__ = ["ExitCode", "SessionReport", "exit_code_for_issues"]
