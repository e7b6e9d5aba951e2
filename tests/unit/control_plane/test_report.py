"""Unit tests for session reports and exit codes."""

from __future__ import annotations

import json

import yaml

from spec_reconciler.code_artifact.diff import CodeDiff
from spec_reconciler.code_artifact.snapshot import CodeSnapshot
from spec_reconciler.control_plane.report import ExitCode, SessionReport, exit_code_for_issues
from spec_reconciler.control_plane.session import ReconciliationSession
from spec_reconciler.domain.models import (
    Issue,
    IssueKind,
    ProportionalityFlag,
    ResidueFinding,
    ScopeOutcome,
    ScopeStatus,
    SessionPhase,
    Severity,
)
from spec_reconciler.spec_graph.builder import build_spec_graph_from_texts


def _issue(severity: Severity) -> Issue:
    return Issue(kind=IssueKind.GAP, severity=severity, locations=("a.md#a",), explanation="x")


def test_exit_code_for_issues() -> None:
    assert exit_code_for_issues([]) is ExitCode.CLEAN
    assert exit_code_for_issues([_issue(Severity.INFO)]) is ExitCode.CLEAN
    assert exit_code_for_issues([_issue(Severity.WARNING)]) is ExitCode.WARNINGS
    assert (
        exit_code_for_issues([_issue(Severity.WARNING), _issue(Severity.ERROR)])
        is ExitCode.BLOCKING
    )


def test_report_exit_codes() -> None:
    clean = SessionReport(session_id="ses-1", final_state=SessionPhase.COMMITTED)
    assert clean.exit_code() is ExitCode.CLEAN

    residue = SessionReport(
        session_id="ses-1",
        final_state=SessionPhase.COMMITTED,
        residue=(ResidueFinding(path="src/x.py"),),
    )
    assert residue.exit_code() is ExitCode.WARNINGS

    failed = SessionReport(
        session_id="ses-1",
        final_state=SessionPhase.FLAGGED,
        scope_outcomes=(ScopeOutcome(scope_id="s", status=ScopeStatus.FAILED),),
    )
    assert failed.exit_code() is ExitCode.BLOCKING

    cancelled = SessionReport(session_id="ses-1", final_state=SessionPhase.CANCELLED)
    assert cancelled.exit_code() is ExitCode.BLOCKING

    incomplete = SessionReport(
        session_id="ses-1",
        final_state=SessionPhase.COMMITTED,
        scope_outcomes=(
            ScopeOutcome(scope_id="s", status=ScopeStatus.PASSED, tests_incomplete=True),
        ),
    )
    assert incomplete.exit_code() is ExitCode.WARNINGS


def test_findings_at_the_blocking_severity_block() -> None:
    finding = ResidueFinding(path="src/x.py", severity=Severity.ERROR)
    flag = ProportionalityFlag(
        ratio=400.0,
        threshold=50.0,
        lines_changed=400,
        files_touched=12,
        spec_lines_changed=1,
        k=50.0,
    )
    default = SessionReport(
        session_id="ses-1", final_state=SessionPhase.FLAGGED, residue=(finding,)
    )
    strict = SessionReport(
        session_id="ses-1",
        final_state=SessionPhase.FLAGGED,
        proportionality_flags=(flag,),
        blocking_severity=Severity.WARNING,
    )

    assert default.exit_code() is ExitCode.BLOCKING
    assert strict.exit_code() is ExitCode.BLOCKING
    assert SessionReport(
        session_id="ses-1", final_state=SessionPhase.FLAGGED, proportionality_flags=(flag,)
    ).exit_code() is ExitCode.WARNINGS


def test_from_session_and_serialization() -> None:
    graph = build_spec_graph_from_texts({"a.md": "# A\nText.\n"}).graph
    session = ReconciliationSession(
        spec_graph=graph, code=CodeSnapshot.from_texts({}), session_id="ses-fixed"
    )
    session.triggers = ("a.md#a",)
    session.code_diff = CodeDiff(lines_changed=2, files_touched=1, per_file={"src/a.py": 2})
    session.record_outcome(
        ScopeOutcome(
            scope_id="scope-1",
            status=ScopeStatus.PASSED,
            tests_passed=2,
            details=("attempt 1: review not approved",),
        )
    )
    session.unresolved.append("src/unknown.py")

    report = SessionReport.from_session(session)
    payload = json.loads(report.to_json())

    assert payload["session_id"] == "ses-fixed"
    assert payload["final_state"] == "SPEC_RECONCILE"
    assert payload["changed_files"] == ["src/a.py"]
    assert payload["scope_outcomes"] == [
        {"scope_id": "scope-1", "status": "PASSED", "tests_passed": 2, "tests_failed": 0}
    ]
    assert payload["scope_details"] == {"scope-1": ["attempt 1: review not approved"]}
    assert payload["unresolved"] == ["src/unknown.py"]
    assert payload["exit_code"] == 1
    assert yaml.safe_load(report.to_yaml()) == payload
