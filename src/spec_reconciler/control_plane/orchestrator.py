"""
spec-reconciler — reconciliation orchestrator

File: src/spec_reconciler/control_plane/orchestrator.py
Last updated: 2026-10-17

Purpose
- Drive a session through SPEC_RECONCILE → CONSISTENT → CODE_RECONCILE →
  {VERIFIED | FLAGGED} → COMMITTED, with CANCELLED reachable until commit.

What should be included in this file
- The interactive spec loop behind the CONSISTENT gate.
- Conflict-aware scope fan-out on a bounded worker pool.
- Session-wide residue and proportionality analysis.
- The trust decision and the all-or-nothing commit.

Functional requirements
- Code reconciliation never starts before the gate opens (``GateClosedError``).
- ``COMMITTED`` is the only phase that touches the code store.
- No commit while a blocking condition exists.
- Cancellation discards staged code and performs no partial commit.
"""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, replace
from enum import StrEnum
from typing import TYPE_CHECKING, Any

import structlog

from spec_reconciler.code_artifact.diff import diff_snapshots
from spec_reconciler.code_artifact.exclusions import ExclusionList
from spec_reconciler.consistency.checker import ConsistencyChecker
from spec_reconciler.control_plane.inner_loop import (
    InnerLoopSettings,
    ScopeRunner,
    summarize_outcomes,
)
from spec_reconciler.control_plane.report import SessionReport
from spec_reconciler.control_plane.scopes import build_conflict_graph, compute_scopes, plan_waves
from spec_reconciler.control_plane.session import ReconciliationSession
from spec_reconciler.control_plane.workspace import StagedWorkspace
from spec_reconciler.domain.errors import (
    CommitRefusedError,
    GateClosedError,
    ReconcilerError,
)
from spec_reconciler.domain.models import (
    ScopeOutcome,
    ScopeStatus,
    SessionPhase,
    Severity,
    TrustLevel,
)
from spec_reconciler.observability.logging import correlation_scope
from spec_reconciler.persistence.state_store import CommitRecord
from spec_reconciler.spec_graph.diff import diff_against_hashes, diff_spec_graphs
from spec_reconciler.traceability.index import TraceabilityIndex
from spec_reconciler.utils.concurrency import CancellationToken, WorkerPool
from spec_reconciler.verification.proportionality import ProportionalityAnalyzer
from spec_reconciler.verification.residue import ResidueAnalyzer
from spec_reconciler.verification.test_execution import PytestExecutor

if TYPE_CHECKING:
    from spec_reconciler.consistency.checker import ConsistencyReport
    from spec_reconciler.control_plane.scopes import Scope
    from spec_reconciler.control_plane.workspace import CodeStore
    from spec_reconciler.oracle.client import OracleClient
    from spec_reconciler.persistence.state_store import StateStore
    from spec_reconciler.spec_graph.builder import BuildResult
    from spec_reconciler.spec_graph.graph import SpecGraph
    from spec_reconciler.verification.test_execution import TestExecutor

CorpusLoader = Callable[[], "BuildResult"]
EditCallback = Callable[["ConsistencyReport"], "bool | Awaitable[bool]"]


class TrustDecision(StrEnum):
    AUTO = "auto"
    ACKNOWLEDGE = "acknowledge"
    DECLINE = "decline"


@dataclass(frozen=True, slots=True)
class OrchestrationSettings:
    worker_count: int = 4
    max_retries: int = 2
    max_review_rounds: int = 2
    max_spec_rounds: int = 3
    trust_level: TrustLevel = TrustLevel.AUTO
    blocking_severity: Severity = Severity.ERROR
    residue_severity: Severity = Severity.WARNING
    proportionality_k: float = 10.0
    proportionality_threshold: float = 50.0
    flag_severity: Severity = Severity.WARNING

    def __post_init__(self) -> None:
        if self.worker_count < 1:
            raise ValueError("worker_count must be >= 1")
        if self.max_spec_rounds < 1:
            raise ValueError("max_spec_rounds must be >= 1")
        object.__setattr__(self, "trust_level", TrustLevel(self.trust_level))
        for name in ("blocking_severity", "residue_severity", "flag_severity"):
            object.__setattr__(self, name, Severity(getattr(self, name)))

    def inner_loop(self) -> InnerLoopSettings:
        return InnerLoopSettings(
            max_retries=self.max_retries, max_review_rounds=self.max_review_rounds
        )


class ReconciliationOrchestrator:
    def __init__(
        self,
        client: OracleClient,
        code_store: CodeStore,
        *,
        settings: OrchestrationSettings | None = None,
        checker: ConsistencyChecker | None = None,
        index: TraceabilityIndex | None = None,
        executor: TestExecutor | None = None,
        state_store: StateStore | None = None,
        exclusions: ExclusionList | None = None,
        logger: Any | None = None,
    ) -> None:
        self._client = client
        self._store = code_store
        self._settings = settings or OrchestrationSettings()
        self._exclusions = exclusions or ExclusionList()
        self._checker = checker or ConsistencyChecker(client)
        self._index = index or TraceabilityIndex(client, exclusions=self._exclusions)
        self._executor = executor or PytestExecutor()
        self._state_store = state_store
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        self._runner = ScopeRunner(
            client, self._executor, settings=self._settings.inner_loop(), logger=self._logger
        )
        self._residue = ResidueAnalyzer(
            client, severity=self._settings.residue_severity, logger=self._logger
        )
        self._proportionality = ProportionalityAnalyzer(
            k=self._settings.proportionality_k,
            threshold=self._settings.proportionality_threshold,
            severity=self._settings.flag_severity,
        )
        self._session: ReconciliationSession | None = None
        self._workspace: StagedWorkspace | None = None
        self._cancel_token = CancellationToken()
        self._running: asyncio.Task[Any] | None = None

    @property
    def session(self) -> ReconciliationSession | None:
        return self._session

    @property
    def index(self) -> TraceabilityIndex:
        return self._index

    @property
    def settings(self) -> OrchestrationSettings:
        return self._settings

    # ------------------------------------------------------------------
    # SPEC_RECONCILE → CONSISTENT
    # ------------------------------------------------------------------

    def start_session(
        self, build: BuildResult, *, session_id: str | None = None
    ) -> ReconciliationSession:
        """Open a session on the given spec snapshot and the store's current code."""

        session = ReconciliationSession(spec_graph=build.graph, code=self._store.snapshot())
        if session_id is not None:
            session.session_id = session_id
        self._session = session
        self._workspace = None
        self._cancel_token = CancellationToken()
        self._logger.info(
            "session_started",
            session_id=self._session.session_id,
            spec_snapshot=build.graph.snapshot_hash,
            code_snapshot=self._session.code.snapshot_hash,
        )
        return self._session

    async def reconcile_spec(
        self,
        corpus_loader: CorpusLoader,
        edit_callback: EditCallback | None = None,
        *,
        max_rounds: int | None = None,
        session_id: str | None = None,
    ) -> ConsistencyReport:
        """Check → human edit → rebuild until no errors remain or the loop gives up."""

        build = corpus_loader()
        session = self._session
        if session is None or session.is_terminal:
            session = self.start_session(build, session_id=session_id)
        else:
            if session.phase is SessionPhase.CONSISTENT:
                session.transition(SessionPhase.SPEC_RECONCILE)
            session.rebase_spec(build.graph)

        limit = max_rounds if max_rounds is not None else self._settings.max_spec_rounds
        rounds = 0
        with correlation_scope(session_id=session.session_id):
            while True:
                report = await self._checker.check(session.spec_graph, build.issues)
                session.issues = report.issues
                rounds += 1
                self._logger.info(
                    "consistency_gate",
                    session_id=session.session_id,
                    round=rounds,
                    errors=len(report.errors),
                    warnings=len(report.warnings),
                    open=report.is_consistent,
                )
                if report.is_consistent:
                    session.transition(SessionPhase.CONSISTENT)
                    return report
                if edit_callback is None or rounds >= limit:
                    return report
                proceed = edit_callback(report)
                if inspect.isawaitable(proceed):
                    proceed = await proceed
                if not proceed:
                    return report
                build = corpus_loader()
                session.rebase_spec(build.graph)

    # ------------------------------------------------------------------
    # CODE_RECONCILE → VERIFIED | FLAGGED
    # ------------------------------------------------------------------

    async def reconcile_code(self, *, triggers: Iterable[str] | None = None) -> SessionPhase:
        session = self._require_session()
        if session.phase is not SessionPhase.CONSISTENT:
            raise GateClosedError(
                f"code reconciliation requires CONSISTENT, session is {session.phase.value}"
            )
        session.transition(SessionPhase.CODE_RECONCILE)
        self._running = asyncio.current_task()
        workspace = StagedWorkspace(session.code, self._store, logger=self._logger)
        self._workspace = workspace

        try:
            with correlation_scope(session_id=session.session_id):
                await self._run_code_phase(session, workspace, triggers)
        except asyncio.CancelledError:
            workspace.discard()
            if session.phase is not SessionPhase.CANCELLED:
                session.transition(SessionPhase.CANCELLED)
            self._logger.warning("session_cancelled", session_id=session.session_id)
            if not self._cancel_token.is_cancelled:
                raise
        finally:
            self._running = None
        return session.phase

    async def _run_code_phase(
        self,
        session: ReconciliationSession,
        workspace: StagedWorkspace,
        triggers: Iterable[str] | None,
    ) -> None:
        graph = session.spec_graph
        await self._index.build(graph, session.code)
        for node_id, failure in sorted(self._index.failures.items()):
            session.unresolved.append(f"traceability {node_id}: {failure}")

        changed, spec_lines = self._changed_nodes(graph, session, triggers)
        session.triggers = changed
        session.spec_lines_changed = spec_lines

        scopes = compute_scopes(changed, self._index)
        session.scopes = tuple(scopes)
        waves = plan_waves(scopes, build_conflict_graph(scopes))
        self._logger.info(
            "scopes_planned",
            session_id=session.session_id,
            scopes=len(scopes),
            waves=len(waves),
            changed_nodes=len(changed),
        )

        for wave in waves:
            self._cancel_token.raise_if_cancelled()
            pool: WorkerPool[ScopeOutcome] = WorkerPool(
                self._settings.worker_count, cancel_token=self._cancel_token
            )
            outcomes = await pool.map(
                [lambda scope=scope: self._run_scope(scope, graph, workspace) for scope in wave]
            )
            contested = workspace.resolve_wave()
            self._logger.info(
                "wave_settled",
                session_id=session.session_id,
                scopes=[scope.scope_id for scope in wave],
                contested=sorted(contested),
                pool=pool.semaphore.snapshot(),
            )
            for outcome in outcomes:
                if outcome.scope_id in contested:
                    paths = ", ".join(contested[outcome.scope_id])
                    outcome = replace(
                        outcome,
                        status=ScopeStatus.CONFLICT,
                        details=(
                            *outcome.details,
                            f"conflict: {paths} also written by a lower scope id",
                        ),
                    )
                session.record_outcome(outcome)

        staged = workspace.staged_view()
        session.code_diff = diff_snapshots(session.code, staged)
        session.changed_units = session.code_diff.changed_files
        if session.code_diff.files_touched:
            await self._index.build(graph, staged)

        session.residue = tuple(
            await self._residue.analyze(staged, self._index.image(), self._exclusions)
        )
        flag = self._proportionality.analyze(session.spec_lines_changed, session.code_diff)
        session.proportionality_flags = () if flag is None else (flag,)

        verdict = self._verdict(session)
        session.transition(verdict)
        self._logger.info(
            "code_reconcile_settled",
            session_id=session.session_id,
            phase=verdict.value,
            outcomes=dict(summarize_outcomes(list(session.outcomes.values()))),
            failed_scopes=len(session.failed_scopes()),
            residue=len(session.residue),
            proportionality_flags=len(session.proportionality_flags),
        )

    async def _run_scope(
        self, scope: Scope, graph: SpecGraph, workspace: StagedWorkspace
    ) -> ScopeOutcome:
        try:
            return await self._runner.run(
                scope, graph, workspace, cancel_token=self._cancel_token
            )
        except ReconcilerError as exc:
            self._logger.warning("scope_errored", scope_id=scope.scope_id, error=str(exc))
            return ScopeOutcome(
                scope_id=scope.scope_id,
                status=ScopeStatus.FAILED,
                node_ids=scope.node_ids,
                unit_paths=scope.unit_paths,
                details=(str(exc),),
            )

    def _changed_nodes(
        self,
        graph: SpecGraph,
        session: ReconciliationSession,
        triggers: Iterable[str] | None,
    ) -> tuple[tuple[str, ...], int]:
        if triggers is not None:
            selected: set[str] = set()
            for trigger in triggers:
                if trigger in graph:
                    selected.add(trigger)
                elif trigger in session.code:
                    selected.update(node.node_id for node, _ in self._index.code_to_spec(trigger))
                else:
                    session.unresolved.append(f"unknown trigger: {trigger}")
            ordered = tuple(sorted(selected))
            return ordered, graph.spec_lines(ordered)

        last = self._state_store.last_commit() if self._state_store is not None else None
        if last is None:
            diff = diff_spec_graphs(None, graph)
        else:
            diff = diff_against_hashes(last.node_hashes, graph, old_texts=last.node_texts)
        return diff.touched, diff.spec_lines_changed

    def _verdict(self, session: ReconciliationSession) -> SessionPhase:
        blocking = self._settings.blocking_severity
        if session.failed_scopes() or session.error_issues():
            return SessionPhase.FLAGGED
        if any(finding.severity.at_least(blocking) for finding in session.residue):
            return SessionPhase.FLAGGED
        if any(flag.severity.at_least(blocking) for flag in session.proportionality_flags):
            return SessionPhase.FLAGGED
        if session.incomplete_scopes() or session.unresolved:
            return SessionPhase.FLAGGED
        return SessionPhase.VERIFIED

    # ------------------------------------------------------------------
    # COMMITTED / CANCELLED
    # ------------------------------------------------------------------

    def commit(self, trust_decision: TrustDecision | str = TrustDecision.AUTO) -> CommitRecord:
        session = self._require_session()
        decision = TrustDecision(trust_decision)
        if session.phase not in {SessionPhase.VERIFIED, SessionPhase.FLAGGED}:
            raise CommitRefusedError(f"cannot commit a session in {session.phase.value}")
        if decision is TrustDecision.DECLINE:
            raise CommitRefusedError("trust decision declined the commit")
        if session.has_blocking_condition():
            failed = ", ".join(outcome.scope_id for outcome in session.failed_scopes())
            raise CommitRefusedError(
                "blocking conditions remain"
                + (f": failed scopes {failed}" if failed else ": error issues present")
            )
        needs_ack = (
            session.phase is SessionPhase.FLAGGED
            or self._settings.trust_level is TrustLevel.ACKNOWLEDGE
        )
        if needs_ack and decision is not TrustDecision.ACKNOWLEDGE:
            raise CommitRefusedError(
                f"{session.phase.value} session under trust level "
                f"{self._settings.trust_level.value} requires acknowledgement"
            )

        workspace = self._workspace
        if workspace is None:
            raise CommitRefusedError("no staged workspace for this session")
        applied = workspace.commit()

        graph = session.spec_graph
        session.transition(SessionPhase.COMMITTED)
        record = CommitRecord(
            session_id=session.session_id,
            final_state=session.phase,
            spec_snapshot_hash=graph.snapshot_hash,
            code_snapshot_hash=workspace.staged_view().snapshot_hash,
            node_hashes={node.node_id: node.content_hash for node in graph},
            node_texts={node.node_id: node.text for node in graph},
            report=SessionReport.from_session(
                session, blocking_severity=self._settings.blocking_severity
            ).to_dict(),
        )
        if self._state_store is not None:
            self._state_store.record_commit(record)
        self._logger.info(
            "session_committed",
            session_id=session.session_id,
            decision=decision.value,
            applied=list(applied),
        )
        return record

    def cancel(self) -> None:
        """Abandon in-flight scopes, drop staged code, never commit."""

        self._cancel_token.cancel()
        session = self._session
        if self._workspace is not None:
            self._workspace.discard()
        running = self._running
        if running is not None and running is not asyncio.current_task() and not running.done():
            running.cancel()
            return
        if session is not None and session.can_transition(SessionPhase.CANCELLED):
            session.transition(SessionPhase.CANCELLED)
            self._logger.warning("session_cancelled", session_id=session.session_id)

    # ------------------------------------------------------------------
    # Whole flow
    # ------------------------------------------------------------------

    async def run_session(
        self,
        corpus_loader: CorpusLoader,
        *,
        edit_callback: EditCallback | None = None,
        triggers: Iterable[str] | None = None,
        trust_decision: TrustDecision | str = TrustDecision.AUTO,
        session_id: str | None = None,
    ) -> SessionReport:
        await self.reconcile_spec(corpus_loader, edit_callback, session_id=session_id)
        session = self._require_session()
        if session.phase is SessionPhase.CONSISTENT:
            await self.reconcile_code(triggers=triggers)
        if session.phase in {SessionPhase.VERIFIED, SessionPhase.FLAGGED}:
            try:
                self.commit(trust_decision)
            except CommitRefusedError as exc:
                self._logger.info(
                    "commit_refused", session_id=session.session_id, reason=str(exc)
                )
        return SessionReport.from_session(
            session, blocking_severity=self._settings.blocking_severity
        )

    def _require_session(self) -> ReconciliationSession:
        if self._session is None:
            raise GateClosedError("no reconciliation session has been started")
        return self._session


__all__ = [
    "OrchestrationSettings",
    "ReconciliationOrchestrator",
    "TrustDecision",
]
