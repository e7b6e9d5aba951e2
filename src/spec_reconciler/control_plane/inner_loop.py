"""
spec-reconciler — per-scope inner loop

File: src/spec_reconciler/control_plane/inner_loop.py
Last updated: 2026-10-17

Purpose
- Drive one scope through generate → review → test → maybe retry, sequentially.

What should be included in this file
- ``RoleTask``: a tagged work item carrying one oracle capability, with the
  per-capability context assembly for coder and reviewer.
- ``ScopeRunner``: bounded retries, spec-only test derivation, optimistic
  versioning against the staged workspace.

Functional requirements
- The reviewer sees only the specs and the resulting code, never the coder's summary.
- Review disagreements are settled by both roles re-reading the spec; the coder
  revises against the reviewer's findings, bounded by ``max_review_rounds``.
- Test failures feed back to the coder up to ``max_retries`` times, then the scope
  is ``FAILED``.
- A hash race at staging time is retried once against fresh content, then the
  scope is ``CONFLICT``.
- Tests are derived for behavioral and constraint nodes only; derivation failures
  mark the scope incomplete but do not fail it.
- Writes to existing units outside the scope are dropped and reported.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import structlog

from spec_reconciler.code_artifact.snapshot import normalize_unit_path
from spec_reconciler.domain.errors import OracleFailure, ScopeConflictError, TestDerivationFailure
from spec_reconciler.domain.models import NodeKind, ScopeOutcome, ScopeStatus, TestCase
from spec_reconciler.observability.logging import correlation_scope
from spec_reconciler.oracle.base import ContextBundle, OracleCapability, OracleRequest
from spec_reconciler.oracle.context import code_document, feedback_document, spec_document
from spec_reconciler.verification.test_derivation import TestDerivationAdapter

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from spec_reconciler.code_artifact.snapshot import CodeSnapshot
    from spec_reconciler.control_plane.scopes import Scope
    from spec_reconciler.control_plane.workspace import StagedWorkspace
    from spec_reconciler.oracle.client import OracleClient
    from spec_reconciler.spec_graph.graph import SpecGraph
    from spec_reconciler.utils.concurrency import CancellationToken
    from spec_reconciler.verification.test_execution import TestExecutor

# Intent and interface nodes get no derived tests of their own.
_TESTED_KINDS = frozenset({NodeKind.BEHAVIORAL, NodeKind.CONSTRAINT})


@dataclass(frozen=True, slots=True)
class InnerLoopSettings:
    max_retries: int = 2
    max_review_rounds: int = 2

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.max_review_rounds < 1:
            raise ValueError("max_review_rounds must be >= 1")


@dataclass(frozen=True, slots=True)
class RoleTask:
    """One unit of role work dispatched through the oracle."""

    capability: OracleCapability
    scope: Scope
    attempt: int
    feedback: tuple[str, ...] = ()
    extra_paths: tuple[str, ...] = ()

    def to_request(self, graph: SpecGraph, code: CodeSnapshot) -> OracleRequest:
        specs = tuple(spec_document(graph.node(node_id)) for node_id in self.scope.node_ids)
        if self.capability is OracleCapability.GENERATE:
            paths = self.scope.unit_paths
        elif self.capability is OracleCapability.REVIEW:
            paths = tuple(sorted(set(self.scope.unit_paths) | set(self.extra_paths)))
        else:
            raise ValueError(f"{self.capability.value} is not a scope role")

        documents = [*specs]
        for path in paths:
            text = code.text(path)
            if text is not None:
                documents.append(code_document(path, text))
        if self.capability is OracleCapability.GENERATE and self.feedback:
            documents.append(feedback_document("feedback", self.feedback))

        return OracleRequest(
            capability=self.capability,
            context=ContextBundle(focus=self.scope.node_ids, documents=tuple(documents)),
            constraints={
                "scope_id": self.scope.scope_id,
                "attempt": self.attempt,
                "prefer_minimal_diff": self.capability is OracleCapability.GENERATE,
            },
        )


@dataclass(slots=True)
class _AttemptState:
    changes: dict[str, str | None] = field(default_factory=dict)
    tests_passed: int = 0
    tests_failed: int = 0
    attempts: int = 0
    tests_incomplete: bool = False
    details: list[str] = field(default_factory=list)


class ScopeRunner:
    def __init__(
        self,
        client: OracleClient,
        executor: TestExecutor,
        *,
        settings: InnerLoopSettings | None = None,
        derivation: TestDerivationAdapter | None = None,
        logger: Any | None = None,
    ) -> None:
        self._client = client
        self._executor = executor
        self._settings = settings or InnerLoopSettings()
        self._derivation = derivation or TestDerivationAdapter(client)
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    async def run(
        self,
        scope: Scope,
        graph: SpecGraph,
        workspace: StagedWorkspace,
        *,
        cancel_token: CancellationToken | None = None,
    ) -> ScopeOutcome:
        with correlation_scope(scope_id=scope.scope_id):
            self._logger.info(
                "scope_started",
                scope_id=scope.scope_id,
                nodes=list(scope.node_ids),
                units=list(scope.unit_paths),
            )
            conflicts: list[str] = []
            refresh: set[str] = set()
            while True:
                view, captured = workspace.open_view(scope.unit_paths, refresh=refresh)
                state, status = await self._attempt(scope, graph, view, cancel_token)
                state.details[:0] = conflicts
                if status is not ScopeStatus.PASSED:
                    return self._settle(scope, status, state)
                try:
                    workspace.stage(scope.scope_id, state.changes, captured)
                except ScopeConflictError as exc:
                    conflicts.append(f"conflict: {', '.join(exc.paths)} changed underneath")
                    refresh.update(scope.unit_paths)
                    refresh.update(exc.paths)
                    self._logger.warning(
                        "scope_conflict",
                        scope_id=scope.scope_id,
                        paths=list(exc.paths),
                        retry=len(conflicts) == 1,
                    )
                    if len(conflicts) > 1:
                        state.details.append(conflicts[-1])
                        return self._settle(scope, ScopeStatus.CONFLICT, state)
                    continue
                return self._settle(scope, ScopeStatus.PASSED, state)

    async def _attempt(
        self,
        scope: Scope,
        graph: SpecGraph,
        base: CodeSnapshot,
        cancel_token: CancellationToken | None,
    ) -> tuple[_AttemptState, ScopeStatus]:
        state = _AttemptState()
        tests = await self._derive_tests(scope, graph, state)
        feedback: tuple[str, ...] = ()

        for attempt in range(1, self._settings.max_retries + 2):
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()
            state.attempts = attempt
            try:
                approved, findings = await self._generate_and_review(
                    scope, graph, base, state, attempt, feedback
                )
            except OracleFailure as exc:
                state.details.append(f"oracle failure: {exc}")
                return state, ScopeStatus.FAILED

            if not approved:
                feedback = tuple(f"reviewer: {item}" for item in findings) or (
                    "reviewer rejected the change without findings",
                )
                state.details.append(f"attempt {attempt}: review not approved")
                continue

            if not tests:
                return state, ScopeStatus.PASSED

            if cancel_token is not None:
                cancel_token.raise_if_cancelled()
            result = await self._executor.run(tests, base.with_files(state.changes))
            state.tests_passed = len(result.passed)
            state.tests_failed = len(result.tests) - len(result.passed)
            self._logger.info(
                "scope_tests_executed",
                scope_id=scope.scope_id,
                attempt=attempt,
                passed=state.tests_passed,
                failed=state.tests_failed,
                timed_out=result.timed_out,
            )
            if result.all_passed:
                return state, ScopeStatus.PASSED
            feedback = tuple(result.failure_summaries())
            state.details.append(f"attempt {attempt}: {state.tests_failed} test(s) not passing")

        state.details.append(f"retries exhausted after {state.attempts} attempt(s)")
        return state, ScopeStatus.FAILED

    async def _generate_and_review(
        self,
        scope: Scope,
        graph: SpecGraph,
        base: CodeSnapshot,
        state: _AttemptState,
        attempt: int,
        feedback: tuple[str, ...],
    ) -> tuple[bool, list[str]]:
        findings: list[str] = []
        for review_round in range(1, self._settings.max_review_rounds + 1):
            coder = RoleTask(OracleCapability.GENERATE, scope, attempt, feedback)
            response = await self._client.generate(
                coder.to_request(graph, base.with_files(state.changes))
            )
            state.changes.update(
                self._accept_files(scope, base, state, response.payload.get("files"))
            )

            changed_paths = tuple(sorted(state.changes))
            reviewer = RoleTask(
                OracleCapability.REVIEW, scope, attempt, extra_paths=changed_paths
            )
            verdict = await self._client.generate(
                reviewer.to_request(graph, base.with_files(state.changes))
            )
            approved = bool(verdict.payload.get("approved"))
            raw_findings = verdict.payload.get("findings") or []
            findings = (
                [str(item) for item in raw_findings] if isinstance(raw_findings, list) else []
            )
            self._logger.info(
                "scope_reviewed",
                scope_id=scope.scope_id,
                attempt=attempt,
                review_round=review_round,
                approved=approved,
                findings=len(findings),
            )
            if approved:
                return True, findings
            feedback = tuple(f"reviewer: {item}" for item in findings)
        return False, findings

    async def _derive_tests(
        self, scope: Scope, graph: SpecGraph, state: _AttemptState
    ) -> list[TestCase]:
        tests: list[TestCase] = []
        for node_id in scope.node_ids:
            kind = graph.node(node_id).kind
            if kind not in _TESTED_KINDS:
                self._logger.debug(
                    "test_derivation_skipped",
                    scope_id=scope.scope_id,
                    node_id=node_id,
                    kind=kind.value,
                )
                continue
            try:
                result = await self._derivation.derive(graph, node_id)
            except TestDerivationFailure as exc:
                state.tests_incomplete = True
                state.details.append(f"test derivation failed for {node_id}: {exc.detail}")
                self._logger.warning(
                    "test_derivation_failed", scope_id=scope.scope_id, node_id=node_id
                )
                continue
            tests.extend(result.tests)
        return tests

    def _accept_files(
        self, scope: Scope, base: CodeSnapshot, state: _AttemptState, raw: object
    ) -> dict[str, str | None]:
        accepted: dict[str, str | None] = {}
        if not isinstance(raw, dict):
            return accepted
        owned = set(scope.unit_paths)
        for raw_path, text in raw.items():
            try:
                path = normalize_unit_path(str(raw_path))
            except ValueError:
                self._logger.warning(
                    "generated_path_rejected", scope_id=scope.scope_id, path=str(raw_path)
                )
                continue
            # Existing units belong to the scopes that trace them; only new files are free.
            if path in base and path not in owned:
                self._logger.warning(
                    "generated_path_outside_scope", scope_id=scope.scope_id, path=path
                )
                detail = f"dropped write outside scope: {path}"
                if detail not in state.details:
                    state.details.append(detail)
                continue
            accepted[path] = text if isinstance(text, str) or text is None else str(text)
        return accepted

    def _settle(self, scope: Scope, status: ScopeStatus, state: _AttemptState) -> ScopeOutcome:
        outcome = ScopeOutcome(
            scope_id=scope.scope_id,
            status=status,
            node_ids=scope.node_ids,
            unit_paths=tuple(sorted(set(scope.unit_paths) | set(state.changes))),
            tests_passed=state.tests_passed,
            tests_failed=state.tests_failed,
            attempts=state.attempts,
            tests_incomplete=state.tests_incomplete,
            details=tuple(state.details),
        )
        self._logger.info(
            "scope_settled",
            scope_id=scope.scope_id,
            status=status.value,
            attempts=state.attempts,
            tests_passed=state.tests_passed,
            tests_failed=state.tests_failed,
            tests_incomplete=state.tests_incomplete,
        )
        return outcome


def summarize_outcomes(outcomes: Sequence[ScopeOutcome]) -> Mapping[str, int]:
    counts: dict[str, int] = {status.value: 0 for status in ScopeStatus}
    for outcome in outcomes:
        counts[outcome.status.value] += 1
    return counts


__all__ = ["InnerLoopSettings", "RoleTask", "ScopeRunner", "summarize_outcomes"]
