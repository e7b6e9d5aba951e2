"""
spec-reconciler — consistency checker

File: src/spec_reconciler/consistency/checker.py
Last updated: 2026-10-17

Purpose
- Combine structural issues from the graph builder with semantic issues from
  oracle analysis into one deterministic report.

What should be included in this file
- Target-set enumeration per semantic category.
- Neighborhood-only context assembly.
- Verdict interpretation, caching, deduplication and ordering.

Functional requirements
- One analysis call per (category, target set); unchanged inputs hit the cache.
- Oracle failures become ``oracle-failure`` issues and are never cached.
- Re-running on an unchanged snapshot yields byte-identical JSON.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import structlog

from spec_reconciler.constants import CHECKER_VERSION
from spec_reconciler.domain.errors import OracleFailure
from spec_reconciler.domain.models import (
    SEMANTIC_CHECK_CATEGORIES,
    CanonicalModel,
    Confidence,
    Issue,
    IssueCategory,
    IssueKind,
    JSONValue,
    Severity,
    split_edge_id,
)
from spec_reconciler.oracle.base import ContextBundle, OracleCapability, OracleRequest
from spec_reconciler.oracle.cache import AnalysisCache
from spec_reconciler.oracle.context import spec_document
from spec_reconciler.utils.concurrency import WorkerPool

if TYPE_CHECKING:
    from spec_reconciler.oracle.client import OracleClient
    from spec_reconciler.spec_graph.graph import SpecGraph

_NO_ISSUE_VERDICTS = frozenset({"ok", "refinement", "consistent"})
_AMBIGUOUS_VERDICT = "ambiguous"


@dataclass(frozen=True, slots=True)
class CheckTarget:
    category: IssueKind
    node_ids: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class ConsistencyReport(CanonicalModel):
    snapshot_hash: str
    checker_version: str
    issues: tuple[Issue, ...] = field(default_factory=tuple)

    @property
    def errors(self) -> tuple[Issue, ...]:
        return tuple(issue for issue in self.issues if issue.severity is Severity.ERROR)

    @property
    def warnings(self) -> tuple[Issue, ...]:
        return tuple(issue for issue in self.issues if issue.severity is Severity.WARNING)

    @property
    def is_consistent(self) -> bool:
        """Gate condition: zero error-severity issues."""
        return not self.errors

    def of_kind(self, kind: IssueKind | str) -> tuple[Issue, ...]:
        wanted = IssueKind(kind)
        return tuple(issue for issue in self.issues if issue.kind is wanted)


class ConsistencyChecker:
    def __init__(
        self,
        client: OracleClient,
        *,
        categories: Sequence[IssueKind | str] = SEMANTIC_CHECK_CATEGORIES,
        checker_version: str = CHECKER_VERSION,
        cache: AnalysisCache | None = None,
        max_concurrency: int = 4,
        logger: Any | None = None,
    ) -> None:
        self._client = client
        self._categories = tuple(IssueKind(category) for category in categories)
        unknown = [c for c in self._categories if c not in SEMANTIC_CHECK_CATEGORIES]
        if unknown:
            raise ValueError(f"not semantic categories: {', '.join(c.value for c in unknown)}")
        self._checker_version = checker_version
        self._cache = cache if cache is not None else AnalysisCache(namespace="consistency")
        self._max_concurrency = max_concurrency
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        self.oracle_calls = 0

    @property
    def cache(self) -> AnalysisCache:
        return self._cache

    def targets(self, graph: SpecGraph) -> tuple[CheckTarget, ...]:
        """Enumerate (category, node set) pairs in deterministic order."""

        targets: list[CheckTarget] = []
        for category in self._categories:
            if category is IssueKind.CONTRADICTION:
                pairs = set(graph.parent_child_pairs()) | set(graph.sibling_pairs())
                for pair in sorted(tuple(sorted(p)) for p in pairs):
                    if pair[0] != pair[1]:
                        targets.append(CheckTarget(category, pair))
            else:
                targets.extend(CheckTarget(category, (node_id,)) for node_id in graph.nodes)
        return tuple(targets)

    async def check(
        self, graph: SpecGraph, build_issues: Iterable[Issue] = ()
    ) -> ConsistencyReport:
        structural = list(build_issues)
        targets = self.targets(graph)
        pool: WorkerPool[list[Issue]] = WorkerPool(self._max_concurrency)
        semantic = await pool.map(
            [lambda target=target: self._check_target(graph, target) for target in targets]
        )

        issues = merge_issues([*structural, *(issue for batch in semantic for issue in batch)])
        report = ConsistencyReport(
            snapshot_hash=graph.snapshot_hash,
            checker_version=self._checker_version,
            issues=issues,
        )
        self._logger.info(
            "consistency_check_completed",
            snapshot_hash=graph.snapshot_hash,
            targets=len(targets),
            errors=len(report.errors),
            warnings=len(report.warnings),
            consistent=report.is_consistent,
        )
        return report

    async def _check_target(self, graph: SpecGraph, target: CheckTarget) -> list[Issue]:
        context_ids = sorted(
            {neighbor for node_id in target.node_ids for neighbor in graph.neighborhood(node_id)}
            - set(target.node_ids)
        )
        involved = (*target.node_ids, *context_ids)
        hashes = sorted(graph.node(node_id).content_hash for node_id in involved)
        # Sibling and parent targets share one neighbourhood; the focus keeps them apart.
        key = AnalysisCache.make_key(
            list(target.node_ids), hashes, target.category.value, self._checker_version
        )

        cached = self._cache.get(key)
        if isinstance(cached, dict):
            return self._interpret(
                target, involved, cached.get("payload", {}), cached.get("confidence")
            )

        request = OracleRequest(
            capability=OracleCapability.ANALYZE,
            context=ContextBundle(
                focus=target.node_ids,
                documents=tuple(spec_document(graph.node(node_id)) for node_id in involved),
            ),
            constraints={
                "category": target.category.value,
                "checker_version": self._checker_version,
            },
        )
        self.oracle_calls += 1
        try:
            response = await self._client.analyze(request)
        except OracleFailure as exc:
            self._logger.warning(
                "consistency_oracle_failure",
                category=target.category.value,
                targets=list(target.node_ids),
                code=exc.code,
            )
            return [
                Issue(
                    kind=IssueKind.ORACLE_FAILURE,
                    severity=Severity.WARNING,
                    locations=target.node_ids,
                    explanation=f"{target.category.value} analysis failed: {exc}",
                    confidence=Confidence.LOW,
                    category=IssueCategory.ORACLE,
                )
            ]

        payload = dict(response.payload)
        self._cache.put(key, {"payload": payload, "confidence": response.confidence.value})
        return self._interpret(target, involved, payload, response.confidence.value)

    def _interpret(
        self,
        target: CheckTarget,
        involved: tuple[str, ...],
        payload: Mapping[str, Any],
        confidence: JSONValue,
    ) -> list[Issue]:
        verdict = str(payload.get("verdict", "ok")).strip().lower()
        raw_issues = payload.get("issues") or []
        if verdict in _NO_ISSUE_VERDICTS:
            return []

        default_confidence = _coerce_confidence(confidence, Confidence.MEDIUM)
        if not raw_issues:
            raw_issues = [
                {"explanation": payload.get("explanation") or f"{target.category.value} reported"}
            ]

        issues: list[Issue] = []
        for raw in raw_issues:
            if not isinstance(raw, Mapping):
                continue
            issue_confidence = _coerce_confidence(raw.get("confidence"), default_confidence)
            if verdict == _AMBIGUOUS_VERDICT:
                issue_confidence = issue_confidence.cap(Confidence.MEDIUM)
            issues.append(
                Issue(
                    kind=_coerce_kind(raw.get("kind"), target.category),
                    severity=_coerce_severity(raw.get("severity"), target.category),
                    locations=_valid_locations(raw.get("locations"), involved, target.node_ids),
                    explanation=str(raw.get("explanation") or f"{target.category.value} reported"),
                    confidence=issue_confidence,
                    category=IssueCategory.SEMANTIC,
                )
            )
        return issues


def merge_issues(issues: Iterable[Issue]) -> tuple[Issue, ...]:
    """Deduplicate by (kind, locations), keeping the most severe then most confident."""

    best: dict[tuple[str, tuple[str, ...]], Issue] = {}
    for issue in issues:
        current = best.get(issue.dedupe_key)
        if current is None or _preference(issue) < _preference(current):
            best[issue.dedupe_key] = issue
    return tuple(sorted(best.values(), key=Issue.sort_key))


def _preference(issue: Issue) -> tuple[int, int, str]:
    return (issue.severity.rank, -issue.confidence.rank, issue.explanation)


def _coerce_kind(value: object, default: IssueKind) -> IssueKind:
    try:
        kind = IssueKind(str(value)) if value is not None else default
    except ValueError:
        return default
    return kind if kind in SEMANTIC_CHECK_CATEGORIES else default


def _coerce_severity(value: object, category: IssueKind) -> Severity:
    if value is not None and str(value).lower() in {s.value for s in Severity}:
        return Severity(str(value).lower())
    return Severity.ERROR if category is IssueKind.CONTRADICTION else Severity.WARNING


def _coerce_confidence(value: object, default: Confidence) -> Confidence:
    try:
        return Confidence(str(value).lower()) if value is not None else default
    except ValueError:
        return default


def _valid_locations(
    value: object, involved: tuple[str, ...], fallback: tuple[str, ...]
) -> tuple[str, ...]:
    """Keep cited node or edge ids that were part of the call's context."""

    if not isinstance(value, list) or not value:
        return fallback
    seen = set(involved)
    known = [
        item
        for item in (str(raw) for raw in value)
        if item in seen or _edge_within(item, seen)
    ]
    return tuple(known) if known else fallback


def _edge_within(item: str, seen: set[str]) -> bool:
    try:
        source, target = split_edge_id(item)
    except ValueError:
        return False
    return source in seen and target in seen


__all__ = ["CheckTarget", "ConsistencyChecker", "ConsistencyReport", "merge_issues"]
