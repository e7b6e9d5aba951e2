"""
spec-reconciler — traceability index

File: src/spec_reconciler/traceability/index.py
Last updated: 2026-10-17

Purpose
- Bidirectional mapping between spec nodes and code units with confidence.

What should be included in this file
- Oracle-backed link derivation over the code inventory (never full code text).
- Keyword narrowing of large inventories before the detailed oracle pass.
- A pair cache keyed by (node content hash, unit path, unit content hash).

Functional requirements
- ``rebuild`` replaces all links and cached pairs wholesale; nothing stale survives.
- Excluded units are never offered to the oracle and never carry links.
- Links naming unknown units are discarded with a warning.
- Query results are ordered by confidence (high first) then id.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Final

import structlog

from spec_reconciler.code_artifact.exclusions import ExclusionList
from spec_reconciler.domain.errors import OracleFailure
from spec_reconciler.domain.models import CodeUnit, Confidence, SpecNode, TraceLink
from spec_reconciler.oracle.base import ContextBundle, OracleCapability, OracleRequest
from spec_reconciler.oracle.cache import AnalysisCache
from spec_reconciler.oracle.context import inventory_document, spec_document
from spec_reconciler.utils.concurrency import WorkerPool

if TYPE_CHECKING:
    from collections.abc import Iterable

    from spec_reconciler.code_artifact.snapshot import CodeSnapshot
    from spec_reconciler.oracle.client import OracleClient
    from spec_reconciler.spec_graph.graph import SpecGraph

_WORD_RE: Final[re.Pattern[str]] = re.compile(r"[a-z0-9]+")
_PATH_SPLIT_RE: Final[re.Pattern[str]] = re.compile(r"[/_.\-\s]+")
_MIN_TOKEN_LENGTH: Final[int] = 3
_STOPWORDS: Final[frozenset[str]] = frozenset(
    {
        "the", "and", "for", "with", "that", "this", "from", "into", "must", "shall",
        "should", "will", "are", "not", "all", "any", "each", "when", "then", "than",
        "its", "has", "have", "may", "can", "use", "uses", "used", "via", "per",
    }
)  # fmt: skip


@dataclass(frozen=True, slots=True)
class TraceStats:
    nodes: int
    links: int
    oracle_calls: int
    cached_pairs: int
    narrowed_nodes: int


class TraceabilityIndex:
    def __init__(
        self,
        client: OracleClient,
        *,
        exclusions: ExclusionList | None = None,
        narrowing_threshold: int = 200,
        primary_confidence: Confidence | str = Confidence.HIGH,
        cache: AnalysisCache | None = None,
        max_concurrency: int = 4,
        logger: Any | None = None,
    ) -> None:
        if narrowing_threshold < 1:
            raise ValueError("narrowing_threshold must be >= 1")
        self._client = client
        self._exclusions = exclusions or ExclusionList()
        self._narrowing_threshold = narrowing_threshold
        self._primary_confidence = Confidence(primary_confidence)
        self._cache = cache if cache is not None else AnalysisCache(namespace="trace")
        self._max_concurrency = max_concurrency
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

        self._graph: SpecGraph | None = None
        self._code: CodeSnapshot | None = None
        self._links: dict[str, dict[str, Confidence]] = {}
        self.failures: dict[str, str] = {}
        self._oracle_calls = 0
        self._narrowed = 0
        self._refresh = False

    # ------------------------------------------------------------------
    # Derivation
    # ------------------------------------------------------------------

    @property
    def exclusions(self) -> ExclusionList:
        return self._exclusions

    @property
    def primary_confidence(self) -> Confidence:
        return self._primary_confidence

    async def build(self, graph: SpecGraph, code: CodeSnapshot) -> TraceabilityIndex:
        """Derive links for every node, reusing cached (node, unit) pairs."""

        self._graph = graph
        self._code = code
        self._links = {}
        self.failures = {}
        self._oracle_calls = 0
        self._narrowed = 0

        candidates = self._exclusions.filter(code.keys())
        pool: WorkerPool[dict[str, Confidence]] = WorkerPool(self._max_concurrency)
        nodes = list(graph)
        results = await pool.map(
            [lambda node=node: self._derive_node(node, code, candidates) for node in nodes]
        )
        for node, links in zip(nodes, results, strict=True):
            if links:
                self._links[node.node_id] = links

        stats = self.stats()
        self._logger.info(
            "traceability_built",
            nodes=stats.nodes,
            links=stats.links,
            oracle_calls=stats.oracle_calls,
            narrowed_nodes=stats.narrowed_nodes,
            failures=sorted(self.failures),
        )
        return self

    async def rebuild(self, graph: SpecGraph, code: CodeSnapshot) -> TraceabilityIndex:
        """Discard every cached pair and link, then build from scratch."""

        self._cache.clear()
        self._links = {}
        self._refresh = True
        try:
            return await self.build(graph, code)
        finally:
            self._refresh = False

    def with_exclusions(self, exclusions: ExclusionList) -> TraceabilityIndex:
        """Swap the exclusion list; links to newly excluded units are dropped."""

        self._exclusions = exclusions
        self._links = {
            node_id: kept
            for node_id, links in self._links.items()
            if (kept := {p: c for p, c in links.items() if not exclusions.is_excluded(p)})
        }
        return self

    async def _derive_node(
        self, node: SpecNode, code: CodeSnapshot, candidates: tuple[str, ...]
    ) -> dict[str, Confidence]:
        if len(candidates) > self._narrowing_threshold:
            self._narrowed += 1
            candidates = narrow_candidates(node, candidates)

        resolved: dict[str, Confidence] = {}
        pending: list[str] = []
        for path in candidates:
            cached = self._cache.get(self._pair_key(node, code[path]))
            if isinstance(cached, dict):
                confidence = cached.get("confidence")
                if isinstance(confidence, str):
                    resolved[path] = Confidence(confidence)
            else:
                pending.append(path)

        if not pending:
            return resolved

        request = OracleRequest(
            capability=OracleCapability.TRACE,
            context=ContextBundle(
                focus=(node.node_id,),
                documents=(spec_document(node), inventory_document(code.inventory(pending))),
            ),
            constraints={"candidates": len(pending)},
        )
        self._oracle_calls += 1
        try:
            response = await self._client.analyze(request, refresh=self._refresh)
        except OracleFailure as exc:
            self.failures[node.node_id] = str(exc)
            self._logger.warning(
                "traceability_oracle_failure", node_id=node.node_id, code=exc.code
            )
            return resolved

        offered = set(pending)
        found: dict[str, Confidence] = {}
        for raw in response.payload.get("links") or []:
            if not isinstance(raw, dict):
                continue
            path = str(raw.get("path", ""))
            if path not in offered:
                self._logger.warning(
                    "traceability_unknown_unit_discarded", node_id=node.node_id, path=path
                )
                continue
            found[path] = _coerce_confidence(raw.get("confidence"), response.confidence)

        for path in pending:
            confidence = found.get(path)
            self._cache.put(
                self._pair_key(node, code[path]),
                {"confidence": None if confidence is None else confidence.value},
            )
        resolved.update(found)
        return resolved

    @staticmethod
    def _pair_key(node: SpecNode, unit: CodeUnit) -> str:
        # Unit hashes cover content only; identical files at two paths are distinct pairs.
        return AnalysisCache.make_key(node.content_hash, unit.path, unit.content_hash)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def spec_to_code(self, node_id: str) -> list[tuple[CodeUnit, Confidence]]:
        code = self._require_code()
        links = self._links.get(node_id, {})
        ordered = sorted(links.items(), key=lambda item: (-item[1].rank, item[0]))
        return [(code[path], confidence) for path, confidence in ordered if path in code]

    def code_to_spec(self, unit_path: str) -> list[tuple[SpecNode, Confidence]]:
        graph = self._require_graph()
        pairs = [
            (node_id, links[unit_path])
            for node_id, links in self._links.items()
            if unit_path in links and node_id in graph
        ]
        pairs.sort(key=lambda item: (-item[1].rank, item[0]))
        return [(graph.node(node_id), confidence) for node_id, confidence in pairs]

    def links(self) -> tuple[TraceLink, ...]:
        return tuple(
            TraceLink(node_id=node_id, unit_path=path, confidence=confidence)
            for node_id in sorted(self._links)
            for path, confidence in sorted(self._links[node_id].items())
        )

    def image(self) -> frozenset[str]:
        """Every unit path traced by at least one node."""
        return frozenset(path for links in self._links.values() for path in links)

    def units_for(self, node_ids: Iterable[str], *, primary_only: bool = False) -> set[str]:
        result: set[str] = set()
        for node_id in node_ids:
            for path, confidence in self._links.get(node_id, {}).items():
                if primary_only and confidence.rank < self._primary_confidence.rank:
                    continue
                result.add(path)
        return result

    def stats(self) -> TraceStats:
        return TraceStats(
            nodes=0 if self._graph is None else len(self._graph),
            links=sum(len(links) for links in self._links.values()),
            oracle_calls=self._oracle_calls,
            cached_pairs=len(self._cache),
            narrowed_nodes=self._narrowed,
        )

    def _require_graph(self) -> SpecGraph:
        if self._graph is None:
            raise RuntimeError("traceability index has not been built")
        return self._graph

    def _require_code(self) -> CodeSnapshot:
        if self._code is None:
            raise RuntimeError("traceability index has not been built")
        return self._code


def keyword_tokens(text: str) -> set[str]:
    return {
        token
        for token in _WORD_RE.findall(text.lower())
        if len(token) >= _MIN_TOKEN_LENGTH and token not in _STOPWORDS
    }


def narrow_candidates(node: SpecNode, candidates: Iterable[str]) -> tuple[str, ...]:
    """Keep units whose path components share a keyword with the node's title or text."""

    tokens = keyword_tokens(f"{node.title} {node.text}")
    selected: list[str] = []
    for path in candidates:
        parts = [
            part for part in _PATH_SPLIT_RE.split(path.lower()) if len(part) >= _MIN_TOKEN_LENGTH
        ]
        if any(_shares_keyword(part, tokens) for part in parts):
            selected.append(path)
    return tuple(sorted(selected))


def _shares_keyword(part: str, tokens: set[str]) -> bool:
    return part in tokens or any(token.startswith(part) for token in tokens)


def _coerce_confidence(value: object, default: Confidence) -> Confidence:
    text = str(value).lower() if value is not None else ""
    return Confidence(text) if text in {c.value for c in Confidence} else default


__all__ = ["TraceStats", "TraceabilityIndex", "keyword_tokens", "narrow_candidates"]
