"""
spec-reconciler — spec graph builder

File: src/spec_reconciler/spec_graph/builder.py
Last updated: 2026-10-17

Purpose
- Read a markdown corpus and produce an immutable ``SpecGraph`` plus the
  structural issues found while building it.

Functional requirements
- Files are read in sorted POSIX order; undecodable files are skipped with an issue.
- Unresolved targets become ``broken-link`` issues and are never materialised as edges.
- Cycles, orphans, missing descriptions, non-spec targets and malformed
  declarations are all reported; the builder itself never raises on content.

Non-functional requirements
- Deterministic: the same corpus yields the same graph hash and issue order.
"""

from __future__ import annotations

import posixpath
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING

from spec_reconciler.constants import SPEC_FILE_SUFFIXES
from spec_reconciler.domain.models import (
    Confidence,
    Issue,
    IssueCategory,
    IssueKind,
    NodeKind,
    Severity,
    SpecEdge,
    SpecNode,
    edge_id_for,
    node_id_for,
)
from spec_reconciler.spec_graph.graph import SpecGraph
from spec_reconciler.spec_graph.parser import ParsedDocument, ParsedSection, parse_document

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

DEFAULT_INCLUDE: tuple[str, ...] = tuple(f"**/*{suffix}" for suffix in SPEC_FILE_SUFFIXES)


@dataclass(frozen=True, slots=True)
class BuildResult:
    graph: SpecGraph
    issues: tuple[Issue, ...] = field(default_factory=tuple)

    @property
    def errors(self) -> tuple[Issue, ...]:
        return tuple(issue for issue in self.issues if issue.is_blocking)


def build_spec_graph(
    corpus_root: str | Path,
    *,
    include: Sequence[str] = DEFAULT_INCLUDE,
) -> BuildResult:
    """Build the spec graph for every markdown file under ``corpus_root``."""

    root = Path(corpus_root)
    texts: dict[str, str] = {}
    issues: list[Issue] = []

    for relative in _discover(root, include):
        try:
            texts[relative] = (root / relative).read_bytes().decode("utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            issues.append(
                _structural(
                    IssueKind.UNREADABLE_FILE,
                    Severity.ERROR,
                    (relative,),
                    f"spec file could not be read as UTF-8: {exc}",
                )
            )

    return build_spec_graph_from_texts(texts, root=root, extra_issues=issues)


def build_spec_graph_from_texts(
    texts: dict[str, str],
    *,
    root: Path | None = None,
    extra_issues: Iterable[Issue] = (),
) -> BuildResult:
    """Build from an in-memory ``{relative_path: markdown}`` corpus.

    ``root`` is only consulted to tell non-markdown targets apart from missing ones.
    """

    documents = {path: parse_document(path, texts[path]) for path in sorted(texts)}
    issues: list[Issue] = list(extra_issues)

    slugs_by_path: dict[str, set[str]] = {
        path: {section.heading_id for section in document.sections}
        for path, document in documents.items()
    }

    edges: list[SpecEdge] = []
    pending_nodes: list[tuple[ParsedDocument, ParsedSection, int]] = []

    for path, document in documents.items():
        for problem in document.problems:
            location = node_id_for(path, problem.heading_id) if problem.heading_id else path
            issues.append(
                _structural(
                    IssueKind.MALFORMED_DECLARATION,
                    Severity.ERROR,
                    (location,),
                    f"{path}:{problem.line}: {problem.message}",
                )
            )

        for section in document.sections:
            source_id = node_id_for(path, section.heading_id)
            resolved_count = 0
            for declaration in section.declarations:
                target_path = _resolve_target_path(
                    declaration.target_path, path, documents.keys(), root
                )
                target_id = node_id_for(target_path, declaration.target_slug)
                if target_path in documents:
                    if declaration.target_slug in slugs_by_path[target_path]:
                        edges.append(
                            SpecEdge(source=source_id, target=target_id, line=declaration.line)
                        )
                        resolved_count += 1
                        continue
                    issues.append(
                        _structural(
                            IssueKind.BROKEN_LINK,
                            Severity.ERROR,
                            (edge_id_for(source_id, target_id),),
                            f"{path}:{declaration.line}: heading '{declaration.target_slug}' "
                            f"not found in {target_path}",
                        )
                    )
                    continue
                if root is not None and _is_non_spec_file(root / target_path):
                    issues.append(
                        _structural(
                            IssueKind.NON_SPEC_TARGET,
                            Severity.ERROR,
                            (edge_id_for(source_id, target_id),),
                            f"{path}:{declaration.line}: target {target_path} "
                            "is not a spec document",
                        )
                    )
                    continue
                issues.append(
                    _structural(
                        IssueKind.BROKEN_LINK,
                        Severity.ERROR,
                        (edge_id_for(source_id, target_id),),
                        f"{path}:{declaration.line}: target file {target_path} does not exist",
                    )
                )
            pending_nodes.append((document, section, resolved_count))

    nodes: list[SpecNode] = []
    for document, section, resolved_count in pending_nodes:
        kind = section.kind
        if kind is None:
            kind = NodeKind.BEHAVIORAL if resolved_count else NodeKind.INTENT
        node = SpecNode(
            file_path=document.path,
            heading_id=section.heading_id,
            title=section.title,
            text=section.body,
            kind=kind,
            level=section.level,
            line=section.line,
            has_description=section.has_description,
        )
        nodes.append(node)
        if not node.has_description:
            issues.append(
                _structural(
                    IssueKind.MISSING_DESCRIPTION,
                    Severity.WARNING,
                    (node.node_id,),
                    f"heading '{node.title}' has no description text",
                )
            )

    graph = SpecGraph(nodes, edges)

    for cycle in graph.detect_cycles():
        issues.append(
            _structural(
                IssueKind.CYCLE,
                Severity.ERROR,
                cycle,
                "specifies relation forms a cycle through: " + ", ".join(cycle),
            )
        )

    for orphan in graph.orphans():
        issues.append(
            _structural(
                IssueKind.ORPHAN,
                Severity.WARNING,
                (orphan,),
                "node neither specifies nor is specified by any other node",
            )
        )

    return BuildResult(graph=graph, issues=tuple(sorted(issues, key=Issue.sort_key)))


def _discover(root: Path, include: Sequence[str]) -> list[str]:
    found: set[str] = set()
    if not root.is_dir():
        return []
    for pattern in include:
        for candidate in root.glob(pattern):
            if not candidate.is_file():
                continue
            relative = candidate.relative_to(root)
            if any(part.startswith(".") for part in relative.parts):
                continue
            found.add(relative.as_posix())
    return sorted(found)


def _normalize_target(raw: str) -> str:
    cleaned = raw.strip()
    while cleaned.startswith("./"):
        cleaned = cleaned[2:]
    return posixpath.normpath(cleaned.lstrip("/"))


def _resolve_target_path(
    raw: str,
    declaring_path: str,
    known_paths: Iterable[str],
    root: Path | None,
) -> str:
    """Resolve relative to the corpus root, falling back to the declaring file's directory."""

    known = set(known_paths)
    from_root = _normalize_target(raw)
    if from_root in known:
        return from_root
    if not raw.startswith("/"):
        parent = str(PurePosixPath(declaring_path).parent)
        if parent not in {"", "."}:
            from_file = posixpath.normpath(posixpath.join(parent, raw.strip()))
            if from_file in known:
                return from_file
            if root is not None and (root / from_file).is_file():
                return from_file
    return from_root


def _is_non_spec_file(path: Path) -> bool:
    return path.is_file() and path.suffix.lower() not in SPEC_FILE_SUFFIXES


def _structural(
    kind: IssueKind,
    severity: Severity,
    locations: Sequence[str],
    explanation: str,
) -> Issue:
    return Issue(
        kind=kind,
        severity=severity,
        locations=tuple(locations),
        explanation=explanation,
        confidence=Confidence.HIGH,
        category=IssueCategory.STRUCTURAL,
    )


__all__ = ["DEFAULT_INCLUDE", "BuildResult", "build_spec_graph", "build_spec_graph_from_texts"]
