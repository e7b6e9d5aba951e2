"""Dataclass domain models with strict validation and canonical serialization."""

from __future__ import annotations

import json
import math
from collections.abc import Mapping
from dataclasses import dataclass, field, fields, is_dataclass, replace
from enum import Enum, StrEnum
from typing import NoReturn, cast

from spec_reconciler.constants import CONFIDENCE_RANK, SEVERITY_RANK
from spec_reconciler.utils.hashing import sha256_text

JSONScalar = str | int | float | bool | None
JSONValue = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]

_EDGE_SEPARATOR = "->"
_NODE_SEPARATOR = "#"


class NodeKind(StrEnum):
    INTENT = "intent"
    BEHAVIORAL = "behavioral"
    INTERFACE = "interface"
    CONSTRAINT = "constraint"


class Severity(StrEnum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"

    @property
    def rank(self) -> int:
        """Lower rank sorts first; ``error`` is the most severe."""
        return SEVERITY_RANK[self.value]

    def at_least(self, other: Severity) -> bool:
        return self.rank <= other.rank


class Confidence(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return CONFIDENCE_RANK[self.value]

    def cap(self, ceiling: Confidence) -> Confidence:
        return self if self.rank <= ceiling.rank else ceiling


class IssueCategory(StrEnum):
    STRUCTURAL = "structural"
    SEMANTIC = "semantic"
    ORACLE = "oracle"


class IssueKind(StrEnum):
    CYCLE = "cycle"
    BROKEN_LINK = "broken-link"
    ORPHAN = "orphan"
    NON_SPEC_TARGET = "non-spec-target"
    MISSING_DESCRIPTION = "missing-description"
    MALFORMED_DECLARATION = "malformed-declaration"
    UNREADABLE_FILE = "unreadable-file"
    CONTRADICTION = "contradiction"
    GAP = "gap"
    AMBIGUITY = "ambiguity"
    SCOPE_CREEP = "scope-creep"
    IMPLEMENTABILITY = "implementability"
    COMPLETENESS = "completeness"
    ORACLE_FAILURE = "oracle-failure"


STRUCTURAL_ISSUE_KINDS: frozenset[IssueKind] = frozenset(
    {
        IssueKind.CYCLE,
        IssueKind.BROKEN_LINK,
        IssueKind.ORPHAN,
        IssueKind.NON_SPEC_TARGET,
        IssueKind.MISSING_DESCRIPTION,
        IssueKind.MALFORMED_DECLARATION,
        IssueKind.UNREADABLE_FILE,
    }
)
SEMANTIC_CHECK_CATEGORIES: tuple[IssueKind, ...] = (
    IssueKind.CONTRADICTION,
    IssueKind.GAP,
    IssueKind.AMBIGUITY,
    IssueKind.SCOPE_CREEP,
    IssueKind.IMPLEMENTABILITY,
    IssueKind.COMPLETENESS,
)


class SessionPhase(StrEnum):
    SPEC_RECONCILE = "SPEC_RECONCILE"
    CONSISTENT = "CONSISTENT"
    CODE_RECONCILE = "CODE_RECONCILE"
    VERIFIED = "VERIFIED"
    FLAGGED = "FLAGGED"
    COMMITTED = "COMMITTED"
    CANCELLED = "CANCELLED"


class ScopeStatus(StrEnum):
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    PASSED = "PASSED"
    FAILED = "FAILED"
    CONFLICT = "CONFLICT"
    CANCELLED = "CANCELLED"

    @property
    def is_failure(self) -> bool:
        return self in {ScopeStatus.FAILED, ScopeStatus.CONFLICT}


class TestStatus(StrEnum):
    __test__ = False

    PASS = "pass"
    FAIL = "fail"
    UNKNOWN = "unknown"


class ResidueHint(StrEnum):
    DEAD_CODE = "dead-code"
    NEEDS_SPEC = "needs-spec"
    HALLUCINATED = "hallucinated"
    UNKNOWN = "unknown"


class TrustLevel(StrEnum):
    AUTO = "auto"
    ACKNOWLEDGE = "acknowledge"


class CanonicalModel:
    """Mixin for canonical dict/json serialization."""

    def to_dict(self) -> dict[str, JSONValue]:
        serialized = _serialize_value(self, self.__class__.__name__)
        if not isinstance(serialized, dict):
            _fail(self.__class__.__name__, "serialized model must be an object")
        return serialized

    def to_json(self) -> str:
        return canonical_json(self.to_dict())


def canonical_json(value: JSONValue) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def node_id_for(file_path: str, heading_id: str) -> str:
    return f"{file_path}{_NODE_SEPARATOR}{heading_id}"


def edge_id_for(source: str, target: str) -> str:
    return f"{source}{_EDGE_SEPARATOR}{target}"


def split_edge_id(edge_id: str) -> tuple[str, str]:
    source, separator, target = edge_id.partition(_EDGE_SEPARATOR)
    if not separator or not source or not target:
        raise ValueError(f"edge id must look like 'source->target', got {edge_id!r}")
    return source, target


@dataclass(frozen=True, slots=True)
class SpecNode(CanonicalModel):
    """Heading-level unit of specification text; immutable once hashed."""

    file_path: str
    heading_id: str
    title: str
    text: str
    kind: NodeKind = NodeKind.INTENT
    level: int = 1
    line: int = 1
    has_description: bool = True
    content_hash: str = ""

    def __post_init__(self) -> None:
        if not self.file_path.strip():
            _fail("SpecNode.file_path", "must not be empty")
        if not self.heading_id.strip():
            _fail("SpecNode.heading_id", "must not be empty")
        if not 1 <= self.level <= 6:
            _fail("SpecNode.level", "must be between 1 and 6")
        if self.line < 1:
            _fail("SpecNode.line", "must be >= 1")
        object.__setattr__(self, "kind", NodeKind(self.kind))
        if not self.content_hash:
            object.__setattr__(self, "content_hash", self._compute_hash())

    @property
    def node_id(self) -> str:
        return node_id_for(self.file_path, self.heading_id)

    def _compute_hash(self) -> str:
        return sha256_text(
            "\x1f".join((self.file_path, self.heading_id, self.kind.value, self.title, self.text))
        )

    def with_text(self, text: str) -> SpecNode:
        """Return the edited node; the original is never mutated."""
        return replace(self, text=text, content_hash="")


@dataclass(frozen=True, slots=True)
class SpecEdge(CanonicalModel):
    """``specifies`` relation from the detailed node to the node it refines."""

    source: str
    target: str
    line: int = 1

    @property
    def edge_id(self) -> str:
        return edge_id_for(self.source, self.target)


@dataclass(frozen=True, slots=True)
class Issue(CanonicalModel):
    """Checker finding. Locations are node ids or edge ids (``source->target``)."""

    kind: IssueKind
    severity: Severity
    locations: tuple[str, ...]
    explanation: str
    confidence: Confidence = Confidence.HIGH
    category: IssueCategory = IssueCategory.STRUCTURAL

    def __post_init__(self) -> None:
        object.__setattr__(self, "kind", IssueKind(self.kind))
        object.__setattr__(self, "severity", Severity(self.severity))
        object.__setattr__(self, "confidence", Confidence(self.confidence))
        object.__setattr__(self, "category", IssueCategory(self.category))
        object.__setattr__(self, "locations", tuple(sorted(set(self.locations))))
        object.__setattr__(self, "explanation", " ".join(self.explanation.split()))

    @property
    def is_blocking(self) -> bool:
        return self.severity is Severity.ERROR

    @property
    def dedupe_key(self) -> tuple[str, tuple[str, ...]]:
        return (self.kind.value, self.locations)

    def sort_key(self) -> tuple[int, tuple[str, ...], str, int, str]:
        return (
            self.severity.rank,
            self.locations,
            self.kind.value,
            -self.confidence.rank,
            self.explanation,
        )


@dataclass(frozen=True, slots=True)
class CodeUnit(CanonicalModel):
    """One file of the code artifact, addressed by its relative POSIX path."""

    path: str
    content_hash: str
    line_count: int = 0


@dataclass(frozen=True, slots=True)
class TraceLink(CanonicalModel):
    node_id: str
    unit_path: str
    confidence: Confidence = Confidence.MEDIUM

    def __post_init__(self) -> None:
        object.__setattr__(self, "confidence", Confidence(self.confidence))


@dataclass(frozen=True, slots=True)
class TestCase(CanonicalModel):
    """Derived test artifact tagged with the spec node it verifies."""

    __test__ = False

    id: str
    node_id: str
    name: str
    content: str
    status: TestStatus = TestStatus.UNKNOWN
    integration: bool = False

    def with_status(self, status: TestStatus) -> TestCase:
        return replace(self, status=TestStatus(status))


@dataclass(frozen=True, slots=True)
class ResidueFinding(CanonicalModel):
    path: str
    hint: ResidueHint = ResidueHint.UNKNOWN
    severity: Severity = Severity.WARNING
    detail: str = ""


@dataclass(frozen=True, slots=True)
class ProportionalityFlag(CanonicalModel):
    ratio: float
    threshold: float
    lines_changed: int
    files_touched: int
    spec_lines_changed: int
    k: float
    severity: Severity = Severity.WARNING


@dataclass(frozen=True, slots=True)
class ScopeOutcome(CanonicalModel):
    """Settled result of one scope's inner loop."""

    scope_id: str
    status: ScopeStatus
    node_ids: tuple[str, ...] = ()
    unit_paths: tuple[str, ...] = ()
    tests_passed: int = 0
    tests_failed: int = 0
    attempts: int = 0
    tests_incomplete: bool = False
    details: tuple[str, ...] = field(default_factory=tuple)

    def to_report_entry(self) -> dict[str, JSONValue]:
        return {
            "scope_id": self.scope_id,
            "status": self.status.value,
            "tests_passed": self.tests_passed,
            "tests_failed": self.tests_failed,
        }


def _fail(path: str, message: str) -> NoReturn:
    raise ValueError(f"{path}: {message}")


def _serialize_value(value: object, path: str) -> JSONValue:
    if value is None or isinstance(value, bool):
        return cast("JSONValue", value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            _fail(path, "float values must be finite")
        return value
    if isinstance(value, str):
        return value
    if isinstance(value, Enum):
        raw = value.value
        if not isinstance(raw, str):
            _fail(path, "enum value must be string")
        return raw
    if isinstance(value, (tuple, list)):
        return [_serialize_value(item, f"{path}[]") for item in value]
    if isinstance(value, (set, frozenset)):
        return sorted(
            (_serialize_value(item, f"{path}[]") for item in value),
            key=lambda item: canonical_json(item),
        )
    if isinstance(value, Mapping):
        out: dict[str, JSONValue] = {}
        for key, item in value.items():
            if not isinstance(key, str):
                _fail(path, "dict keys must be strings")
            out[key] = _serialize_value(item, f"{path}.{key}")
        return out
    if is_dataclass(value):
        out_obj: dict[str, JSONValue] = {}
        for dataclass_field in fields(value):
            out_obj[dataclass_field.name] = _serialize_value(
                getattr(value, dataclass_field.name),
                f"{path}.{dataclass_field.name}",
            )
        return out_obj

    _fail(path, f"cannot serialize value of type {type(value).__name__}")


__all__ = [
    "SEMANTIC_CHECK_CATEGORIES",
    "STRUCTURAL_ISSUE_KINDS",
    "CanonicalModel",
    "CodeUnit",
    "Confidence",
    "Issue",
    "IssueCategory",
    "IssueKind",
    "JSONScalar",
    "JSONValue",
    "NodeKind",
    "ProportionalityFlag",
    "ResidueFinding",
    "ResidueHint",
    "ScopeOutcome",
    "ScopeStatus",
    "SessionPhase",
    "Severity",
    "SpecEdge",
    "SpecNode",
    "TestCase",
    "TestStatus",
    "TraceLink",
    "TrustLevel",
    "canonical_json",
    "edge_id_for",
    "node_id_for",
    "split_edge_id",
]
