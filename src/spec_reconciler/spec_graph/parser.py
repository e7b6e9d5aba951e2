"""
spec-reconciler — markdown spec parser

File: src/spec_reconciler/spec_graph/parser.py
Last updated: 2026-10-17

Purpose
- Split one markdown document into heading-level sections with their
  ``specifies`` declarations.

Functional requirements
- Declarations must sit immediately under a heading, one target per line.
- Headings and declarations inside fenced code blocks are ignored.
- Malformed declarations are reported and parsing continues.

Non-functional requirements
- Must be resilient to messy Markdown; never raises on content.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Final

from spec_reconciler.domain.models import NodeKind
from spec_reconciler.spec_graph.slugs import SlugAllocator, is_valid_slug

_ATX_HEADING_RE: Final[re.Pattern[str]] = re.compile(
    r"^\s{0,3}(?P<hashes>#{1,6})(?:\s+(?P<text>.*?))?\s*#*\s*$"
)
_FENCE_START_RE: Final[re.Pattern[str]] = re.compile(
    r"^(?P<indent>[ ]{0,3})(?P<marker>`{3,}|~{3,}).*$"
)
_FENCE_CLOSE_RE: Final[re.Pattern[str]] = re.compile(r"^[ ]{0,3}(?P<marker>`{3,}|~{3,})\s*$")
_DECLARATION_RE: Final[re.Pattern[str]] = re.compile(
    r"^\s{0,3}(?P<key>specifies|kind)\s*:\s*(?P<value>.*?)\s*$",
    flags=re.IGNORECASE,
)
_TARGET_RE: Final[re.Pattern[str]] = re.compile(r"^(?P<path>[^#\s]+)#(?P<slug>[^#\s]+)$")

_KIND_ALIASES: Final[dict[str, NodeKind]] = {
    "intent": NodeKind.INTENT,
    "behavioral": NodeKind.BEHAVIORAL,
    "behavioural": NodeKind.BEHAVIORAL,
    "interface": NodeKind.INTERFACE,
    "constraint": NodeKind.CONSTRAINT,
}


@dataclass(frozen=True, slots=True)
class Declaration:
    """A well-formed ``specifies: path#slug`` line."""

    target_path: str
    target_slug: str
    line: int

    @property
    def raw_target(self) -> str:
        return f"{self.target_path}#{self.target_slug}"


@dataclass(frozen=True, slots=True)
class ParseProblem:
    """Malformed declaration detected while parsing; becomes a structural issue."""

    line: int
    heading_id: str | None
    message: str


@dataclass(slots=True)
class ParsedSection:
    heading_id: str
    title: str
    level: int
    line: int
    declarations: list[Declaration] = field(default_factory=list)
    kind: NodeKind | None = None
    body_lines: list[str] = field(default_factory=list)

    @property
    def body(self) -> str:
        return "\n".join(self.body_lines).strip()

    @property
    def has_description(self) -> bool:
        return bool(self.body)


@dataclass(slots=True)
class ParsedDocument:
    path: str
    sections: list[ParsedSection] = field(default_factory=list)
    problems: list[ParseProblem] = field(default_factory=list)


@dataclass(slots=True)
class _FenceState:
    marker_char: str
    marker_length: int


def parse_document(path: str, text: str) -> ParsedDocument:
    """Parse markdown ``text`` belonging to corpus-relative ``path``."""

    document = ParsedDocument(path=path)
    slugs = SlugAllocator()
    fence: _FenceState | None = None
    current: ParsedSection | None = None
    # True while still inside the declaration block directly under ``current``.
    in_declaration_block = False

    for line_number, raw_line in enumerate(text.splitlines(), start=1):
        line = raw_line.rstrip("\n")

        if fence is not None:
            if _closes_fence(line, fence):
                fence = None
            if current is not None:
                current.body_lines.append(line)
            continue

        fence_match = _FENCE_START_RE.match(line)
        if fence_match is not None:
            marker = fence_match.group("marker")
            fence = _FenceState(marker_char=marker[0], marker_length=len(marker))
            in_declaration_block = False
            if current is not None:
                current.body_lines.append(line)
            continue

        heading_match = _ATX_HEADING_RE.match(line)
        if heading_match is not None:
            title = (heading_match.group("text") or "").strip()
            current = ParsedSection(
                heading_id=slugs.allocate(title),
                title=title or "section",
                level=len(heading_match.group("hashes")),
                line=line_number,
            )
            document.sections.append(current)
            in_declaration_block = True
            continue

        declaration_match = _DECLARATION_RE.match(line)
        if declaration_match is not None:
            key = declaration_match.group("key").lower()
            value = declaration_match.group("value")
            if current is None:
                if key == "specifies":
                    document.problems.append(
                        ParseProblem(
                            line=line_number,
                            heading_id=None,
                            message="'specifies' declaration appears before any heading",
                        )
                    )
                    continue
            elif in_declaration_block:
                _apply_declaration(document, current, key, value, line_number)
                continue
            elif key == "specifies":
                document.problems.append(
                    ParseProblem(
                        line=line_number,
                        heading_id=current.heading_id,
                        message=(
                            "'specifies' declaration must appear immediately under a heading"
                        ),
                    )
                )
                continue

        if not line.strip():
            if current is not None and not in_declaration_block:
                current.body_lines.append(line)
            continue

        in_declaration_block = False
        if current is not None:
            current.body_lines.append(line)

    return document


def _apply_declaration(
    document: ParsedDocument,
    section: ParsedSection,
    key: str,
    value: str,
    line_number: int,
) -> None:
    if key == "kind":
        kind = _KIND_ALIASES.get(value.strip().lower())
        if kind is None:
            document.problems.append(
                ParseProblem(
                    line=line_number,
                    heading_id=section.heading_id,
                    message=f"unknown node kind {value.strip()!r}",
                )
            )
            return
        section.kind = kind
        return

    target = value.strip()
    if not target:
        document.problems.append(
            ParseProblem(
                line=line_number,
                heading_id=section.heading_id,
                message="'specifies' declaration has an empty target",
            )
        )
        return

    if len(target.split()) > 1 or "," in target:
        document.problems.append(
            ParseProblem(
                line=line_number,
                heading_id=section.heading_id,
                message=f"'specifies' accepts one target per line, got {target!r}",
            )
        )
        return

    match = _TARGET_RE.match(target)
    if match is None:
        document.problems.append(
            ParseProblem(
                line=line_number,
                heading_id=section.heading_id,
                message=f"target {target!r} must have the form 'path#heading-slug'",
            )
        )
        return

    slug = match.group("slug")
    if not is_valid_slug(slug):
        document.problems.append(
            ParseProblem(
                line=line_number,
                heading_id=section.heading_id,
                message=f"target fragment {slug!r} is not a valid heading slug",
            )
        )
        return

    section.declarations.append(
        Declaration(target_path=match.group("path"), target_slug=slug, line=line_number)
    )


def _closes_fence(line: str, fence: _FenceState) -> bool:
    match = _FENCE_CLOSE_RE.match(line)
    if match is None:
        return False
    marker = match.group("marker")
    return marker[0] == fence.marker_char and len(marker) >= fence.marker_length


__all__ = [
    "Declaration",
    "ParseProblem",
    "ParsedDocument",
    "ParsedSection",
    "parse_document",
]
