"""
spec-reconciler — role-specific context assembly

File: src/spec_reconciler/oracle/context.py
Last updated: 2026-10-17

Purpose
- Build context documents from spec nodes and code units, and render a request
  to prompt text with one jinja2 template per capability.

Functional requirements
- Rendering is deterministic for the same request.
- Missing template variables fail loudly (``StrictUndefined``).
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Final

from jinja2 import DictLoader, Environment, StrictUndefined

from spec_reconciler.oracle.base import (
    ContextDocument,
    DocumentRole,
    OracleCapability,
    OracleRequest,
)

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    from spec_reconciler.domain.models import SpecNode

_DOCUMENTS_BLOCK: Final[str] = """\
{% for doc in documents %}
### {{ doc.role }}: {{ doc.name }}
{{ doc.content }}
{% endfor %}"""

_TEMPLATES: Final[dict[str, str]] = {
    "analyze.j2": (
        "Task: {{ constraints.get('category', 'analysis') }} check.\n"
        "Focus: {{ focus | join(', ') }}\n"
        "Answer with JSON: {\"verdict\": ..., \"issues\": [...]}.\n"
        + _DOCUMENTS_BLOCK
    ),
    "trace.j2": (
        "Task: list the code units that implement the focus node.\n"
        "Focus: {{ focus | join(', ') }}\n"
        "Answer with JSON: {\"links\": [{\"path\": ..., \"confidence\": ...}]}.\n"
        + _DOCUMENTS_BLOCK
    ),
    "generate.j2": (
        "Role: coder. Update the code so it satisfies every spec below.\n"
        "Treat the existing code as a strong prior; change only what the specs require.\n"
        "Focus: {{ focus | join(', ') }}\n"
        "Answer with JSON: {\"files\": {path: content}, \"summary\": ...}.\n"
        + _DOCUMENTS_BLOCK
    ),
    "review.j2": (
        "Role: reviewer. Judge only whether the code satisfies the specs.\n"
        "Focus: {{ focus | join(', ') }}\n"
        "Answer with JSON: {\"approved\": bool, \"findings\": [...]}.\n"
        + _DOCUMENTS_BLOCK
    ),
    "derive-tests.j2": (
        "Role: test author. Derive pytest tests from the spec text alone.\n"
        "Focus: {{ focus | join(', ') }}\n"
        "{% if constraints.get('integration') %}These nodes cut across several parents; "
        "write integration tests.\n{% endif %}"
        "Answer with JSON: {\"tests\": [{\"name\": ..., \"content\": ...}]}.\n"
        + _DOCUMENTS_BLOCK
    ),
}


class ContextRenderer:
    """Render oracle requests to prompt text."""

    def __init__(self, templates: Mapping[str, str] | None = None) -> None:
        merged = dict(_TEMPLATES)
        if templates:
            merged.update(templates)
        self._environment = Environment(
            loader=DictLoader(merged),
            undefined=StrictUndefined,
            autoescape=False,
            trim_blocks=True,
            lstrip_blocks=True,
            newline_sequence="\n",
            keep_trailing_newline=True,
        )

    def render(self, request: OracleRequest) -> str:
        template = self._environment.get_template(f"{request.capability.value}.j2")
        text = template.render(
            focus=list(request.context.focus),
            constraints=dict(request.constraints),
            documents=[
                {"name": doc.name, "role": doc.role.value, "content": doc.content}
                for doc in request.context.documents
            ],
        )
        if request.prompt:
            text = f"{text.rstrip()}\n\n{request.prompt}\n"
        return text


def spec_document(node: SpecNode) -> ContextDocument:
    return ContextDocument(
        name=node.node_id,
        content=f"{'#' * node.level} {node.title}\n\n{node.text}".rstrip(),
        role=DocumentRole.SPEC,
        metadata={"kind": node.kind.value, "content_hash": node.content_hash},
    )


def code_document(path: str, text: str) -> ContextDocument:
    return ContextDocument(name=path, content=text, role=DocumentRole.CODE)


def inventory_document(entries: Iterable[Mapping[str, object]]) -> ContextDocument:
    rows = [
        {
            "path": str(entry["path"]),
            "line_count": entry.get("line_count", 0),
            "content_hash": entry.get("content_hash", ""),
        }
        for entry in entries
    ]
    return ContextDocument(
        name="code-inventory",
        content=json.dumps(rows, sort_keys=True, indent=1),
        role=DocumentRole.INVENTORY,
    )


def feedback_document(name: str, lines: Iterable[str]) -> ContextDocument:
    return ContextDocument(
        name=name,
        content="\n".join(f"- {line}" for line in lines) or "- (none)",
        role=DocumentRole.FEEDBACK,
    )


def supported_capabilities() -> tuple[OracleCapability, ...]:
    return tuple(OracleCapability(name.removesuffix(".j2")) for name in sorted(_TEMPLATES))


__all__ = [
    "ContextRenderer",
    "code_document",
    "feedback_document",
    "inventory_document",
    "spec_document",
    "supported_capabilities",
]
