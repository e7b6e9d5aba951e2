"""
spec-reconciler — spec graph package

File: src/spec_reconciler/spec_graph/__init__.py
Last updated: 2026-10-17

Purpose
- Public surface of the spec graph builder: parsing, the immutable graph and diffs.
"""

from spec_reconciler.spec_graph.builder import (
    DEFAULT_INCLUDE,
    BuildResult,
    build_spec_graph,
    build_spec_graph_from_texts,
)
from spec_reconciler.spec_graph.diff import (
    SpecGraphDiff,
    count_changed_lines,
    diff_against_hashes,
    diff_spec_graphs,
)
from spec_reconciler.spec_graph.graph import SpecGraph
from spec_reconciler.spec_graph.parser import parse_document
from spec_reconciler.spec_graph.slugs import SlugAllocator, slugify

__all__ = [
    "DEFAULT_INCLUDE",
    "BuildResult",
    "SlugAllocator",
    "SpecGraph",
    "SpecGraphDiff",
    "build_spec_graph",
    "build_spec_graph_from_texts",
    "count_changed_lines",
    "diff_against_hashes",
    "diff_spec_graphs",
    "parse_document",
    "slugify",
]
