"""Traceability index between spec nodes and code units."""

from spec_reconciler.traceability.index import (
    TraceabilityIndex,
    TraceStats,
    keyword_tokens,
    narrow_candidates,
)

__all__ = ["TraceStats", "TraceabilityIndex", "keyword_tokens", "narrow_candidates"]
