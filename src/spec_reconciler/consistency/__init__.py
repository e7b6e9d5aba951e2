"""Structural and semantic consistency checking of the spec graph."""

from spec_reconciler.consistency.checker import (
    CheckTarget,
    ConsistencyChecker,
    ConsistencyReport,
    merge_issues,
)

__all__ = ["CheckTarget", "ConsistencyChecker", "ConsistencyReport", "merge_issues"]
