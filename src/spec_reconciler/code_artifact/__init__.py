"""
spec-reconciler — code artifact package

File: src/spec_reconciler/code_artifact/__init__.py
Last updated: 2026-10-17

Purpose
- Snapshots of the code tree, exclusion globs and change statistics.
"""

from spec_reconciler.code_artifact.diff import CodeDiff, count_line_changes, diff_snapshots
from spec_reconciler.code_artifact.exclusions import (
    DEFAULT_EXCLUDED_DIRECTORIES,
    ExclusionList,
    path_matches_glob,
)
from spec_reconciler.code_artifact.snapshot import CodeSnapshot, normalize_unit_path, unit_for_text

__all__ = [
    "DEFAULT_EXCLUDED_DIRECTORIES",
    "CodeDiff",
    "CodeSnapshot",
    "ExclusionList",
    "count_line_changes",
    "diff_snapshots",
    "normalize_unit_path",
    "path_matches_glob",
    "unit_for_text",
]
