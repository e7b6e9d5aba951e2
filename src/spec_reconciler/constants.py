"""Stable constants shared across reconciler planes."""

from __future__ import annotations

from pathlib import PurePosixPath
from typing import Final

# Schema versions for persisted contracts.
CONFIG_SCHEMA_VERSION: Final[int] = 1
SESSION_REPORT_SCHEMA_VERSION: Final[int] = 1
STATE_DB_SCHEMA_VERSION: Final[int] = 1

# Bumping this invalidates every cached consistency verdict.
CHECKER_VERSION: Final[str] = "1"

# Default runtime paths (relative to the config file unless overridden).
STATE_DB_PATH: Final[PurePosixPath] = PurePosixPath(".specrec/state.sqlite")
CACHE_DIR: Final[PurePosixPath] = PurePosixPath(".specrec/cache")
LOG_DIR: Final[PurePosixPath] = PurePosixPath(".specrec/logs")
EXCLUSION_FILE: Final[PurePosixPath] = PurePosixPath(".specrecignore")

SPEC_FILE_SUFFIXES: Final[tuple[str, ...]] = (".md", ".markdown")

# Severity and confidence ordering for deterministic sorting.
SEVERITY_ORDER: Final[tuple[str, ...]] = ("error", "warning", "info")
SEVERITY_RANK: Final[dict[str, int]] = {"error": 0, "warning": 1, "info": 2}
CONFIDENCE_ORDER: Final[tuple[str, ...]] = ("low", "medium", "high")
CONFIDENCE_RANK: Final[dict[str, int]] = {"low": 0, "medium": 1, "high": 2}

__all__ = [
    "CACHE_DIR",
    "CHECKER_VERSION",
    "CONFIDENCE_ORDER",
    "CONFIDENCE_RANK",
    "CONFIG_SCHEMA_VERSION",
    "EXCLUSION_FILE",
    "LOG_DIR",
    "SESSION_REPORT_SCHEMA_VERSION",
    "SEVERITY_ORDER",
    "SEVERITY_RANK",
    "SPEC_FILE_SUFFIXES",
    "STATE_DB_PATH",
    "STATE_DB_SCHEMA_VERSION",
]
