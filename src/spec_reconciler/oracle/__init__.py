"""
spec-reconciler — oracle package

File: src/spec_reconciler/oracle/__init__.py
Last updated: 2026-10-17

Purpose
- Oracle request model, the analysis/generation client, context rendering and
  the scripted provider used offline.
"""

from spec_reconciler.oracle.base import (
    BackoffConfig,
    ContextBundle,
    ContextDocument,
    DocumentRole,
    OracleCapability,
    OracleProtocol,
    OracleRequest,
    OracleResponse,
    compute_backoff_delay,
    run_with_retries,
    validate_response,
)
from spec_reconciler.oracle.cache import AnalysisCache
from spec_reconciler.oracle.client import OracleClient
from spec_reconciler.oracle.context import (
    ContextRenderer,
    code_document,
    feedback_document,
    inventory_document,
    spec_document,
)
from spec_reconciler.oracle.scripted import ScriptedOracle, ScriptError, ScriptRule

__all__ = [
    "AnalysisCache",
    "BackoffConfig",
    "ContextBundle",
    "ContextDocument",
    "ContextRenderer",
    "DocumentRole",
    "OracleCapability",
    "OracleClient",
    "OracleProtocol",
    "OracleRequest",
    "OracleResponse",
    "ScriptError",
    "ScriptRule",
    "ScriptedOracle",
    "code_document",
    "compute_backoff_delay",
    "feedback_document",
    "inventory_document",
    "run_with_retries",
    "spec_document",
    "validate_response",
]
