"""
spec-reconciler — package root

File: src/spec_reconciler/__init__.py
Last updated: 2026-10-17

Purpose
- Package root. Keeps a versioned spec graph and a versioned code artifact convergent.

Functional requirements
- Must not have side effects at import time (no config loading, no logging init).
"""

__version__ = "0.3.0"

__all__ = ["__version__"]
