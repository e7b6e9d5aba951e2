"""Verification pipeline: spec-only test derivation, execution, residue, proportionality."""

from spec_reconciler.verification.proportionality import ProportionalityAnalyzer
from spec_reconciler.verification.residue import (
    RESIDUE_HINT_PURPOSE,
    ResidueAnalyzer,
    residue_paths,
)
from spec_reconciler.verification.test_derivation import (
    DerivationResult,
    SpecContext,
    TestDerivationAdapter,
    derived_module_name,
)
from spec_reconciler.verification.test_execution import (
    DERIVED_TEST_DIR,
    PytestExecutor,
    TestExecutor,
    TestRunResult,
    parse_junit_report,
)

__all__ = [
    "DERIVED_TEST_DIR",
    "RESIDUE_HINT_PURPOSE",
    "DerivationResult",
    "ProportionalityAnalyzer",
    "PytestExecutor",
    "ResidueAnalyzer",
    "SpecContext",
    "TestDerivationAdapter",
    "TestExecutor",
    "TestRunResult",
    "parse_junit_report",
    "derived_module_name",
    "residue_paths",
]
