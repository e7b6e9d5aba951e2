"""Command-line surface of spec-reconciler."""

from spec_reconciler.ui.cli import CLIError, build_parser, run_cli

__all__ = ["CLIError", "build_parser", "run_cli"]
