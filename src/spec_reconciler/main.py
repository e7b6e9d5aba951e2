"""Executable CLI entrypoint for ``spec_reconciler``."""

from __future__ import annotations

import sys
import traceback
from typing import TYPE_CHECKING

from spec_reconciler.control_plane.report import ExitCode

if TYPE_CHECKING:
    from collections.abc import Sequence


def cli_entrypoint(argv: Sequence[str] | None = None) -> int:
    """Entrypoint used by ``python -m spec_reconciler`` and the ``specrec`` script."""

    try:
        from spec_reconciler.ui.cli import run_cli

        return _normalize_exit_code(run_cli(argv))
    except SystemExit as exc:
        return _normalize_exit_code(exc.code)
    except KeyboardInterrupt:
        _write_stderr("interrupted")
        return int(ExitCode.BLOCKING)
    except Exception as exc:  # noqa: BLE001 - CLI boundary normalization.
        _emit_failure(exc)
        return int(ExitCode.BLOCKING)


def _normalize_exit_code(raw_code: object) -> int:
    if isinstance(raw_code, int) and raw_code in {code.value for code in ExitCode}:
        return raw_code
    if raw_code is None:
        return int(ExitCode.CLEAN)
    if isinstance(raw_code, str) and raw_code.strip():
        _write_stderr(raw_code.strip())
    return int(ExitCode.BLOCKING)


def _emit_failure(exc: BaseException) -> None:
    if _is_expected_failure(exc):
        _write_stderr(f"error: {str(exc).strip() or exc.__class__.__name__}")
        return
    traceback.print_exception(type(exc), exc, exc.__traceback__, file=sys.stderr)


def _is_expected_failure(exc: BaseException) -> bool:
    from spec_reconciler.config import ConfigLoadError, ConfigValidationError
    from spec_reconciler.domain.errors import ReconcilerError
    from spec_reconciler.persistence import StateStoreError

    return isinstance(
        exc,
        (
            ConfigLoadError,
            ConfigValidationError,
            ReconcilerError,
            StateStoreError,
            FileNotFoundError,
            PermissionError,
        ),
    )


def _write_stderr(message: str) -> None:
    sys.stderr.write(message.rstrip("\n") + "\n")


__all__ = ["cli_entrypoint"]
