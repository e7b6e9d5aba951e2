"""Module entrypoint for ``python -m spec_reconciler``."""

from __future__ import annotations

from spec_reconciler.main import cli_entrypoint

if __name__ == "__main__":
    raise SystemExit(cli_entrypoint())
