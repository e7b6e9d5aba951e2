"""
spec-reconciler — residue analysis

File: src/spec_reconciler/verification/residue.py
Last updated: 2026-10-17

Purpose
- Report code units that no spec node traces to and that are not excluded.

Functional requirements
- residue = all units − traced image − excluded units.
- Every remainder unit is reported, even when its hint call fails (hint ``unknown``).
- Hints come from the analysis path, so unchanged units reuse cached hints.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import structlog

from spec_reconciler.domain.errors import OracleFailure
from spec_reconciler.domain.models import ResidueFinding, ResidueHint, Severity
from spec_reconciler.oracle.base import ContextBundle, OracleCapability, OracleRequest
from spec_reconciler.oracle.context import code_document, inventory_document
from spec_reconciler.utils.concurrency import WorkerPool

if TYPE_CHECKING:
    from collections.abc import Iterable

    from spec_reconciler.code_artifact.exclusions import ExclusionList
    from spec_reconciler.code_artifact.snapshot import CodeSnapshot
    from spec_reconciler.oracle.client import OracleClient

RESIDUE_HINT_PURPOSE = "residue-hint"


def residue_paths(
    code: CodeSnapshot, trace_image: Iterable[str], exclusions: ExclusionList
) -> tuple[str, ...]:
    traced = set(trace_image)
    return tuple(path for path in exclusions.filter(code.keys()) if path not in traced)


class ResidueAnalyzer:
    def __init__(
        self,
        client: OracleClient | None = None,
        *,
        severity: Severity | str = Severity.WARNING,
        max_concurrency: int = 4,
        logger: Any | None = None,
    ) -> None:
        self._client = client
        self._severity = Severity(severity)
        self._max_concurrency = max_concurrency
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    async def analyze(
        self,
        code: CodeSnapshot,
        trace_image: Iterable[str],
        exclusions: ExclusionList,
    ) -> list[ResidueFinding]:
        paths = residue_paths(code, trace_image, exclusions)
        pool: WorkerPool[ResidueFinding] = WorkerPool(self._max_concurrency)
        findings = await pool.map([lambda path=path: self._classify(code, path) for path in paths])
        self._logger.info(
            "residue_analyzed",
            units=len(code),
            residue=len(findings),
            excluded=len(code) - len(exclusions.filter(code.keys())),
        )
        return findings

    async def _classify(self, code: CodeSnapshot, path: str) -> ResidueFinding:
        if self._client is None:
            return ResidueFinding(path=path, hint=ResidueHint.UNKNOWN, severity=self._severity)

        documents = [inventory_document(code.inventory([path]))]
        text = code.text(path)
        if text is not None:
            documents.append(code_document(path, text))
        request = OracleRequest(
            capability=OracleCapability.ANALYZE,
            context=ContextBundle(focus=(path,), documents=tuple(documents)),
            constraints={"purpose": RESIDUE_HINT_PURPOSE},
        )
        try:
            response = await self._client.analyze(request)
        except OracleFailure as exc:
            self._logger.warning("residue_hint_failed", path=path, code=exc.code)
            return ResidueFinding(
                path=path,
                hint=ResidueHint.UNKNOWN,
                severity=self._severity,
                detail=f"hint unavailable: {exc}",
            )

        raw_hint = str(response.payload.get("hint") or "").lower()
        hint = (
            ResidueHint(raw_hint)
            if raw_hint in {item.value for item in ResidueHint}
            else ResidueHint.UNKNOWN
        )
        detail = response.payload.get("detail")
        return ResidueFinding(
            path=path,
            hint=hint,
            severity=self._severity,
            detail=detail if isinstance(detail, str) else "",
        )


__all__ = ["RESIDUE_HINT_PURPOSE", "ResidueAnalyzer", "residue_paths"]
