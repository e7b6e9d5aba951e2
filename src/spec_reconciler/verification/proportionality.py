"""Advisory check that code churn stays proportional to the spec edit."""

from __future__ import annotations

from dataclasses import dataclass

from spec_reconciler.code_artifact.diff import CodeDiff
from spec_reconciler.domain.models import ProportionalityFlag, Severity


@dataclass(frozen=True, slots=True)
class ProportionalityAnalyzer:
    k: float = 10.0
    threshold: float = 50.0
    severity: Severity = Severity.WARNING

    def __post_init__(self) -> None:
        if self.k < 0:
            raise ValueError("k must be >= 0")
        if self.threshold <= 0:
            raise ValueError("threshold must be > 0")
        object.__setattr__(self, "severity", Severity(self.severity))

    def ratio(self, spec_lines_changed: int, code_diff: CodeDiff) -> float:
        numerator = code_diff.lines_changed + self.k * code_diff.files_touched
        return numerator / max(1, spec_lines_changed)

    def analyze(self, spec_lines_changed: int, code_diff: CodeDiff) -> ProportionalityFlag | None:
        """Return a flag when the ratio exceeds the threshold, else ``None``."""

        ratio = self.ratio(spec_lines_changed, code_diff)
        if ratio <= self.threshold:
            return None
        return ProportionalityFlag(
            ratio=round(ratio, 4),
            threshold=self.threshold,
            lines_changed=code_diff.lines_changed,
            files_touched=code_diff.files_touched,
            spec_lines_changed=spec_lines_changed,
            k=self.k,
            severity=self.severity,
        )


__all__ = ["ProportionalityAnalyzer"]
