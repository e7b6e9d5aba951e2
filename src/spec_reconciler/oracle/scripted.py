"""
spec-reconciler — deterministic scripted oracle

File: src/spec_reconciler/oracle/scripted.py
Last updated: 2026-10-17

Purpose
- In-process ``OracleProtocol`` provider driven by a callable and/or rules.
- Used by tests and by offline CLI runs (``--oracle-script``).

Functional requirements
- Rules match on capability, focus node ids, constraint values and rendered text.
- A rule may inject a failure (timeout, unavailable, malformed) instead of a payload.
- Unmatched requests fall back to neutral per-capability defaults.
- Every request is recorded for inspection.

Script format (YAML)::

    rules:
      - capability: analyze
        when: {focus: ["auth.md#login"], category: contradiction, contains: "must"}
        respond: {verdict: contradiction, issues: [...]}
        confidence: high
        times: 1
    defaults:
      review: {approved: true, findings: []}
"""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from spec_reconciler.domain.errors import (
    OracleResponseError,
    OracleTimeoutError,
    OracleUnavailableError,
)
from spec_reconciler.domain.models import Confidence, JSONValue
from spec_reconciler.oracle.base import OracleCapability, OracleRequest, OracleResponse
from spec_reconciler.oracle.context import ContextRenderer

Responder = Callable[[OracleRequest], "Mapping[str, Any] | OracleResponse | None"]

DEFAULT_PAYLOADS: dict[OracleCapability, dict[str, JSONValue]] = {
    OracleCapability.ANALYZE: {"verdict": "ok", "issues": []},
    OracleCapability.TRACE: {"links": []},
    OracleCapability.GENERATE: {"files": {}, "summary": "no change"},
    OracleCapability.REVIEW: {"approved": True, "findings": []},
    OracleCapability.DERIVE_TESTS: {"tests": []},
}
_HINT_DEFAULT: dict[str, JSONValue] = {"hint": "unknown"}
_FAILURES = ("timeout", "unavailable", "malformed", "empty")


class ScriptError(ValueError):
    """Oracle script could not be parsed."""


@dataclass(slots=True)
class ScriptRule:
    capability: OracleCapability
    respond: Mapping[str, Any] = field(default_factory=dict)
    focus: tuple[str, ...] = ()
    constraints: Mapping[str, Any] = field(default_factory=dict)
    contains: str | None = None
    confidence: Confidence = Confidence.MEDIUM
    times: int | None = None
    fail: str | None = None
    used: int = 0

    def __post_init__(self) -> None:
        self.capability = OracleCapability(self.capability)
        self.confidence = Confidence(self.confidence)
        self.focus = tuple(self.focus)
        if self.fail is not None and self.fail not in _FAILURES:
            raise ScriptError(f"unknown failure kind {self.fail!r}; expected one of {_FAILURES}")
        if self.times is not None and self.times < 1:
            raise ScriptError("times must be >= 1")

    @property
    def exhausted(self) -> bool:
        return self.times is not None and self.used >= self.times

    def matches(self, request: OracleRequest, rendered: str) -> bool:
        if self.exhausted or request.capability is not self.capability:
            return False
        if self.focus and not set(self.focus) <= set(request.context.focus):
            return False
        for key, expected in self.constraints.items():
            if request.constraints.get(key) != expected:
                return False
        return self.contains is None or self.contains in rendered


class ScriptedOracle:
    def __init__(
        self,
        responder: Responder | None = None,
        *,
        rules: Sequence[ScriptRule] = (),
        defaults: Mapping[OracleCapability | str, Mapping[str, Any]] | None = None,
        renderer: ContextRenderer | None = None,
    ) -> None:
        self._responder = responder
        self._rules = list(rules)
        self._defaults: dict[OracleCapability, Mapping[str, Any]] = dict(DEFAULT_PAYLOADS)
        for key, payload in (defaults or {}).items():
            self._defaults[OracleCapability(key)] = payload
        self._renderer = renderer or ContextRenderer()
        self.requests: list[OracleRequest] = []

    @classmethod
    def from_yaml(cls, source: str | Path, **kwargs: Any) -> ScriptedOracle:
        """Load rules from a YAML file path or YAML text."""

        text = source.read_text(encoding="utf-8") if isinstance(source, Path) else source
        try:
            document = yaml.safe_load(text) or {}
        except yaml.YAMLError as exc:
            raise ScriptError(f"invalid oracle script: {exc}") from exc
        if not isinstance(document, Mapping):
            raise ScriptError("oracle script must be a mapping")

        rules: list[ScriptRule] = []
        for index, raw in enumerate(document.get("rules") or []):
            if not isinstance(raw, Mapping) or "capability" not in raw:
                raise ScriptError(f"rules[{index}] must be a mapping with 'capability'")
            when = raw.get("when") or {}
            constraints = {
                key: value for key, value in when.items() if key not in {"focus", "contains"}
            }
            try:
                rules.append(
                    ScriptRule(
                        capability=raw["capability"],
                        respond=raw.get("respond") or {},
                        focus=tuple(when.get("focus") or ()),
                        constraints=constraints,
                        contains=when.get("contains"),
                        confidence=raw.get("confidence", "medium"),
                        times=raw.get("times"),
                        fail=raw.get("fail"),
                    )
                )
            except ValueError as exc:
                raise ScriptError(f"rules[{index}]: {exc}") from exc

        defaults = document.get("defaults") or {}
        if not isinstance(defaults, Mapping):
            raise ScriptError("'defaults' must be a mapping")
        return cls(rules=rules, defaults=defaults, **kwargs)

    @classmethod
    def load(cls, path: str | Path, **kwargs: Any) -> ScriptedOracle:
        return cls.from_yaml(Path(path), **kwargs)

    def add_rule(self, rule: ScriptRule) -> None:
        self._rules.append(rule)

    def requests_for(self, capability: OracleCapability | str) -> list[OracleRequest]:
        wanted = OracleCapability(capability)
        return [request for request in self.requests if request.capability is wanted]

    async def send(self, request: OracleRequest) -> OracleResponse:
        self.requests.append(request)

        if self._responder is not None:
            answer = self._responder(request)
            if isinstance(answer, OracleResponse):
                return answer
            if answer is not None:
                return OracleResponse(capability=request.capability, payload=dict(answer))

        rendered = self._renderer.render(request)
        for rule in self._rules:
            if rule.matches(request, rendered):
                rule.used += 1
                if rule.fail is not None:
                    _raise_failure(rule.fail, request.capability.value)
                return OracleResponse(
                    capability=request.capability,
                    payload=dict(rule.respond),
                    confidence=rule.confidence,
                )

        return OracleResponse(capability=request.capability, payload=self._default_for(request))

    def _default_for(self, request: OracleRequest) -> dict[str, Any]:
        if (
            request.capability is OracleCapability.ANALYZE
            and request.constraints.get("purpose") == "residue-hint"
        ):
            return dict(_HINT_DEFAULT)
        return dict(self._defaults[request.capability])


def _raise_failure(kind: str, capability: str) -> None:
    if kind == "timeout":
        raise OracleTimeoutError("scripted timeout", capability=capability)
    if kind == "unavailable":
        raise OracleUnavailableError("scripted outage", capability=capability)
    if kind == "empty":
        raise OracleResponseError("scripted empty response", capability=capability)
    raise OracleResponseError("scripted malformed response", capability=capability, retryable=False)


__all__ = ["DEFAULT_PAYLOADS", "Responder", "ScriptError", "ScriptRule", "ScriptedOracle"]
