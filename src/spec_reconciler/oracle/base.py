"""
spec-reconciler — oracle interface and retry policy

File: src/spec_reconciler/oracle/base.py
Last updated: 2026-10-17

Purpose
- Request/response models for the natural-language oracle and the provider protocol.

What should be included in this file
- Capability taxonomy, context bundles, payload shape validation.
- Bounded exponential backoff and the retry driver shared by both call paths.

Functional requirements
- Malformed or empty responses raise ``OracleResponseError``.
- Transient failures are retried; everything else surfaces immediately.

Non-functional requirements
- Requests have a deterministic fingerprint so analysis results can be memoised.
"""

from __future__ import annotations

import asyncio
import random as random_module
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Protocol, TypeAlias, TypeVar, runtime_checkable

from spec_reconciler.domain.errors import (
    OracleFailure,
    OracleResponseError,
    OracleTimeoutError,
    OracleUnavailableError,
)
from spec_reconciler.domain.models import Confidence, JSONValue, canonical_json
from spec_reconciler.utils.hashing import sha256_text

SleepFn: TypeAlias = Callable[[float], Awaitable[None]]
RandomFn: TypeAlias = Callable[[], float]


class OracleCapability(StrEnum):
    ANALYZE = "analyze"
    GENERATE = "generate"
    REVIEW = "review"
    DERIVE_TESTS = "derive-tests"
    TRACE = "trace"

    @property
    def is_analysis(self) -> bool:
        """Analysis capabilities are pure functions of their context and may be cached."""
        return self in {OracleCapability.ANALYZE, OracleCapability.TRACE}


class DocumentRole(StrEnum):
    SPEC = "spec"
    CODE = "code"
    INVENTORY = "inventory"
    FEEDBACK = "feedback"


def _coerce_json_value(value: object, *, path: str) -> JSONValue:
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, Mapping):
        out: dict[str, JSONValue] = {}
        for key, item in value.items():
            if not isinstance(key, str):
                raise TypeError(f"{path} keys must be strings")
            out[key] = _coerce_json_value(item, path=f"{path}.{key}")
        return out
    if isinstance(value, Sequence) and not isinstance(value, (bytes, bytearray)):
        return [_coerce_json_value(item, path=f"{path}[]") for item in value]
    raise TypeError(f"{path} must be JSON-serializable")


@dataclass(frozen=True, slots=True)
class ContextDocument:
    """Named document handed to the oracle."""

    name: str
    content: str
    role: DocumentRole = DocumentRole.SPEC
    metadata: Mapping[str, JSONValue] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.name.strip():
            raise ValueError("ContextDocument.name cannot be empty")
        object.__setattr__(self, "role", DocumentRole(self.role))
        object.__setattr__(
            self,
            "metadata",
            _coerce_json_value(dict(self.metadata), path="ContextDocument.metadata"),
        )

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "name": self.name,
            "content": self.content,
            "role": self.role.value,
            "metadata": dict(self.metadata),
        }


@dataclass(frozen=True, slots=True)
class ContextBundle:
    """Ordered context documents plus the node ids the request is about."""

    focus: tuple[str, ...] = ()
    documents: tuple[ContextDocument, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "focus", tuple(self.focus))
        object.__setattr__(self, "documents", tuple(self.documents))

    def names(self) -> tuple[str, ...]:
        return tuple(document.name for document in self.documents)

    def by_role(self, role: DocumentRole) -> tuple[ContextDocument, ...]:
        return tuple(document for document in self.documents if document.role is role)

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "focus": list(self.focus),
            "documents": [document.to_dict() for document in self.documents],
        }


@dataclass(frozen=True, slots=True)
class OracleRequest:
    capability: OracleCapability
    context: ContextBundle
    constraints: Mapping[str, JSONValue] = field(default_factory=dict)
    prompt: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "capability", OracleCapability(self.capability))
        object.__setattr__(
            self,
            "constraints",
            _coerce_json_value(dict(self.constraints), path="OracleRequest.constraints"),
        )

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "capability": self.capability.value,
            "context": self.context.to_dict(),
            "constraints": dict(self.constraints),
            "prompt": self.prompt,
        }

    def fingerprint(self) -> str:
        return sha256_text(canonical_json(self.to_dict()))


@dataclass(frozen=True, slots=True)
class OracleResponse:
    capability: OracleCapability
    payload: Mapping[str, JSONValue]
    confidence: Confidence = Confidence.MEDIUM

    def __post_init__(self) -> None:
        object.__setattr__(self, "capability", OracleCapability(self.capability))
        object.__setattr__(self, "confidence", Confidence(self.confidence))

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "capability": self.capability.value,
            "payload": dict(self.payload),
            "confidence": self.confidence.value,
        }


@runtime_checkable
class OracleProtocol(Protocol):
    """Provider contract: one async round trip per request."""

    async def send(self, request: OracleRequest) -> OracleResponse: ...


_REQUIRED_KEYS: dict[OracleCapability, tuple[str, ...]] = {
    OracleCapability.TRACE: ("links",),
    OracleCapability.GENERATE: ("files",),
    OracleCapability.REVIEW: ("approved",),
    OracleCapability.DERIVE_TESTS: ("tests",),
}


def validate_response(request: OracleRequest, response: object) -> OracleResponse:
    """Check a provider response against the payload shape of its capability."""

    capability = request.capability.value
    if not isinstance(response, OracleResponse):
        raise OracleResponseError("provider returned no response", capability=capability)
    if response.capability is not request.capability:
        raise OracleResponseError(
            f"response capability {response.capability.value} does not match request",
            capability=capability,
            retryable=False,
        )
    payload = response.payload
    if not isinstance(payload, Mapping) or not payload:
        raise OracleResponseError("empty payload", capability=capability)

    if request.capability is OracleCapability.ANALYZE:
        if "verdict" not in payload and "hint" not in payload:
            raise OracleResponseError(
                "analysis payload needs 'verdict' or 'hint'", capability=capability
            )
        issues = payload.get("issues", [])
        if not isinstance(issues, list) or not all(isinstance(item, Mapping) for item in issues):
            raise OracleResponseError("'issues' must be a list of objects", capability=capability)
        return response

    for key in _REQUIRED_KEYS[request.capability]:
        if key not in payload:
            raise OracleResponseError(f"payload is missing '{key}'", capability=capability)

    if request.capability is OracleCapability.TRACE and not isinstance(payload["links"], list):
        raise OracleResponseError("'links' must be a list", capability=capability)
    if request.capability is OracleCapability.GENERATE and not isinstance(
        payload["files"], Mapping
    ):
        raise OracleResponseError("'files' must be an object", capability=capability)
    if request.capability is OracleCapability.REVIEW and not isinstance(payload["approved"], bool):
        raise OracleResponseError("'approved' must be a boolean", capability=capability)
    if request.capability is OracleCapability.DERIVE_TESTS and not isinstance(
        payload["tests"], list
    ):
        raise OracleResponseError("'tests' must be a list", capability=capability)
    return response


@dataclass(frozen=True, slots=True)
class BackoffConfig:
    """Bounded exponential backoff policy."""

    max_retries: int = 2
    initial_delay_seconds: float = 0.25
    multiplier: float = 2.0
    max_delay_seconds: float = 4.0
    jitter_ratio: float = 0.0

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.initial_delay_seconds < 0:
            raise ValueError("initial_delay_seconds must be >= 0")
        if self.multiplier < 1.0:
            raise ValueError("multiplier must be >= 1.0")
        if self.max_delay_seconds < 0:
            raise ValueError("max_delay_seconds must be >= 0")
        if self.initial_delay_seconds > self.max_delay_seconds:
            raise ValueError("initial_delay_seconds must be <= max_delay_seconds")
        if not (0.0 <= self.jitter_ratio <= 1.0):
            raise ValueError("jitter_ratio must be between 0.0 and 1.0")


def compute_backoff_delay(
    *,
    retry_number: int,
    config: BackoffConfig,
    random_fn: RandomFn = random_module.random,
) -> float:
    """Return bounded exponential backoff delay for retry attempt N (1-based)."""

    if retry_number <= 0:
        raise ValueError("retry_number must be > 0")

    bounded_delay = min(
        config.initial_delay_seconds * (config.multiplier ** (retry_number - 1)),
        config.max_delay_seconds,
    )
    if config.jitter_ratio == 0.0:
        return bounded_delay

    jitter = ((random_fn() * 2.0) - 1.0) * bounded_delay * config.jitter_ratio
    return max(0.0, min(config.max_delay_seconds, bounded_delay + jitter))


def map_oracle_exception(exc: Exception, *, capability: str) -> OracleFailure:
    """Normalize arbitrary provider exceptions into the oracle failure taxonomy."""

    if isinstance(exc, OracleFailure):
        return exc
    if isinstance(exc, (TimeoutError, asyncio.TimeoutError)):
        return OracleTimeoutError(str(exc) or "oracle call timed out", capability=capability)
    if isinstance(exc, (ConnectionError, OSError)):
        return OracleUnavailableError(str(exc) or type(exc).__name__, capability=capability)
    return OracleResponseError(
        f"{type(exc).__name__}: {exc}", capability=capability, retryable=False
    )


_ResultT = TypeVar("_ResultT")
RetryCallback: TypeAlias = Callable[[int, OracleFailure, float], None]


async def run_with_retries(
    operation: Callable[[], Awaitable[_ResultT]],
    *,
    capability: str,
    backoff: BackoffConfig,
    sleep: SleepFn = asyncio.sleep,
    random_fn: RandomFn = random_module.random,
    on_retry: RetryCallback | None = None,
) -> _ResultT:
    """Run an async oracle operation with bounded retries based on retryability."""

    retry_count = 0
    while True:
        try:
            return await operation()
        except Exception as exc:  # noqa: BLE001
            mapped = map_oracle_exception(exc, capability=capability)
            if not mapped.retryable or retry_count >= backoff.max_retries:
                if mapped is exc:
                    raise
                raise mapped from exc

            retry_count += 1
            delay_seconds = compute_backoff_delay(
                retry_number=retry_count,
                config=backoff,
                random_fn=random_fn,
            )
            if on_retry is not None:
                on_retry(retry_count, mapped, delay_seconds)
            await sleep(delay_seconds)


__all__ = [
    "BackoffConfig",
    "ContextBundle",
    "ContextDocument",
    "DocumentRole",
    "OracleCapability",
    "OracleProtocol",
    "OracleRequest",
    "OracleResponse",
    "compute_backoff_delay",
    "map_oracle_exception",
    "run_with_retries",
    "validate_response",
]
