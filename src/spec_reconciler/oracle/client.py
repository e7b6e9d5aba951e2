"""
spec-reconciler — oracle client with two call paths

File: src/spec_reconciler/oracle/client.py
Last updated: 2026-10-17

Purpose
- Single entry point for every oracle call in the reconciler.

What should be included in this file
- ``analyze``: cacheable analysis path (consistency, trace, residue hints).
- ``generate``: non-idempotent generation path (code, review, test derivation).

Functional requirements
- Analysis results are memoised by request fingerprint; identical concurrent
  requests share one provider call.
- Generation calls are never cached and every invocation is logged.
- Both paths apply the per-call timeout and bounded retry policy.
"""

from __future__ import annotations

import asyncio
from collections import Counter
from typing import TYPE_CHECKING, Any

import structlog

from spec_reconciler.domain.ids import generate_request_id
from spec_reconciler.oracle.base import (
    BackoffConfig,
    OracleCapability,
    OracleRequest,
    OracleResponse,
    SleepFn,
    run_with_retries,
    validate_response,
)
from spec_reconciler.oracle.cache import AnalysisCache
from spec_reconciler.observability.logging import correlation_scope

if TYPE_CHECKING:
    from spec_reconciler.domain.errors import OracleFailure
    from spec_reconciler.oracle.base import OracleProtocol


class OracleClient:
    def __init__(
        self,
        provider: OracleProtocol,
        *,
        backoff: BackoffConfig | None = None,
        cache: AnalysisCache | None = None,
        timeout_seconds: float = 120.0,
        sleep: SleepFn = asyncio.sleep,
        logger: Any | None = None,
    ) -> None:
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")
        self._provider = provider
        self._backoff = backoff or BackoffConfig()
        self._cache = cache if cache is not None else AnalysisCache()
        self._timeout_seconds = timeout_seconds
        self._sleep = sleep
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        self._inflight: dict[str, asyncio.Future[OracleResponse]] = {}
        self.calls: Counter[str] = Counter()

    @property
    def cache(self) -> AnalysisCache:
        return self._cache

    async def analyze(self, request: OracleRequest, *, refresh: bool = False) -> OracleResponse:
        """Analysis path: memoised by request fingerprint.

        ``refresh`` skips the memo lookup; the fresh result still replaces the entry.
        """

        if not request.capability.is_analysis:
            raise ValueError(f"{request.capability.value} is not an analysis capability")

        key = request.fingerprint()
        cached = None if refresh else self._cache.get(key)
        if isinstance(cached, dict):
            return OracleResponse(
                capability=request.capability,
                payload=cached.get("payload", {}),  # type: ignore[arg-type]
                confidence=cached.get("confidence", "medium"),  # type: ignore[arg-type]
            )

        pending = self._inflight.get(key)
        if pending is not None:
            return await asyncio.shield(pending)

        future: asyncio.Future[OracleResponse] = asyncio.get_running_loop().create_future()
        self._inflight[key] = future
        try:
            response = await self._call(request)
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as exc:
            future.set_exception(exc)
            # Retrieve so an unshared future does not warn at GC time.
            future.exception()
            raise
        else:
            self._cache.put(key, response.to_dict())
            future.set_result(response)
            return response
        finally:
            self._inflight.pop(key, None)

    async def generate(self, request: OracleRequest) -> OracleResponse:
        """Generation path: never cached, always logged."""

        if request.capability.is_analysis:
            raise ValueError(f"{request.capability.value} must use the analysis path")

        request_id = generate_request_id()
        self._logger.info(
            "oracle_generation_call",
            request_id=request_id,
            capability=request.capability.value,
            focus=list(request.context.focus),
            documents=len(request.context.documents),
        )
        with correlation_scope(request_id=request_id):
            try:
                response = await self._call(request)
            except Exception as exc:
                self._logger.warning(
                    "oracle_generation_failed",
                    request_id=request_id,
                    capability=request.capability.value,
                    error=str(exc),
                )
                raise
        self._logger.info(
            "oracle_generation_result",
            request_id=request_id,
            capability=request.capability.value,
            confidence=response.confidence.value,
        )
        return response

    async def _call(self, request: OracleRequest) -> OracleResponse:
        capability = request.capability.value

        async def attempt() -> OracleResponse:
            self.calls[capability] += 1
            raw = await asyncio.wait_for(self._provider.send(request), self._timeout_seconds)
            return validate_response(request, raw)

        def on_retry(retry: int, error: OracleFailure, delay: float) -> None:
            self._logger.warning(
                "oracle_call_retry",
                capability=capability,
                retry=retry,
                code=error.code,
                delay_seconds=delay,
            )

        return await run_with_retries(
            attempt,
            capability=capability,
            backoff=self._backoff,
            sleep=self._sleep,
            on_retry=on_retry,
        )


__all__ = ["OracleClient", "OracleCapability"]
