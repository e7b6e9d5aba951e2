"""Async concurrency primitives used by the reconciliation control plane."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager, suppress
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Generic, TypeVar

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Awaitable, Callable, Sequence

T = TypeVar("T")


class CancellationToken:
    """Cooperative cancellation token backed by ``asyncio.Event``."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise asyncio.CancelledError("operation cancelled")


class BoundedSemaphore:
    """Small wrapper over ``asyncio.Semaphore`` with usage diagnostics."""

    def __init__(self, limit: int) -> None:
        if limit <= 0:
            raise ValueError("limit must be > 0")
        self._limit = limit
        self._semaphore = asyncio.Semaphore(limit)
        self._in_use = 0
        self._peak = 0

    @property
    def limit(self) -> int:
        return self._limit

    @property
    def in_use(self) -> int:
        return self._in_use

    @property
    def peak(self) -> int:
        return self._peak

    @property
    def available(self) -> int:
        return self._limit - self._in_use

    async def acquire(self) -> None:
        # Cancellation while waiting here does not acquire a permit.
        await self._semaphore.acquire()
        self._in_use += 1
        self._peak = max(self._peak, self._in_use)

    def release(self) -> None:
        if self._in_use <= 0:
            raise RuntimeError("release called more times than acquire")
        self._in_use -= 1
        self._semaphore.release()

    @asynccontextmanager
    async def permit(self) -> AsyncIterator[None]:
        await self.acquire()
        try:
            yield
        finally:
            self.release()

    def snapshot(self) -> dict[str, int]:
        return {
            "limit": self._limit,
            "in_use": self._in_use,
            "available": self.available,
            "peak": self._peak,
        }


@dataclass(slots=True)
class WorkerPool(Generic[T]):
    """Run coroutine factories with bounded concurrency.

    Factories are only invoked once a permit is held, so nothing is started
    (and no coroutine object is left unawaited) after cancellation.
    """

    max_concurrency: int
    cancel_token: CancellationToken | None = None
    _token: CancellationToken = field(init=False, repr=False)
    _semaphore: BoundedSemaphore = field(init=False, repr=False)

    def __post_init__(self) -> None:
        if self.max_concurrency <= 0:
            raise ValueError("max_concurrency must be > 0")
        self._token = self.cancel_token or CancellationToken()
        self._semaphore = BoundedSemaphore(self.max_concurrency)

    @property
    def semaphore(self) -> BoundedSemaphore:
        return self._semaphore

    async def map(self, factories: Sequence[Callable[[], Awaitable[T]]]) -> list[T]:
        """Run all factories and return results in input order.

        The first exception cancels the remaining tasks and is re-raised.
        """
        self._token.raise_if_cancelled()
        tasks = [asyncio.create_task(self._run_one(factory)) for factory in factories]
        try:
            return list(await asyncio.gather(*tasks))
        except BaseException:
            await _cancel_all(tasks)
            raise

    async def _run_one(self, factory: Callable[[], Awaitable[T]]) -> T:
        async with self._semaphore.permit():
            self._token.raise_if_cancelled()
            return await factory()


async def _cancel_all(tasks: Sequence[asyncio.Task[T]]) -> None:
    pending = [task for task in tasks if not task.done()]
    for task in pending:
        task.cancel()
    if pending:
        with suppress(Exception):
            await asyncio.gather(*pending, return_exceptions=True)


__all__ = [
    "BoundedSemaphore",
    "CancellationToken",
    "WorkerPool",
]
