"""Cooperative cancellation scoped to one user turn."""

from __future__ import annotations

import asyncio
from typing import Awaitable, TypeVar

from corvid.errors import CancellationError
from corvid.utils.logging import get_logger

log = get_logger(__name__)

T = TypeVar("T")


class CancelToken:
    """One token per user turn. Shared by the provider call and every tool call."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: str | None = None

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    def cancel(self, reason: str = "Request cancelled.") -> None:
        if self._event.is_set():
            return
        self._reason = reason
        self._event.set()
        log.info("turn_cancelled", reason=reason)

    async def wait(self) -> None:
        await self._event.wait()

    def raise_if_cancelled(self) -> None:
        if self.is_cancelled:
            raise CancellationError(self._reason)

    async def race(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable`` unless the token fires first.

        If the token has fired by the time the awaitable finishes, the result is
        discarded and CancellationError is raised anyway.
        """
        if self.is_cancelled:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise CancellationError(self._reason)
        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            waiter.cancel()

        if self.is_cancelled:
            if not task.done():
                task.cancel()
            await asyncio.gather(task, return_exceptions=True)
            raise CancellationError(self._reason)
        return task.result()

    async def sleep(self, seconds: float) -> None:
        """Sleep that wakes early (with CancellationError) when the token fires."""
        await self.race(asyncio.sleep(seconds))
