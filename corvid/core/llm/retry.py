"""Bounded retry with exponential backoff for outbound provider calls."""

from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

from corvid.core.cancel import CancelToken
from corvid.errors import BackendProtocolError, TransportError
from corvid.utils.logging import get_logger

log = get_logger(__name__)
T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    initial_delay: float = 1.0
    max_delay: float = 10.0
    multiplier: float = 2.0
    jitter: bool = False

    def delay_for(self, attempt: int) -> float:
        """Delay after the ``attempt``-th failure (1-based)."""
        delay = min(self.initial_delay * (self.multiplier ** (attempt - 1)), self.max_delay)
        if self.jitter and delay > 0:
            delay = random.uniform(delay / 2, delay)
        return delay


# Generation calls.
DEFAULT_RETRY = RetryPolicy()
# Model listing and other metadata calls.
METADATA_RETRY = RetryPolicy(max_attempts=2, initial_delay=0.5, max_delay=2.0)


def is_retryable(error: BaseException) -> bool:
    if isinstance(error, TransportError):
        return True
    if isinstance(error, BackendProtocolError):
        return error.retryable
    return False


async def retry_with_backoff(
    func: Callable[[], Awaitable[T]],
    policy: RetryPolicy = DEFAULT_RETRY,
    *,
    backend: str = "",
    cancel_token: CancelToken | None = None,
) -> T:
    """Run ``func`` until it succeeds, fails with a non-retryable error, or
    ``policy.max_attempts`` is exhausted. Holds no state between calls."""
    attempt = 0
    while True:
        attempt += 1
        try:
            return await func()
        except (TransportError, BackendProtocolError) as e:
            if attempt >= policy.max_attempts or not is_retryable(e):
                raise
            delay = policy.delay_for(attempt)
            log.warning(
                "provider_retry",
                backend=backend,
                status=e.status,
                error=e.message,
                attempt=attempt,
                max_attempts=policy.max_attempts,
                wait=round(delay, 2),
            )
            if cancel_token is not None:
                await cancel_token.sleep(delay)
            else:
                await asyncio.sleep(delay)
