"""Token budget governor: keeps a turn list under a model's context window."""

from __future__ import annotations

import math
from typing import TYPE_CHECKING, Sequence

from corvid.utils.logging import get_logger

if TYPE_CHECKING:
    from corvid.core.llm.types import Message

log = get_logger(__name__)

DEFAULT_TOKEN_LIMIT = 128_000

# Tokens held back for the model's own response.
GENERATION_RESERVE = 2048

_MODEL_LIMITS: dict[str, int] = {
    "gemini-2.5-pro": 1_048_576,
    "gemini-2.5-flash": 1_048_576,
    "claude-sonnet-4-20250514": 200_000,
    "claude-opus-4-20250514": 200_000,
    "claude-haiku-3-5-20241022": 200_000,
    "grok-4": 256_000,
}


def token_limit(model: str | None) -> int:
    if not model:
        return DEFAULT_TOKEN_LIMIT
    return _MODEL_LIMITS.get(model, DEFAULT_TOKEN_LIMIT)


def estimate_tokens(text: str | None) -> int:
    """Cheap estimate: one token per four characters, rounded up."""
    if not text:
        return 0
    return math.ceil(len(text) / 4)


def message_cost(message: Message) -> int:
    return estimate_tokens(message.content)


def fit_to_budget(
    messages: Sequence[Message],
    token_budget: int,
    reserve: int = GENERATION_RESERVE,
) -> list[Message]:
    """Drop the oldest non-system messages until the estimate fits.

    Leading system messages are never dropped, even if they alone exceed the
    budget. The kept non-system messages are always a suffix of the input. A
    suffix that would open with tool results whose assistant call was dropped
    is trimmed past them.
    """
    split = 0
    while split < len(messages) and messages[split].role == "system":
        split += 1
    system = list(messages[:split])
    rest = list(messages[split:])

    available = token_budget - reserve
    total = sum(message_cost(m) for m in system) + sum(message_cost(m) for m in rest)

    start = 0
    while total > available and start < len(rest):
        total -= message_cost(rest[start])
        start += 1

    while start < len(rest) and rest[start].role == "tool":
        start += 1

    if start:
        log.debug(
            "history_truncated",
            dropped=start,
            kept=len(rest) - start,
            estimated_tokens=total,
            budget=available,
        )
    return system + rest[start:]
