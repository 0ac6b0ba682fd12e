"""Agent loop: provider calls with iterative tool scheduling."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any
from uuid import uuid4

from corvid.core.budget import token_limit
from corvid.core.cancel import CancelToken
from corvid.core.history import ConversationHistory
from corvid.core.llm.base import Provider
from corvid.core.llm.types import (
    QueryOptions,
    StreamCallback,
    StreamChunk,
    ToolCallRequest,
    ToolCallResult,
    Usage,
)
from corvid.core.tool_scheduler import ScheduledToolCall, ToolScheduler
from corvid.errors import CancellationError, TurnInProgressError
from corvid.tools.registry import ToolRegistry
from corvid.utils.logging import get_logger

log = get_logger(__name__)


def _ignore_chunk(_chunk: StreamChunk) -> None:
    return None


@dataclass
class TurnResult:
    text: str = ""
    tool_calls: list[ScheduledToolCall] = field(default_factory=list)
    usage: Usage | None = None
    iterations: int = 0
    cancelled: bool = False


class AgentLoop:
    """Runs one user turn: query, schedule tool calls, fold results, repeat."""

    def __init__(
        self,
        provider: Provider,
        history: ConversationHistory,
        scheduler: ToolScheduler,
        tools: ToolRegistry,
        *,
        model: str | None = None,
        temperature: float | None = None,
        max_tokens: int = 2048,
        token_budget: int | None = None,
        stream: bool = True,
        max_iterations: int = 25,
        on_chunk: StreamCallback | None = None,
    ) -> None:
        self._provider = provider
        self._history = history
        self._scheduler = scheduler
        self._tools = tools
        self._model = model
        self._temperature = temperature
        self._max_tokens = max_tokens
        self._token_budget = token_budget
        self._stream = stream
        self._max_iterations = max_iterations
        self._on_chunk = on_chunk or _ignore_chunk
        self._busy = False

    @property
    def is_busy(self) -> bool:
        return self._busy

    @property
    def history(self) -> ConversationHistory:
        return self._history

    async def run_turn(self, user_input: str, cancel_token: CancelToken | None = None) -> TurnResult:
        """Provider errors propagate; cancellation returns a result flagged ``cancelled``."""
        if self._busy:
            raise TurnInProgressError("a turn is already in progress")
        self._busy = True
        try:
            return await self._run(user_input, cancel_token or CancelToken())
        finally:
            self._busy = False

    async def run_tool(
        self,
        name: str,
        args: dict[str, Any],
        cancel_token: CancelToken | None = None,
    ) -> ScheduledToolCall:
        """Run a client-initiated call. Its result is never sent to the provider."""
        if self._busy:
            raise TurnInProgressError("a turn is already in progress")
        request = ToolCallRequest(id=f"client_{uuid4().hex[:12]}", name=name, arguments=json.dumps(args))
        batch = await self._scheduler.run([request], cancel_token or CancelToken(), client_initiated=True)
        return batch.calls[0]

    async def _run(self, user_input: str, token: CancelToken) -> TurnResult:
        self._history.add_user_message(user_input)
        turn = TurnResult()

        for _ in range(self._max_iterations):
            turn.iterations += 1
            try:
                result = await self._query(token)
            except CancellationError as e:
                if e.partial is not None and e.partial.content:
                    turn.text = e.partial.content
                turn.cancelled = True
                log.info("turn_cancelled_during_query", iterations=turn.iterations)
                return turn

            if result.usage is not None:
                turn.usage = result.usage if turn.usage is None else turn.usage + result.usage
            self._history.add_assistant_message(result.content, result.tool_calls)
            turn.text = result.content or ""

            if not result.tool_calls:
                return turn

            log.info("tool_calls_requested", tools=[tc.name for tc in result.tool_calls])
            batch = await self._scheduler.run(result.tool_calls, token)
            turn.tool_calls.extend(batch.calls)

            # Results go back in request order, whatever order they finished in.
            submission = batch.for_submission()
            self._history.add_tool_results((c.call_id, c.response_text) for c in submission)
            batch.mark_submitted()

            if token.is_cancelled or batch.all_cancelled:
                turn.cancelled = True
                return turn

        log.warning("max_iterations_reached", max_iterations=self._max_iterations)
        return turn

    async def _query(self, token: CancelToken) -> ToolCallResult:
        budget = self._token_budget or token_limit(self._model or self._provider.model)
        options = QueryOptions(
            model=self._model,
            temperature=self._temperature,
            max_tokens=self._max_tokens,
            messages=self._history.get_messages(budget),
            token_budget=budget,
        )
        declarations = self._tools.declarations()
        if self._stream:
            return await self._provider.query_with_tools_streaming(
                "", declarations, options, self._on_chunk, token
            )
        return await token.race(self._provider.query_with_tools("", declarations, options))
