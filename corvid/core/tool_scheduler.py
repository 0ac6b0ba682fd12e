"""Tool call scheduler: validation, approval, concurrent execution, batching."""

from __future__ import annotations

import asyncio
import contextlib
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Iterator, Sequence

from corvid.core.approval import ApprovalPolicy, ConfirmationOutcome
from corvid.core.cancel import CancelToken
from corvid.core.llm.types import ToolCallRequest
from corvid.core.tool_results import (
    Part,
    encode_tool_response,
    function_error_part,
    response_text,
)
from corvid.errors import (
    CancellationError,
    CorvidError,
    ToolExecutionError,
    ToolNotFoundError,
    TurnInProgressError,
)
from corvid.tools.base import BaseTool, ToolConfirmation, ToolResult
from corvid.tools.registry import ToolRegistry
from corvid.utils.logging import get_logger

if TYPE_CHECKING:
    from corvid.core.checkpoint import Checkpointer

log = get_logger(__name__)

USER_REJECTED = "User did not allow tool call"
NO_APPROVAL_HANDLER = "Tool call requires approval but no approval handler is installed."


class ToolCallStatus(str, Enum):
    VALIDATING = "validating"
    SCHEDULED = "scheduled"
    AWAITING_APPROVAL = "awaiting_approval"
    EXECUTING = "executing"
    SUCCESS = "success"
    ERROR = "error"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (ToolCallStatus.SUCCESS, ToolCallStatus.ERROR, ToolCallStatus.CANCELLED)


@dataclass
class ScheduledToolCall:
    request: ToolCallRequest
    client_initiated: bool = False
    status: ToolCallStatus = ToolCallStatus.VALIDATING
    transitions: list[ToolCallStatus] = field(
        default_factory=lambda: [ToolCallStatus.VALIDATING]
    )
    tool: BaseTool | None = None
    params: dict[str, Any] = field(default_factory=dict)
    confirmation: ToolConfirmation | None = None
    outcome: ConfirmationOutcome | None = None
    result: ToolResult | None = None
    response_parts: list[Part] = field(default_factory=list)
    error: str | None = None
    submitted: bool = False

    @property
    def call_id(self) -> str:
        return self.request.id

    @property
    def name(self) -> str:
        return self.request.name

    @property
    def response_text(self) -> str:
        """What is folded into history as the tool message content."""
        return response_text(self.response_parts)


@dataclass
class ToolBatch:
    """All calls from one model turn, in request order."""

    calls: list[ScheduledToolCall]

    def __iter__(self) -> Iterator[ScheduledToolCall]:
        return iter(self.calls)

    def __len__(self) -> int:
        return len(self.calls)

    @property
    def complete(self) -> bool:
        return all(c.status.is_terminal for c in self.calls)

    @property
    def all_cancelled(self) -> bool:
        return bool(self.calls) and all(
            c.status is ToolCallStatus.CANCELLED for c in self.calls
        )

    def for_submission(self) -> list[ScheduledToolCall]:
        """Model-issued calls not yet sent back to the provider."""
        return [c for c in self.calls if not c.client_initiated and not c.submitted]

    def mark_submitted(self) -> None:
        for call in self.for_submission():
            call.submitted = True


ApprovalHandler = Callable[
    [ScheduledToolCall, ToolConfirmation], Awaitable[ConfirmationOutcome]
]
UpdateCallback = Callable[[ScheduledToolCall], None]
CompleteCallback = Callable[[list[ScheduledToolCall]], None]


class ToolScheduler:
    """Drives each call of a batch to a terminal state.

    Calls run concurrently; the batch is returned (and ``on_all_complete``
    fired) only once every call is terminal. One failing call never affects
    its siblings.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        policy: ApprovalPolicy,
        approval_handler: ApprovalHandler | None = None,
        checkpointer: Checkpointer | None = None,
        on_update: UpdateCallback | None = None,
        on_all_complete: CompleteCallback | None = None,
        max_concurrency: int | None = None,
    ) -> None:
        self._registry = registry
        self._policy = policy
        self._approval_handler = approval_handler
        self._checkpointer = checkpointer
        self._on_update = on_update
        self._on_all_complete = on_all_complete
        self._semaphore = asyncio.Semaphore(max_concurrency) if max_concurrency else None
        self._active: ToolBatch | None = None

    @property
    def is_busy(self) -> bool:
        return self._active is not None

    async def run(
        self,
        requests: Sequence[ToolCallRequest],
        cancel_token: CancelToken,
        client_initiated: bool = False,
    ) -> ToolBatch:
        if self._active is not None:
            raise TurnInProgressError("a tool batch is still running")

        batch = ToolBatch([ScheduledToolCall(r, client_initiated=client_initiated) for r in requests])
        self._active = batch
        try:
            for call in batch:
                self._notify(call)
            await asyncio.gather(*(self._run_call(call, cancel_token) for call in batch))
        finally:
            self._active = None

        log.debug(
            "tool_batch_complete",
            calls=len(batch),
            statuses=[c.status.value for c in batch],
        )
        if self._on_all_complete is not None:
            self._on_all_complete(list(batch.calls))
        return batch

    # ------------------------------------------------------------------
    # Per-call lifecycle
    # ------------------------------------------------------------------

    async def _run_call(self, call: ScheduledToolCall, token: CancelToken) -> None:
        try:
            await self._drive(call, token)
        except CancellationError as e:
            self._finish_cancelled(call, e.reason)
        except CorvidError as e:
            self._finish_error(call, str(e))
        except Exception as e:
            # Contained per call: a raising tool never aborts its siblings.
            error = ToolExecutionError(call.name, str(e) or type(e).__name__)
            log.warning("tool_call_failed", tool=call.name, call_id=call.call_id, error=str(e))
            self._finish_error(call, str(error))

    async def _drive(self, call: ScheduledToolCall, token: CancelToken) -> None:
        tool = self._registry.resolve(call.name)
        if tool is None:
            self._finish_error(call, str(ToolNotFoundError(call.name)))
            return
        call.tool = tool

        try:
            call.params = call.request.parse_arguments()
        except ValueError as e:
            self._finish_error(call, f"Invalid arguments for tool {call.name}: {e}")
            return

        invalid = tool.validate_params(call.params)
        if invalid:
            self._finish_error(call, invalid)
            return

        token.raise_if_cancelled()

        if not self._policy.auto_accepts_all:
            confirmation = await token.race(tool.should_confirm_execute(call.params, token))
            call.confirmation = confirmation
            if self._policy.needs_approval(confirmation):
                await self._await_approval(call, tool, confirmation, token)
                if call.status.is_terminal:
                    return

        self._transition(call, ToolCallStatus.SCHEDULED)
        async with self._slot():
            # Waiting for a slot ends as soon as the running calls observe the token.
            token.raise_if_cancelled()
            self._transition(call, ToolCallStatus.EXECUTING)
            result = await token.race(tool.execute(call.params, token))
        self._finish_result(call, result)

    async def _await_approval(
        self,
        call: ScheduledToolCall,
        tool: BaseTool,
        confirmation: ToolConfirmation,
        token: CancelToken,
    ) -> None:
        self._transition(call, ToolCallStatus.AWAITING_APPROVAL)
        if tool.mutates_filesystem and self._checkpointer is not None:
            await self._checkpointer.capture(call)

        if self._approval_handler is None:
            self._finish_cancelled(call, NO_APPROVAL_HANDLER)
            return

        outcome = await token.race(self._approval_handler(call, confirmation))
        call.outcome = outcome
        self._policy.record(outcome, confirmation)
        if outcome is ConfirmationOutcome.CANCEL:
            self._finish_cancelled(call, USER_REJECTED)

    def _slot(self) -> contextlib.AbstractAsyncContextManager[Any]:
        if self._semaphore is None:
            return contextlib.nullcontext()
        return self._semaphore

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _transition(self, call: ScheduledToolCall, status: ToolCallStatus) -> None:
        if call.status.is_terminal:
            return
        call.status = status
        call.transitions.append(status)
        if status.is_terminal and call.client_initiated:
            call.submitted = True
        log.debug("tool_call_state", tool=call.name, call_id=call.call_id, status=status.value)
        self._notify(call)

    def _notify(self, call: ScheduledToolCall) -> None:
        if self._on_update is not None:
            self._on_update(call)

    def _finish_result(self, call: ScheduledToolCall, result: ToolResult) -> None:
        if call.status.is_terminal:
            return
        call.result = result
        if result.success:
            call.response_parts = encode_tool_response(call.call_id, call.name, result.llm_content)
            self._transition(call, ToolCallStatus.SUCCESS)
            return

        call.error = result.error or f'Tool "{call.name}" reported a failure.'
        if result.llm_content:
            call.response_parts = encode_tool_response(call.call_id, call.name, result.llm_content)
        else:
            call.response_parts = [function_error_part(call.call_id, call.name, call.error)]
        log.warning("tool_call_failed", tool=call.name, call_id=call.call_id, error=call.error)
        self._transition(call, ToolCallStatus.ERROR)

    def _finish_error(self, call: ScheduledToolCall, message: str) -> None:
        if call.status.is_terminal:
            return
        call.error = message
        call.response_parts = [function_error_part(call.call_id, call.name, message)]
        self._transition(call, ToolCallStatus.ERROR)

    def _finish_cancelled(self, call: ScheduledToolCall, reason: str) -> None:
        if call.status.is_terminal:
            return
        # Whatever the tool produced is discarded.
        call.result = None
        call.error = reason
        call.response_parts = [
            function_error_part(call.call_id, call.name, f"[Operation Cancelled] Reason: {reason}")
        ]
        self._transition(call, ToolCallStatus.CANCELLED)
