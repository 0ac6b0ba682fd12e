"""Ordered conversation log with a protected system-prompt slot."""

from __future__ import annotations

from typing import Any, Iterable, Sequence

from corvid.core.budget import DEFAULT_TOKEN_LIMIT, fit_to_budget
from corvid.core.llm.types import Message, ToolCallRequest


class ConversationHistory:
    """Append-only turn log. The system prompt is held apart and always sent first."""

    def __init__(self, system_prompt: str, default_budget: int = DEFAULT_TOKEN_LIMIT) -> None:
        self._system_prompt = system_prompt
        self._messages: list[Message] = []
        self._default_budget = default_budget

    @property
    def system_prompt(self) -> str:
        return self._system_prompt

    @property
    def messages(self) -> tuple[Message, ...]:
        """Non-system messages, oldest first."""
        return tuple(self._messages)

    def set_system_prompt(self, prompt: str) -> None:
        self._system_prompt = prompt

    def add_user_message(self, content: str) -> Message:
        return self.append(Message(role="user", content=content))

    def add_assistant_message(
        self,
        content: str | None,
        tool_calls: Sequence[ToolCallRequest] = (),
    ) -> Message:
        return self.append(Message(role="assistant", content=content, tool_calls=tuple(tool_calls)))

    def add_tool_results(self, results: Iterable[tuple[str, str]]) -> list[Message]:
        """Append ``(tool_call_id, content)`` pairs as tool messages, in order."""
        return [
            self.append(Message(role="tool", content=content, tool_call_id=call_id))
            for call_id, content in results
        ]

    def append(self, message: Message) -> Message:
        if message.role == "system":
            raise ValueError("use set_system_prompt() to change the system prompt")
        if message.role == "tool" and message.tool_call_id not in self._known_call_ids():
            raise ValueError(
                f"tool result references unknown tool call id {message.tool_call_id!r}"
            )
        self._messages.append(message)
        return message

    def get_messages(self, token_budget: int | None = None) -> list[Message]:
        """System message first, then as many of the most recent messages as fit."""
        budget = self._default_budget if token_budget is None else token_budget
        system = Message(role="system", content=self._system_prompt)
        return fit_to_budget([system, *self._messages], budget)

    def clear(self) -> None:
        self._messages = []

    def to_dicts(self) -> list[dict[str, Any]]:
        return [m.to_dict() for m in self._messages]

    def load(self, data: Iterable[dict[str, Any]]) -> None:
        """Replace the non-system messages, e.g. when restoring a checkpoint."""
        self._messages = [Message.from_dict(d) for d in data if d.get("role") != "system"]

    def _known_call_ids(self) -> set[str]:
        return {tc.id for m in self._messages for tc in m.tool_calls}

    def __len__(self) -> int:
        return len(self._messages)
