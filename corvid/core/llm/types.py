"""LLM data types shared by every backend adapter."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Literal
from uuid import uuid4

Role = Literal["system", "user", "assistant", "tool"]


def new_call_id() -> str:
    """Id for a tool call the backend left unnamed. Unique across turns."""
    return f"call_{uuid4().hex[:12]}"


@dataclass(frozen=True)
class ToolCallRequest:
    """A tool invocation requested by the model. ``arguments`` is JSON text."""

    id: str
    name: str
    arguments: str = "{}"

    def parse_arguments(self) -> dict[str, Any]:
        """Decode the argument payload. Raises ValueError on malformed JSON."""
        if not self.arguments.strip():
            return {}
        value = json.loads(self.arguments)
        if not isinstance(value, dict):
            raise ValueError("tool arguments must be a JSON object")
        return value

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.arguments},
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ToolCallRequest:
        fn = data.get("function", {})
        return cls(id=data["id"], name=fn.get("name", ""), arguments=fn.get("arguments", "{}"))


@dataclass(frozen=True)
class Message:
    role: Role
    content: str | None = None
    tool_calls: tuple[ToolCallRequest, ...] = ()
    tool_call_id: str | None = None

    def __post_init__(self) -> None:
        if self.tool_calls and self.role != "assistant":
            raise ValueError("only assistant messages may carry tool calls")
        if self.tool_call_id is not None and self.role != "tool":
            raise ValueError("only tool messages may carry a tool_call_id")
        if self.role == "tool" and not self.tool_call_id:
            raise ValueError("tool messages require a tool_call_id")

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"role": self.role, "content": self.content}
        if self.tool_calls:
            result["tool_calls"] = [tc.to_dict() for tc in self.tool_calls]
        if self.tool_call_id:
            result["tool_call_id"] = self.tool_call_id
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Message:
        return cls(
            role=data["role"],
            content=data.get("content"),
            tool_calls=tuple(ToolCallRequest.from_dict(tc) for tc in data.get("tool_calls") or ()),
            tool_call_id=data.get("tool_call_id"),
        )


@dataclass(frozen=True)
class Usage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    @classmethod
    def from_counts(
        cls,
        prompt: int | None,
        completion: int | None,
        total: int | None = None,
    ) -> Usage:
        prompt = prompt or 0
        completion = completion or 0
        if total is None:
            total = prompt + completion
        return cls(prompt_tokens=prompt, completion_tokens=completion, total_tokens=total)

    def __add__(self, other: Usage) -> Usage:
        return Usage(
            self.prompt_tokens + other.prompt_tokens,
            self.completion_tokens + other.completion_tokens,
            self.total_tokens + other.total_tokens,
        )


@dataclass
class ToolCallResult:
    """Terminal output of one provider call."""

    content: str | None = None
    tool_calls: list[ToolCallRequest] = field(default_factory=list)
    usage: Usage | None = None


@dataclass(frozen=True)
class FunctionDeclaration:
    name: str
    description: str
    parameters: dict[str, Any] = field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )


class ChunkType(str, Enum):
    CONTENT = "content"
    TOOL_CALL_DELTA = "tool_call_delta"
    DONE = "done"


@dataclass(frozen=True)
class StreamChunk:
    type: ChunkType
    content: str | None = None
    # Snapshot of the tool call assembled so far at ``index``.
    tool_call: ToolCallRequest | None = None
    index: int | None = None


StreamCallback = Callable[[StreamChunk], None]


@dataclass
class QueryOptions:
    model: str | None = None
    temperature: float | None = None
    max_tokens: int = 2048
    # Pre-built turn list from ConversationHistory; ``prompt`` is ignored when set.
    messages: list[Message] | None = None
    system_prompt: str | None = None
    token_budget: int | None = None
