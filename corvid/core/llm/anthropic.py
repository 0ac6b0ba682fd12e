"""Anthropic Messages API adapter."""

from __future__ import annotations

import json
from typing import Any, Sequence

from corvid.core.cancel import CancelToken
from corvid.core.llm.base import StreamingProvider
from corvid.core.llm.streaming import Frame, StreamState
from corvid.core.llm.types import (
    FunctionDeclaration,
    Message,
    QueryOptions,
    StreamCallback,
    ToolCallRequest,
    ToolCallResult,
    Usage,
)
from corvid.utils.logging import get_logger

log = get_logger(__name__)

ANTHROPIC_VERSION = "2023-06-01"

KNOWN_MODELS = [
    "claude-sonnet-4-20250514",
    "claude-opus-4-20250514",
    "claude-haiku-3-5-20241022",
]


def _tool_input(arguments: str) -> dict[str, Any]:
    try:
        value = json.loads(arguments) if arguments.strip() else {}
    except json.JSONDecodeError:
        log.debug("tool_arguments_unparsable", arguments=arguments[:200])
        return {}
    return value if isinstance(value, dict) else {}


def convert_messages(messages: Sequence[Message]) -> tuple[str, list[dict[str, Any]]]:
    """Split out the system prompt and map turns to Messages API blocks.

    Consecutive tool results are merged into one user turn of ``tool_result``
    blocks, which is how the API expects them.
    """
    system_parts: list[str] = []
    converted: list[dict[str, Any]] = []

    for msg in messages:
        if msg.role == "system":
            if msg.content:
                system_parts.append(msg.content)
        elif msg.role == "user":
            converted.append({"role": "user", "content": msg.content or ""})
        elif msg.role == "assistant":
            blocks: list[dict[str, Any]] = []
            if msg.content:
                blocks.append({"type": "text", "text": msg.content})
            for tc in msg.tool_calls:
                blocks.append(
                    {
                        "type": "tool_use",
                        "id": tc.id,
                        "name": tc.name,
                        "input": _tool_input(tc.arguments),
                    }
                )
            converted.append({"role": "assistant", "content": blocks or ""})
        else:
            block = {
                "type": "tool_result",
                "tool_use_id": msg.tool_call_id,
                "content": msg.content or "",
            }
            last = converted[-1] if converted else None
            if (
                last is not None
                and last["role"] == "user"
                and isinstance(last["content"], list)
                and all(b.get("type") == "tool_result" for b in last["content"])
            ):
                last["content"].append(block)
            else:
                converted.append({"role": "user", "content": [block]})

    return "\n\n".join(system_parts), converted


def _parse_message(data: dict[str, Any]) -> ToolCallResult:
    blocks = data["content"]
    if not isinstance(blocks, list):
        raise TypeError("content is not a list of blocks")

    text = "".join(b.get("text", "") for b in blocks if b.get("type") == "text")
    tool_calls = [
        ToolCallRequest(id=b["id"], name=b["name"], arguments=json.dumps(b.get("input", {})))
        for b in blocks
        if b.get("type") == "tool_use"
    ]
    usage = data.get("usage")
    return ToolCallResult(
        content=text or None,
        tool_calls=tool_calls,
        usage=(
            Usage.from_counts(usage.get("input_tokens"), usage.get("output_tokens"))
            if usage
            else None
        ),
    )


class AnthropicProvider(StreamingProvider):
    api_key_env = "ANTHROPIC_API_KEY"
    model_env = "ANTHROPIC_MODEL"
    endpoint_env = "ANTHROPIC_BASE_URL"
    default_model = "claude-sonnet-4-20250514"
    default_endpoint = "https://api.anthropic.com"
    display_name = "Anthropic"

    def _headers(self) -> dict[str, str]:
        return {
            "x-api-key": self._api_key or "",
            "anthropic-version": ANTHROPIC_VERSION,
            "Content-Type": "application/json",
        }

    async def get_models(self) -> list[str]:
        # No public listing endpoint.
        return list(KNOWN_MODELS)

    def _build_body(
        self,
        prompt: str,
        tools: Sequence[FunctionDeclaration],
        options: QueryOptions,
        stream: bool,
    ) -> dict[str, Any]:
        system, messages = convert_messages(self._prepare_messages(prompt, options))
        body: dict[str, Any] = {
            "model": options.model or self._model,
            "max_tokens": options.max_tokens,
            "messages": messages,
            "temperature": options.temperature if options.temperature is not None else 0.7,
        }
        if system:
            body["system"] = system
        if tools:
            body["tools"] = [
                {"name": t.name, "description": t.description, "input_schema": t.parameters}
                for t in tools
            ]
        if stream:
            body["stream"] = True
        return body

    async def query_with_tools(
        self,
        prompt: str,
        tools: Sequence[FunctionDeclaration],
        options: QueryOptions | None = None,
    ) -> ToolCallResult:
        self._require_configured()
        options = options or QueryOptions()
        data = await self._request_json(
            "POST",
            f"{self._endpoint}/v1/messages",
            body=self._build_body(prompt, tools, options, stream=False),
            headers=self._headers(),
        )
        return self._decode(data, _parse_message)

    async def query_with_tools_streaming(
        self,
        prompt: str,
        tools: Sequence[FunctionDeclaration],
        options: QueryOptions | None,
        on_chunk: StreamCallback,
        cancel_token: CancelToken | None = None,
    ) -> ToolCallResult:
        self._require_configured()
        options = options or QueryOptions()
        return await self._stream(
            f"{self._endpoint}/v1/messages",
            self._build_body(prompt, tools, options, stream=True),
            on_chunk,
            cancel_token,
            headers=self._headers(),
        )

    def _handle_frame(self, frame: Frame, state: StreamState) -> bool:
        event = frame.get("type")

        if event == "message_start":
            usage = (frame.get("message") or {}).get("usage") or {}
            state.usage = Usage.from_counts(usage.get("input_tokens"), usage.get("output_tokens"))
        elif event == "content_block_start":
            block = frame.get("content_block") or {}
            if block.get("type") == "tool_use":
                state.emit_tool_delta(
                    frame.get("index", 0),
                    id=block.get("id"),
                    name=block.get("name"),
                    replace_name=True,
                )
        elif event == "content_block_delta":
            delta = frame.get("delta") or {}
            if delta.get("type") == "text_delta":
                state.emit_content(delta.get("text", ""))
            elif delta.get("type") == "input_json_delta":
                index = frame.get("index", 0)
                # Fragments for a block that never opened as tool_use are dropped.
                if index in state.tool_calls:
                    state.emit_tool_delta(index, arguments=delta.get("partial_json", ""))
        elif event == "message_delta":
            usage = frame.get("usage") or {}
            if "output_tokens" in usage:
                prompt = state.usage.prompt_tokens if state.usage else 0
                state.usage = Usage.from_counts(prompt, usage["output_tokens"])
        elif event == "message_stop":
            return True
        elif event == "error":
            raise self._frame_error(frame.get("error"))
        return False
