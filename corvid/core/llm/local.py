"""Local Ollama adapter (NDJSON streaming, no credential)."""

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
    new_call_id,
)
from corvid.utils.logging import get_logger

log = get_logger(__name__)


def _arguments_text(arguments: Any) -> str:
    """Ollama returns arguments as an object; the engine carries JSON text."""
    if isinstance(arguments, str):
        return arguments or "{}"
    return json.dumps(arguments or {})


def _arguments_object(arguments: str) -> dict[str, Any]:
    try:
        value = json.loads(arguments) if arguments.strip() else {}
    except json.JSONDecodeError:
        return {}
    return value if isinstance(value, dict) else {}


def convert_messages(messages: Sequence[Message]) -> list[dict[str, Any]]:
    converted: list[dict[str, Any]] = []
    for msg in messages:
        entry: dict[str, Any] = {"role": msg.role, "content": msg.content or ""}
        if msg.tool_calls:
            entry["tool_calls"] = [
                {"function": {"name": tc.name, "arguments": _arguments_object(tc.arguments)}}
                for tc in msg.tool_calls
            ]
        converted.append(entry)
    return converted


def _parse_tags(data: dict[str, Any]) -> list[str]:
    return [m["name"] for m in data.get("models", []) if "name" in m]


def _usage(data: dict[str, Any]) -> Usage | None:
    if "prompt_eval_count" not in data and "eval_count" not in data:
        return None
    return Usage.from_counts(data.get("prompt_eval_count"), data.get("eval_count"))


class OllamaProvider(StreamingProvider):
    model_env = "OLLAMA_MODEL"
    endpoint_env = "OLLAMA_HOST"
    default_model = "llama3.2:latest"
    default_endpoint = "http://localhost:11434"
    display_name = "Ollama"

    # No api_key_env, so is_configured() is always true. Reachability is
    # checked by ProviderRegistry.validate().

    async def get_models(self) -> list[str]:
        data = await self._get_metadata(f"{self._endpoint}/api/tags")
        return self._decode(data, _parse_tags)

    def _build_body(
        self,
        prompt: str,
        tools: Sequence[FunctionDeclaration],
        options: QueryOptions,
        stream: bool,
    ) -> dict[str, Any]:
        body: dict[str, Any] = {
            "model": options.model or self._model,
            "messages": convert_messages(self._prepare_messages(prompt, options)),
            "stream": stream,
            "options": {
                "temperature": options.temperature if options.temperature is not None else 0.7,
                "num_predict": options.max_tokens,
            },
        }
        if tools:
            body["tools"] = [
                {
                    "type": "function",
                    "function": {
                        "name": t.name,
                        "description": t.description,
                        "parameters": t.parameters,
                    },
                }
                for t in tools
            ]
        return body

    async def query_with_tools(
        self,
        prompt: str,
        tools: Sequence[FunctionDeclaration],
        options: QueryOptions | None = None,
    ) -> ToolCallResult:
        options = options or QueryOptions()
        data = await self._request_json(
            "POST",
            f"{self._endpoint}/api/chat",
            body=self._build_body(prompt, tools, options, stream=False),
        )
        return self._decode(data, self._parse_chat)

    def _parse_chat(self, data: dict[str, Any]) -> ToolCallResult:
        if data.get("error"):
            raise self._frame_error(data["error"])
        message = data.get("message")
        if message is None and "response" not in data:
            raise KeyError("message")
        message = message or {}

        tool_calls = [
            ToolCallRequest(
                id=tc.get("id") or new_call_id(),
                name=(tc.get("function") or {}).get("name", ""),
                arguments=_arguments_text((tc.get("function") or {}).get("arguments")),
            )
            for tc in message.get("tool_calls") or []
        ]
        content = message.get("content") or data.get("response") or None
        return ToolCallResult(content=content, tool_calls=tool_calls, usage=_usage(data))

    async def query_with_tools_streaming(
        self,
        prompt: str,
        tools: Sequence[FunctionDeclaration],
        options: QueryOptions | None,
        on_chunk: StreamCallback,
        cancel_token: CancelToken | None = None,
    ) -> ToolCallResult:
        options = options or QueryOptions()
        return await self._stream(
            f"{self._endpoint}/api/chat",
            self._build_body(prompt, tools, options, stream=True),
            on_chunk,
            cancel_token,
            framing="ndjson",
        )

    def _handle_frame(self, frame: Frame, state: StreamState) -> bool:
        if frame.get("error"):
            raise self._frame_error(frame["error"])
        message = frame.get("message") or {}
        # /api/chat uses message.content, /api/generate uses response.
        state.emit_content(message.get("content") or frame.get("response") or "")
        for tc in message.get("tool_calls") or []:
            fn = tc.get("function") or {}
            index = state.tool_calls.next_index()
            state.emit_tool_delta(
                index,
                id=tc.get("id") or new_call_id(),
                name=fn.get("name", ""),
                arguments=_arguments_text(fn.get("arguments")),
            )
        if frame.get("done"):
            state.usage = _usage(frame)
            return True
        return False
