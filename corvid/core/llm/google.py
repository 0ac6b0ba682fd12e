"""Google Generative Language (Gemini) adapter."""

from __future__ import annotations

import json
from typing import Any, Sequence

from corvid.core.cancel import CancelToken
from corvid.core.llm.base import StreamingProvider, sort_model_ids
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


def _function_args(arguments: str) -> dict[str, Any]:
    try:
        value = json.loads(arguments) if arguments.strip() else {}
    except json.JSONDecodeError:
        return {}
    return value if isinstance(value, dict) else {}


def _function_response(content: str | None) -> dict[str, Any]:
    try:
        value = json.loads(content or "")
    except json.JSONDecodeError:
        return {"result": content or ""}
    return value if isinstance(value, dict) else {"result": value}


def _usage(metadata: dict[str, Any] | None) -> Usage | None:
    if not metadata:
        return None
    return Usage.from_counts(
        metadata.get("promptTokenCount"),
        metadata.get("candidatesTokenCount"),
        metadata.get("totalTokenCount"),
    )


def _parse_model_ids(data: dict[str, Any]) -> list[str]:
    ids = [
        m["name"].removeprefix("models/")
        for m in data.get("models", [])
        if "generateContent" in (m.get("supportedGenerationMethods") or [])
    ]
    return sort_model_ids(ids)


def _parse_generation(data: dict[str, Any]) -> ToolCallResult:
    candidates = data.get("candidates") or []
    parts = ((candidates[0] if candidates else {}).get("content") or {}).get("parts")
    if parts is None:
        raise KeyError("parts")

    text = ""
    tool_calls: list[ToolCallRequest] = []
    for part in parts:
        if part.get("text"):
            text += part["text"]
        call = part.get("functionCall")
        if call:
            tool_calls.append(
                ToolCallRequest(
                    id=call.get("id") or new_call_id(),
                    name=call.get("name", ""),
                    arguments=json.dumps(call.get("args") or {}),
                )
            )
    return ToolCallResult(
        content=text or None, tool_calls=tool_calls, usage=_usage(data.get("usageMetadata"))
    )


def convert_messages(
    messages: Sequence[Message],
) -> tuple[dict[str, Any] | None, list[dict[str, Any]]]:
    """Map turns to ``contents`` plus a separate ``systemInstruction``."""
    system_parts: list[str] = []
    contents: list[dict[str, Any]] = []
    call_names: dict[str, str] = {}

    for msg in messages:
        if msg.role == "system":
            if msg.content:
                system_parts.append(msg.content)
        elif msg.role == "user":
            contents.append({"role": "user", "parts": [{"text": msg.content or ""}]})
        elif msg.role == "assistant":
            parts: list[dict[str, Any]] = []
            if msg.content:
                parts.append({"text": msg.content})
            for tc in msg.tool_calls:
                call_names[tc.id] = tc.name
                parts.append({"functionCall": {"name": tc.name, "args": _function_args(tc.arguments)}})
            contents.append({"role": "model", "parts": parts or [{"text": ""}]})
        else:
            part = {
                "functionResponse": {
                    "name": call_names.get(msg.tool_call_id or "", "unknown"),
                    "response": _function_response(msg.content),
                }
            }
            last = contents[-1] if contents else None
            if last is not None and last["role"] == "user" and all(
                "functionResponse" in p for p in last["parts"]
            ):
                last["parts"].append(part)
            else:
                contents.append({"role": "user", "parts": [part]})

    system = {"parts": [{"text": "\n\n".join(system_parts)}]} if system_parts else None
    return system, contents


class GoogleProvider(StreamingProvider):
    api_key_env = "GEMINI_API_KEY"
    model_env = "GEMINI_MODEL"
    endpoint_env = "GEMINI_BASE_URL"
    default_model = "gemini-2.5-flash"
    default_endpoint = "https://generativelanguage.googleapis.com/v1beta"
    display_name = "Google"

    def _headers(self) -> dict[str, str]:
        # Sent as a header so the key never appears in a logged URL.
        return {"Content-Type": "application/json", "x-goog-api-key": self._api_key or ""}

    async def get_models(self) -> list[str]:
        self._require_configured()
        data = await self._get_metadata(f"{self._endpoint}/models", headers=self._headers())
        return self._decode(data, _parse_model_ids)

    def _build_body(
        self,
        prompt: str,
        tools: Sequence[FunctionDeclaration],
        options: QueryOptions,
    ) -> dict[str, Any]:
        system, contents = convert_messages(self._prepare_messages(prompt, options))
        body: dict[str, Any] = {
            "contents": contents,
            "generationConfig": {
                "temperature": options.temperature if options.temperature is not None else 0.7,
                "maxOutputTokens": options.max_tokens,
            },
        }
        if system:
            body["systemInstruction"] = system
        if tools:
            body["tools"] = [
                {
                    "functionDeclarations": [
                        {"name": t.name, "description": t.description, "parameters": t.parameters}
                        for t in tools
                    ]
                }
            ]
        return body

    def _model_url(self, options: QueryOptions, method: str) -> str:
        return f"{self._endpoint}/models/{options.model or self._model}:{method}"

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
            self._model_url(options, "generateContent"),
            body=self._build_body(prompt, tools, options),
            headers=self._headers(),
        )
        return self._decode(data, _parse_generation)

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
            self._model_url(options, "streamGenerateContent"),
            self._build_body(prompt, tools, options),
            on_chunk,
            cancel_token,
            headers=self._headers(),
            params={"alt": "sse"},
        )

    def _handle_frame(self, frame: Frame, state: StreamState) -> bool:
        if frame.get("error"):
            raise self._frame_error(frame["error"])
        candidates = frame.get("candidates") or []
        parts = ((candidates[0] if candidates else {}).get("content") or {}).get("parts") or []
        for part in parts:
            if part.get("text"):
                state.emit_content(part["text"])
            call = part.get("functionCall")
            if call:
                # Function calls arrive whole, one part each.
                state.emit_tool_delta(
                    state.tool_calls.next_index(),
                    id=call.get("id") or new_call_id(),
                    name=call.get("name", ""),
                    arguments=json.dumps(call.get("args") or {}),
                )
        if frame.get("usageMetadata"):
            state.usage = _usage(frame["usageMetadata"])
        # The stream ends at EOF; there is no terminator frame.
        return False
