"""OpenAI-compatible chat-completions adapter and the vendors that speak it."""

from __future__ import annotations

import os
from typing import Any, Sequence

from corvid.config import ProviderConfig
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


def _usage(data: dict[str, Any] | None) -> Usage | None:
    if not data:
        return None
    return Usage.from_counts(
        data.get("prompt_tokens"), data.get("completion_tokens"), data.get("total_tokens")
    )


def _parse_model_ids(data: dict[str, Any]) -> list[str]:
    return sort_model_ids([m["id"] for m in data["data"] if isinstance(m, dict) and "id" in m])


def _parse_completion(data: dict[str, Any]) -> ToolCallResult:
    message = data["choices"][0]["message"]
    tool_calls = [
        ToolCallRequest(
            id=tc.get("id") or new_call_id(),
            name=(tc.get("function") or {}).get("name", ""),
            arguments=(tc.get("function") or {}).get("arguments") or "{}",
        )
        for tc in message.get("tool_calls") or []
    ]
    return ToolCallResult(
        content=message.get("content") or None,
        tool_calls=tool_calls,
        usage=_usage(data.get("usage")),
    )


class OpenAICompatibleProvider(StreamingProvider):
    """``POST {endpoint}/chat/completions`` with Bearer auth."""

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        headers.update(self._extra_headers())
        return headers

    def _extra_headers(self) -> dict[str, str]:
        return {}

    def _completions_url(self) -> str:
        return f"{self._endpoint}/chat/completions"

    def _query_params(self) -> dict[str, str] | None:
        return None

    def _convert_messages(self, messages: Sequence[Message]) -> list[dict[str, Any]]:
        return [m.to_dict() for m in messages]

    def _build_body(
        self,
        prompt: str,
        tools: Sequence[FunctionDeclaration],
        options: QueryOptions,
        stream: bool,
    ) -> dict[str, Any]:
        body: dict[str, Any] = {
            "model": options.model or self._model,
            "messages": self._convert_messages(self._prepare_messages(prompt, options)),
            "temperature": options.temperature if options.temperature is not None else 0.7,
            "max_tokens": options.max_tokens,
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
            body["tool_choice"] = "auto"
        if stream:
            body["stream"] = True
            body["stream_options"] = {"include_usage": True}
        return body

    async def get_models(self) -> list[str]:
        self._require_configured()
        data = await self._get_metadata(f"{self._endpoint}/models", headers=self._headers())
        return self._decode(data, _parse_model_ids)

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
            self._completions_url(),
            body=self._build_body(prompt, tools, options, stream=False),
            headers=self._headers(),
            params=self._query_params(),
        )
        return self._decode(data, _parse_completion)

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
            self._completions_url(),
            self._build_body(prompt, tools, options, stream=True),
            on_chunk,
            cancel_token,
            headers=self._headers(),
            params=self._query_params(),
        )

    def _handle_frame(self, frame: Frame, state: StreamState) -> bool:
        if frame.get("usage"):
            state.usage = _usage(frame["usage"])
        choices = frame.get("choices") or []
        if not choices:
            return False
        delta = choices[0].get("delta") or {}
        if delta.get("content"):
            state.emit_content(delta["content"])
        for tc in delta.get("tool_calls") or []:
            fn = tc.get("function") or {}
            state.emit_tool_delta(
                tc.get("index", 0),
                id=tc.get("id"),
                name=fn.get("name"),
                arguments=fn.get("arguments"),
            )
        # Usage arrives in a trailing frame, so keep reading until [DONE].
        return False


class OpenAIProvider(OpenAICompatibleProvider):
    api_key_env = "OPENAI_API_KEY"
    model_env = "OPENAI_MODEL"
    endpoint_env = "OPENAI_BASE_URL"
    default_model = "gpt-4o"
    default_endpoint = "https://api.openai.com/v1"
    display_name = "OpenAI"


class XAIProvider(OpenAICompatibleProvider):
    api_key_env = "XAI_API_KEY"
    model_env = "XAI_MODEL"
    endpoint_env = "XAI_BASE_URL"
    default_model = "grok-code-fast-1"
    default_endpoint = "https://api.x.ai/v1"
    display_name = "XAI"


class GroqProvider(OpenAICompatibleProvider):
    api_key_env = "GROQ_API_KEY"
    model_env = "GROQ_MODEL"
    endpoint_env = "GROQ_BASE_URL"
    default_model = "llama-3.3-70b-versatile"
    default_endpoint = "https://api.groq.com/openai/v1"
    display_name = "Groq"


class OpenRouterProvider(OpenAICompatibleProvider):
    api_key_env = "OPENROUTER_API_KEY"
    model_env = "OPENROUTER_MODEL"
    endpoint_env = "OPENROUTER_BASE_URL"
    default_model = "anthropic/claude-sonnet-4"
    default_endpoint = "https://openrouter.ai/api/v1"
    display_name = "OpenRouter"

    def _extra_headers(self) -> dict[str, str]:
        return {"HTTP-Referer": "https://github.com/corvid-cli/corvid", "X-Title": "corvid"}


class GitHubModelsProvider(OpenAICompatibleProvider):
    api_key_env = "GITHUB_TOKEN"
    model_env = "GITHUB_MODEL"
    endpoint_env = "GITHUB_MODELS_BASE_URL"
    default_model = "gpt-4o"
    default_endpoint = "https://models.inference.ai.azure.com/v1"
    display_name = "GitHub Models"


class AzureOpenAIProvider(OpenAICompatibleProvider):
    """Deployment-scoped URL, ``api-key`` header and an ``api-version`` query."""

    api_key_env = "AZURE_OPENAI_API_KEY"
    endpoint_env = "AZURE_OPENAI_ENDPOINT"
    display_name = "Azure OpenAI"

    def __init__(self, name: str, config: ProviderConfig | None = None, **kwargs: Any) -> None:
        super().__init__(name, config, **kwargs)
        self._deployment = (
            self._config.model or os.environ.get("AZURE_OPENAI_DEPLOYMENT") or "gpt-4o"
        )
        self._model = self._deployment
        self._api_version = os.environ.get("AZURE_API_VERSION", "2024-10-21")

    def missing_settings(self) -> list[str]:
        missing = super().missing_settings()
        if not self._endpoint:
            missing.append("AZURE_OPENAI_ENDPOINT")
        return missing

    def _headers(self) -> dict[str, str]:
        return {"Content-Type": "application/json", "api-key": self._api_key or ""}

    def _completions_url(self) -> str:
        return f"{self._endpoint}/openai/deployments/{self._deployment}/chat/completions"

    def _query_params(self) -> dict[str, str] | None:
        return {"api-version": self._api_version}

    async def get_models(self) -> list[str]:
        return [self._deployment]


class CustomProvider(OpenAICompatibleProvider):
    """Any OpenAI-compatible server. Both key and base URL must be set."""

    api_key_env = "CUSTOM_API_KEY"
    model_env = "CUSTOM_MODEL"
    endpoint_env = "CUSTOM_BASE_URL"
    default_model = "default"
    display_name = "Custom"

    def missing_settings(self) -> list[str]:
        missing = super().missing_settings()
        if not self._endpoint:
            missing.append("CUSTOM_BASE_URL")
        return missing
