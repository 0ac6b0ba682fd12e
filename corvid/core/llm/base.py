"""Provider abstract base class and the shared HTTP plumbing for adapters."""

from __future__ import annotations

import asyncio
import os
import re
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Sequence, TypeVar

import httpx

from corvid.config import ProviderConfig
from corvid.core.budget import fit_to_budget, token_limit
from corvid.core.cancel import CancelToken
from corvid.core.llm.retry import DEFAULT_RETRY, METADATA_RETRY, RetryPolicy, retry_with_backoff
from corvid.core.llm.streaming import STREAM_END, Frame, StreamState, iter_frames
from corvid.core.llm.types import (
    ChunkType,
    FunctionDeclaration,
    Message,
    QueryOptions,
    StreamCallback,
    StreamChunk,
    ToolCallResult,
)
from corvid.errors import (
    BackendProtocolError,
    CancellationError,
    ConfigurationError,
    ProviderError,
    TransportError,
)
from corvid.utils.logging import get_logger

log = get_logger(__name__)
T = TypeVar("T")

GENERATION_TIMEOUT = 60.0
METADATA_TIMEOUT = 10.0
STREAM_DEADLINE = 600.0

# Raised when a well-formed JSON body does not have the expected structure.
SHAPE_ERRORS = (KeyError, IndexError, TypeError, AttributeError, ValueError)

DEFAULT_SYSTEM_PROMPT = "You are an AI assistant helping with software development tasks."


def sort_model_ids(ids: Sequence[str]) -> list[str]:
    """Descending sort that compares digit runs numerically."""

    def key(value: str) -> list[tuple[int, Any]]:
        return [
            (0, int(part)) if part.isdigit() else (1, part.lower())
            for part in re.split(r"(\d+)", value)
            if part
        ]

    return sorted(ids, key=key, reverse=True)


def _error_message(response: httpx.Response) -> str:
    """Upstream error text without leaking the backend's payload shape."""
    try:
        data = response.json()
    except ValueError:
        data = None
    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, dict) and isinstance(error.get("message"), str):
            return error["message"]
        if isinstance(error, str):
            return error
        if isinstance(data.get("message"), str):
            return data["message"]
    elif isinstance(data, list) and data and isinstance(data[0], dict):
        error = data[0].get("error")
        if isinstance(error, dict) and isinstance(error.get("message"), str):
            return error["message"]
    return response.reason_phrase or f"HTTP {response.status_code}"


class Provider(ABC):
    """Capability contract every backend adapter implements."""

    #: Environment variables consulted when ProviderConfig leaves a field unset.
    api_key_env: str | None = None
    model_env: str | None = None
    endpoint_env: str | None = None
    default_model: str = ""
    default_endpoint: str = ""
    display_name: str = ""

    def __init__(
        self,
        name: str,
        config: ProviderConfig | None = None,
        *,
        client: httpx.AsyncClient | None = None,
        retry: RetryPolicy | None = None,
    ) -> None:
        self.name = name
        self._config = config or ProviderConfig()
        self._api_key = self._config.api_key or self._env(self.api_key_env)
        self._model = self._config.model or self._env(self.model_env) or self.default_model
        endpoint = self._config.endpoint or self._env(self.endpoint_env) or self.default_endpoint
        self._endpoint = endpoint.rstrip("/")
        self._timeout = self._config.timeout or GENERATION_TIMEOUT
        self._retry = retry or DEFAULT_RETRY
        self._metadata_retry = METADATA_RETRY if retry is None else retry
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient()
        if not self.display_name:
            self.display_name = name.upper()

    @property
    def model(self) -> str:
        return self._model

    @property
    def endpoint(self) -> str:
        return self._endpoint

    # ------------------------------------------------------------------
    # Contract
    # ------------------------------------------------------------------

    def is_configured(self) -> bool:
        """True when nothing required is missing. Never touches the network."""
        return not self.missing_settings()

    def missing_settings(self) -> list[str]:
        """Environment variables that must be set before this backend works."""
        if self.api_key_env and not self._api_key:
            return [self.api_key_env]
        return []

    @abstractmethod
    async def get_models(self) -> list[str]: ...

    async def query(self, prompt: str, options: QueryOptions | None = None) -> str:
        result = await self.query_with_tools(prompt, [], options)
        return result.content or ""

    @abstractmethod
    async def query_with_tools(
        self,
        prompt: str,
        tools: Sequence[FunctionDeclaration],
        options: QueryOptions | None = None,
    ) -> ToolCallResult: ...

    async def query_with_tools_streaming(
        self,
        prompt: str,
        tools: Sequence[FunctionDeclaration],
        options: QueryOptions | None,
        on_chunk: StreamCallback,
        cancel_token: CancelToken | None = None,
    ) -> ToolCallResult:
        """Default: one non-streaming call replayed as content then done."""
        call = self.query_with_tools(prompt, tools, options)
        result = await (cancel_token.race(call) if cancel_token else call)
        if result.content:
            on_chunk(StreamChunk(type=ChunkType.CONTENT, content=result.content))
        on_chunk(StreamChunk(type=ChunkType.DONE))
        return result

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    # ------------------------------------------------------------------
    # Shared helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _env(name: str | None) -> str | None:
        return os.environ.get(name) if name else None

    def _require_configured(self) -> None:
        missing = self.missing_settings()
        if missing:
            raise ConfigurationError(self.display_name, missing[0])

    def _prepare_messages(self, prompt: str, options: QueryOptions) -> list[Message]:
        """The turn list to send, truncated to the model's token budget."""
        if options.messages is not None:
            messages = list(options.messages)
        else:
            messages = [
                Message(role="system", content=options.system_prompt or DEFAULT_SYSTEM_PROMPT),
                Message(role="user", content=prompt),
            ]
        model = options.model or self._model
        budget = options.token_budget or token_limit(model)
        return fit_to_budget(messages, budget, reserve=options.max_tokens)

    def _headers(self) -> dict[str, str]:
        return {"Content-Type": "application/json"}

    def _map_transport_error(self, error: httpx.RequestError) -> TransportError:
        if isinstance(error, httpx.TimeoutException):
            return TransportError(self.display_name, "request timed out")
        return TransportError(self.display_name, f"network error: {error}")

    async def _guarded(
        self, func: Callable[[], Awaitable[T]], cancel_token: CancelToken | None
    ) -> T:
        return await (cancel_token.race(func()) if cancel_token else func())

    async def _request_json(
        self,
        method: str,
        url: str,
        *,
        body: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        params: dict[str, str] | None = None,
        timeout: float | None = None,
        retry: RetryPolicy | None = None,
        cancel_token: CancelToken | None = None,
    ) -> Any:
        async def attempt() -> Any:
            try:
                response = await self._client.request(
                    method,
                    url,
                    json=body,
                    headers=headers or self._headers(),
                    params=params,
                    timeout=timeout or self._timeout,
                )
            except httpx.RequestError as e:
                raise self._map_transport_error(e) from e
            if response.status_code >= 400:
                raise BackendProtocolError(
                    self.display_name, _error_message(response), status=response.status_code
                )
            try:
                return response.json()
            except ValueError as e:
                raise BackendProtocolError(
                    self.display_name, "malformed JSON response", status=response.status_code
                ) from e

        return await retry_with_backoff(
            lambda: self._guarded(attempt, cancel_token),
            retry or self._retry,
            backend=self.display_name,
            cancel_token=cancel_token,
        )

    async def _get_metadata(self, url: str, **kwargs: Any) -> Any:
        return await self._request_json(
            "GET", url, timeout=METADATA_TIMEOUT, retry=self._metadata_retry, **kwargs
        )

    async def _open_stream(
        self,
        url: str,
        body: dict[str, Any],
        headers: dict[str, str],
        params: dict[str, str] | None = None,
    ) -> httpx.Response:
        try:
            request = self._client.build_request(
                "POST", url, json=body, headers=headers, params=params, timeout=self._timeout
            )
            response = await self._client.send(request, stream=True)
        except httpx.RequestError as e:
            raise self._map_transport_error(e) from e
        if response.status_code >= 400:
            await response.aread()
            await response.aclose()
            raise BackendProtocolError(
                self.display_name, _error_message(response), status=response.status_code
            )
        return response


    def _decode(self, data: Any, parse: Callable[[Any], T]) -> T:
        """Apply ``parse`` to a decoded body. A body of the wrong shape becomes
        BackendProtocolError instead of escaping as KeyError and friends."""
        try:
            return parse(data)
        except SHAPE_ERRORS as e:
            log.warning("response_shape_invalid", backend=self.display_name, error=repr(e))
            raise BackendProtocolError(self.display_name, "unexpected response format") from e


class StreamingProvider(Provider):
    """Provider whose backend streams JSON frames (SSE or NDJSON) over HTTP."""

    #: Wall-clock limit for a whole streamed call. The HTTP timeout only bounds
    #: each read, so a backend that keeps trickling bytes needs this too.
    stream_deadline: float = STREAM_DEADLINE

    async def _stream(
        self,
        url: str,
        body: dict[str, Any],
        on_chunk: StreamCallback,
        cancel_token: CancelToken | None,
        *,
        headers: dict[str, str] | None = None,
        params: dict[str, str] | None = None,
        framing: str = "sse",
    ) -> ToolCallResult:
        """Open a stream (retrying), feed frames to ``_handle_frame`` in arrival
        order, and emit exactly one done chunk on success."""
        state = StreamState(on_chunk=on_chunk)

        async def consume() -> None:
            response = await retry_with_backoff(
                lambda: self._guarded(
                    lambda: self._open_stream(url, body, headers or self._headers(), params),
                    cancel_token,
                ),
                self._retry,
                backend=self.display_name,
                cancel_token=cancel_token,
            )
            try:
                async for frame in iter_frames(response.aiter_text(), framing):
                    if frame is STREAM_END or self._apply_frame(frame, state):
                        break
            except httpx.RequestError as e:
                raise self._map_transport_error(e) from e
            finally:
                await response.aclose()

        try:
            await asyncio.wait_for(self._guarded(consume, cancel_token), self.stream_deadline)
        except asyncio.TimeoutError as e:
            error = TransportError(
                self.display_name, f"stream exceeded the {self.stream_deadline:g}s deadline"
            )
            error.partial = state.to_result()
            raise error from e
        except (ProviderError, CancellationError) as e:
            e.partial = state.to_result()
            raise

        state.emit_done()
        result = state.to_result()
        log.debug(
            "stream_complete",
            backend=self.display_name,
            content_chars=len(result.content or ""),
            tool_calls=len(result.tool_calls),
        )
        return result

    def _apply_frame(self, frame: Frame, state: StreamState) -> bool:
        try:
            return self._handle_frame(frame, state)
        except SHAPE_ERRORS as e:
            # One bad frame never aborts the stream.
            log.warning("stream_frame_skipped", backend=self.display_name, error=repr(e))
            return False

    def _frame_error(self, error: Any) -> BackendProtocolError:
        """Error reported inside a stream, whatever shape the backend gave it."""
        if isinstance(error, dict):
            status = error.get("code")
            return BackendProtocolError(
                self.display_name,
                str(error.get("message") or "stream error"),
                status=status if isinstance(status, int) else None,
            )
        return BackendProtocolError(self.display_name, str(error or "stream error"))

    @abstractmethod
    def _handle_frame(self, frame: Frame, state: StreamState) -> bool:
        """Apply one decoded frame. Return True when it signals end of stream."""
