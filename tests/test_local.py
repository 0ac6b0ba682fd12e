"""Tests for the local Ollama adapter."""

import json

import httpx
import pytest

from corvid.config import ProviderConfig
from corvid.core.llm.local import OllamaProvider
from corvid.core.llm.retry import RetryPolicy
from corvid.core.llm.types import ChunkType, FunctionDeclaration, Message, QueryOptions, ToolCallRequest
from corvid.errors import BackendProtocolError, TransportError

FAST = RetryPolicy(max_attempts=2, initial_delay=0, max_delay=0)

LIST_DIR = FunctionDeclaration(name="list_directory", description="List a directory")


def _provider(handler):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    config = ProviderConfig(endpoint="http://ollama.test:11434", model="llama3.2:latest")
    return OllamaProvider("ollama", config, client=client, retry=FAST)


def _ndjson(*objects):
    return "".join(json.dumps(o) + "\n" for o in objects).encode()


class TestOllamaProvider:
    def test_always_configured(self, monkeypatch):
        monkeypatch.delenv("OLLAMA_HOST", raising=False)
        provider = OllamaProvider("ollama")
        assert provider.is_configured()
        assert provider.endpoint == "http://localhost:11434"

    async def test_models_from_tags(self):
        def handler(request):
            assert request.url.path == "/api/tags"
            return httpx.Response(200, json={"models": [{"name": "llama3.2:latest"}, {"name": "qwen2.5-coder:7b"}]})

        provider = _provider(handler)
        assert await provider.get_models() == ["llama3.2:latest", "qwen2.5-coder:7b"]

    async def test_unreachable_service(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        provider = _provider(handler)
        with pytest.raises(TransportError, match="Ollama"):
            await provider.get_models()

    async def test_chat_with_native_tool_calls(self):
        seen = {}

        def handler(request):
            seen["body"] = json.loads(request.content)
            return httpx.Response(
                200,
                json={
                    "message": {
                        "role": "assistant",
                        "content": "",
                        "tool_calls": [
                            {"function": {"name": "list_directory", "arguments": {"path": "."}}}
                        ],
                    },
                    "done": True,
                    "prompt_eval_count": 30,
                    "eval_count": 7,
                },
            )

        history = [
            Message(role="system", content="sys"),
            Message(role="user", content="before"),
            Message(
                role="assistant",
                tool_calls=(ToolCallRequest(id="c0", name="read_file", arguments='{"file_path": "x"}'),),
            ),
            Message(role="tool", content="contents", tool_call_id="c0"),
            Message(role="user", content="list files"),
        ]
        provider = _provider(handler)
        result = await provider.query_with_tools("", [LIST_DIR], QueryOptions(messages=history))

        body = seen["body"]
        assert body["stream"] is False
        assert body["options"]["num_predict"] == 2048
        # Arguments go out as objects, the way Ollama expects them.
        assert body["messages"][2]["tool_calls"][0]["function"]["arguments"] == {"file_path": "x"}

        [call] = result.tool_calls
        assert call.id.startswith("call_")
        assert call.arguments == '{"path": "."}'
        assert result.content is None
        assert result.usage.total_tokens == 37

    async def test_error_field(self):
        provider = _provider(lambda request: httpx.Response(200, json={"error": "model not found"}))
        with pytest.raises(BackendProtocolError, match="model not found"):
            await provider.query("hi")

    async def test_wrong_shape_is_protocol_error(self):
        for body in ({"message": {"tool_calls": [None]}}, []):
            provider = _provider(lambda request, body=body: httpx.Response(200, json=body))
            with pytest.raises(BackendProtocolError, match="unexpected response format"):
                await provider.query("hi")

    async def test_tool_call_ids_unique_across_turns(self):
        body = {
            "message": {"content": "", "tool_calls": [{"function": {"name": "ls", "arguments": {}}}]},
            "done": True,
        }
        provider = _provider(lambda request: httpx.Response(200, json=body))
        first = await provider.query_with_tools("hi", [LIST_DIR])
        second = await provider.query_with_tools("hi", [LIST_DIR])
        assert first.tool_calls[0].id != second.tool_calls[0].id


class TestOllamaStreaming:
    async def test_ndjson_done_flag(self):
        body = _ndjson(
            {"message": {"role": "assistant", "content": "Hel"}, "done": False},
            {"message": {"role": "assistant", "content": "lo"}, "done": False},
            {"message": {"role": "assistant", "content": ""}, "done": True, "prompt_eval_count": 5, "eval_count": 2},
        )
        seen = {}

        def handler(request):
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, content=body)

        provider = _provider(handler)
        chunks = []
        result = await provider.query_with_tools_streaming("hi", [], None, chunks.append)

        assert seen["body"]["stream"] is True
        assert [c.type for c in chunks] == [ChunkType.CONTENT, ChunkType.CONTENT, ChunkType.DONE]
        assert result.content == "Hello"
        assert result.usage.total_tokens == 7

    async def test_generate_style_response_field(self):
        async def stream():
            yield b'{"response": "a", "do'
            yield b'ne": false}\n{"response": "b", "done": true}'

        provider = _provider(lambda request: httpx.Response(200, content=stream()))
        chunks = []
        result = await provider.query_with_tools_streaming("hi", [], None, chunks.append)
        assert result.content == "ab"
        assert sum(c.type is ChunkType.DONE for c in chunks) == 1

    async def test_streamed_tool_call(self):
        body = _ndjson(
            {
                "message": {
                    "role": "assistant",
                    "content": "",
                    "tool_calls": [{"function": {"name": "list_directory", "arguments": {"path": "."}}}],
                },
                "done": False,
            },
            {"message": {"role": "assistant", "content": ""}, "done": True},
        )
        provider = _provider(lambda request: httpx.Response(200, content=body))
        chunks = []
        result = await provider.query_with_tools_streaming("hi", [LIST_DIR], None, chunks.append)
        assert [c.type for c in chunks] == [ChunkType.TOOL_CALL_DELTA, ChunkType.DONE]
        assert result.tool_calls[0].name == "list_directory"
        assert result.tool_calls[0].parse_arguments() == {"path": "."}
