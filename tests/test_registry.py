"""Tests for the provider registry."""

import httpx
import pytest

from corvid.config import ProviderConfig
from corvid.core.llm import BUILTIN_PROVIDERS, build_default_registry
from corvid.core.llm.local import OllamaProvider
from corvid.core.llm.openai_compat import XAIProvider
from corvid.core.llm.retry import RetryPolicy
from corvid.errors import UnknownProviderError

FAST = RetryPolicy(max_attempts=1, initial_delay=0, max_delay=0)


@pytest.fixture
def registry():
    return build_default_registry()


class TestProviderRegistry:
    def test_builtin_names(self, registry):
        assert registry.names() == list(BUILTIN_PROVIDERS)
        assert "anthropic" in registry
        assert "nonexistent" not in registry

    def test_create_passes_config(self, registry):
        provider = registry.create("xai", ProviderConfig(api_key="k", model="grok-4"))
        assert isinstance(provider, XAIProvider)
        assert provider.name == "xai"
        assert provider.model == "grok-4"

    def test_unknown_provider(self, registry):
        with pytest.raises(UnknownProviderError) as exc_info:
            registry.create("nonexistent")
        message = str(exc_info.value)
        assert 'Unknown provider "nonexistent"' in message
        assert "xai" in message

    def test_register_custom_factory(self, registry):
        registry.register("local2", OllamaProvider)
        provider = registry.create("local2")
        assert isinstance(provider, OllamaProvider)
        assert provider.name == "local2"

    def test_default_provider_name(self, registry):
        assert registry.default_provider_name({}) == "ollama"
        assert registry.default_provider_name({"XAI_API_KEY": "k"}) == "xai"
        assert registry.default_provider_name({"CORVID_PROVIDER": "anthropic", "XAI_API_KEY": "k"}) == "anthropic"
        assert registry.default_provider_name({"CORVID_PROVIDER": "bogus"}) == "ollama"


class TestValidate:
    async def test_unknown_name(self, registry):
        healthy, issues = await registry.validate("bogus")
        assert not healthy
        assert issues == ['Provider "bogus" is not available']

    async def test_missing_credential(self, registry, monkeypatch):
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        healthy, issues = await registry.validate("openai")
        assert not healthy
        assert issues == ["OPENAI_API_KEY environment variable not set"]

    async def test_configured_keyed_provider_skips_health_check(self, registry):
        def handler(request):
            raise AssertionError("no request expected")

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        healthy, issues = await registry.validate(
            "openai", ProviderConfig(api_key="k"), client=client, retry=FAST
        )
        assert healthy
        assert issues == []

    async def test_local_service_unreachable(self, registry):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        healthy, issues = await registry.validate(
            "ollama", ProviderConfig(endpoint="http://ollama.test:11434"), client=client, retry=FAST
        )
        assert not healthy
        assert issues[0].startswith("Ollama service not reachable at http://ollama.test:11434")

    async def test_local_service_reachable(self, registry):
        client = httpx.AsyncClient(
            transport=httpx.MockTransport(lambda request: httpx.Response(200, json={"models": []}))
        )
        healthy, issues = await registry.validate("ollama", client=client, retry=FAST)
        assert healthy
