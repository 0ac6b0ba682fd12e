"""LLM provider subpackage: uniform contract, adapters and the registry."""

from corvid.core.llm.types import (
    ChunkType,
    FunctionDeclaration,
    Message,
    QueryOptions,
    StreamCallback,
    StreamChunk,
    ToolCallRequest,
    ToolCallResult,
    Usage,
)
from corvid.core.llm.base import Provider, StreamingProvider
from corvid.core.llm.anthropic import AnthropicProvider
from corvid.core.llm.google import GoogleProvider
from corvid.core.llm.local import OllamaProvider
from corvid.core.llm.openai_compat import (
    AzureOpenAIProvider,
    CustomProvider,
    GitHubModelsProvider,
    GroqProvider,
    OpenAICompatibleProvider,
    OpenAIProvider,
    OpenRouterProvider,
    XAIProvider,
)
from corvid.core.llm.registry import ProviderRegistry

__all__ = [
    "ChunkType",
    "FunctionDeclaration",
    "Message",
    "QueryOptions",
    "StreamCallback",
    "StreamChunk",
    "ToolCallRequest",
    "ToolCallResult",
    "Usage",
    "Provider",
    "StreamingProvider",
    "OpenAICompatibleProvider",
    "AnthropicProvider",
    "GoogleProvider",
    "OllamaProvider",
    "ProviderRegistry",
    "build_default_registry",
]

BUILTIN_PROVIDERS: dict[str, type[Provider]] = {
    "xai": XAIProvider,
    "openai": OpenAIProvider,
    "anthropic": AnthropicProvider,
    "google": GoogleProvider,
    "groq": GroqProvider,
    "openrouter": OpenRouterProvider,
    "github": GitHubModelsProvider,
    "azure": AzureOpenAIProvider,
    "custom": CustomProvider,
    "ollama": OllamaProvider,
}


def build_default_registry() -> ProviderRegistry:
    """Registry holding every built-in backend."""
    registry = ProviderRegistry()
    for name, cls in BUILTIN_PROVIDERS.items():
        registry.register(name, cls)
    return registry
