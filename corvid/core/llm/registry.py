"""Explicit name -> factory registry for backend adapters."""

from __future__ import annotations

import os
from typing import Any, Callable, Mapping

from corvid.config import ProviderConfig
from corvid.core.llm.base import Provider
from corvid.errors import ProviderError, UnknownProviderError
from corvid.utils.logging import get_logger

log = get_logger(__name__)

ProviderFactory = Callable[..., Provider]


class ProviderRegistry:
    """Built once at startup and passed to whoever needs a provider."""

    def __init__(self) -> None:
        self._factories: dict[str, ProviderFactory] = {}

    def register(self, name: str, factory: ProviderFactory) -> None:
        """``factory(name, config, **kwargs)`` must return a Provider."""
        self._factories[name] = factory

    def names(self) -> list[str]:
        return list(self._factories)

    def __contains__(self, name: object) -> bool:
        return name in self._factories

    def create(self, name: str, config: ProviderConfig | None = None, **kwargs: Any) -> Provider:
        factory = self._factories.get(name)
        if factory is None:
            raise UnknownProviderError(name, self.names())
        return factory(name, config, **kwargs)

    def default_provider_name(self, environ: Mapping[str, str] | None = None) -> str:
        """CORVID_PROVIDER when registered, else xai when keyed, else ollama."""
        env = os.environ if environ is None else environ
        preferred = env.get("CORVID_PROVIDER")
        if preferred and preferred in self:
            return preferred
        if env.get("XAI_API_KEY"):
            return "xai"
        return "ollama"

    async def validate(
        self, name: str, config: ProviderConfig | None = None, **kwargs: Any
    ) -> tuple[bool, list[str]]:
        """Return ``(healthy, issues)`` for a provider without generating anything."""
        if name not in self:
            return False, [f'Provider "{name}" is not available']

        issues: list[str] = []
        provider = self.create(name, config, **kwargs)
        try:
            for variable in provider.missing_settings():
                issues.append(f"{variable} environment variable not set")
            if not issues and provider.api_key_env is None:
                # Keyless backends are only usable when the service answers.
                try:
                    await provider.get_models()
                except ProviderError as e:
                    issues.append(
                        f"{provider.display_name} service not reachable at "
                        f"{provider.endpoint} ({e.message})"
                    )
        finally:
            await provider.close()

        log.debug("provider_validated", provider=name, healthy=not issues, issues=issues)
        return not issues, issues
