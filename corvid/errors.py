"""Error taxonomy shared by the provider layer and the tool scheduler."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from corvid.core.llm.types import ToolCallResult


class CorvidError(Exception):
    """Base class for all corvid errors."""


class ProviderError(CorvidError):
    """A provider call failed. Always names the backend."""

    def __init__(self, backend: str, message: str, status: int | None = None) -> None:
        self.backend = backend
        self.message = message
        self.status = status
        # Content streamed before the failure, when the adapter had any.
        self.partial: ToolCallResult | None = None
        super().__init__(str(self))

    def __str__(self) -> str:
        text = f"{self.backend}: {self.message}"
        if self.status is not None:
            text += f" (status {self.status})"
        return text


class ConfigurationError(ProviderError):
    """A required credential or setting is missing. Never retried."""

    def __init__(self, backend: str, variable: str, message: str | None = None) -> None:
        self.variable = variable
        super().__init__(
            backend,
            message or f"provider not configured. Set the {variable} environment variable",
        )


class TransportError(ProviderError):
    """Network failure or timeout talking to a backend."""


class BackendProtocolError(ProviderError):
    """Non-2xx response or a payload the adapter could not interpret."""

    @property
    def retryable(self) -> bool:
        return self.status is not None and (self.status == 429 or self.status >= 500)


class UnknownProviderError(CorvidError, KeyError):
    def __init__(self, name: str, available: list[str]) -> None:
        self.name = name
        self.available = available
        super().__init__(
            f'Unknown provider "{name}". Available providers: {", ".join(available)}'
        )

    def __str__(self) -> str:
        return self.args[0]


class CancellationError(CorvidError):
    """The turn was cancelled. Distinct from failure."""

    def __init__(self, reason: str | None = None) -> None:
        self.reason = reason or "cancelled"
        self.partial: ToolCallResult | None = None
        super().__init__(self.reason)


class ToolNotFoundError(CorvidError):
    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f'Tool "{name}" not found in registry.')


class ToolExecutionError(CorvidError):
    def __init__(self, name: str, message: str) -> None:
        self.name = name
        self.message = message
        super().__init__(f'Tool "{name}" failed: {message}')


class TurnInProgressError(CorvidError):
    """A new turn or batch was submitted while the previous one is still running."""


class CheckpointNotFoundError(CorvidError, KeyError):
    def __init__(self, tag: str) -> None:
        self.tag = tag
        super().__init__(f'No checkpoint named "{tag}".')

    def __str__(self) -> str:
        return self.args[0]
