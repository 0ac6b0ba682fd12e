"""Base tool interface."""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Literal

from corvid.core.cancel import CancelToken
from corvid.core.llm.types import FunctionDeclaration

# Python types accepted for each JSON Schema primitive.
_JSON_TYPES: dict[str, tuple[type, ...]] = {
    "string": (str,),
    "integer": (int,),
    "number": (int, float),
    "boolean": (bool,),
    "array": (list,),
    "object": (dict,),
}


@dataclass
class ToolResult:
    success: bool
    # Text, a list of content parts, or an already-wrapped functionResponse part.
    llm_content: Any = ""
    display: str = ""
    error: str = ""


@dataclass(frozen=True)
class ToolConfirmation:
    """What the user is asked to approve before a call runs."""

    kind: Literal["edit", "exec", "info"]
    title: str
    details: str = ""
    # Calls sharing a key are covered by one "accept always" decision.
    approval_key: str = ""


class BaseTool(ABC):
    @property
    @abstractmethod
    def name(self) -> str: ...

    @property
    @abstractmethod
    def description(self) -> str: ...

    @property
    @abstractmethod
    def parameters(self) -> dict[str, Any]:
        """JSON Schema for tool parameters."""
        ...

    @property
    def mutates_filesystem(self) -> bool:
        """True when running the tool can change files. Triggers a checkpoint."""
        return False

    def validate_params(self, params: dict[str, Any]) -> str | None:
        """Return an error message, or None when ``params`` look valid."""
        for key in self.parameters.get("required", []):
            if key not in params:
                return f"Missing required parameter: {key}"
        properties = self.parameters.get("properties", {})
        for key, value in params.items():
            expected = properties.get(key, {}).get("type")
            accepted = _JSON_TYPES.get(expected) if expected else None
            if accepted is None:
                continue
            # bool is an int subclass; only accept it where a boolean is wanted.
            if isinstance(value, bool) and expected != "boolean":
                return f"Parameter {key} must be of type {expected}"
            if not isinstance(value, accepted):
                return f"Parameter {key} must be of type {expected}"
        return None

    def get_description(self, params: dict[str, Any]) -> str:
        return f"{self.name} {json.dumps(params)}"

    async def should_confirm_execute(
        self, params: dict[str, Any], cancel_token: CancelToken
    ) -> ToolConfirmation | None:
        return None

    @abstractmethod
    async def execute(self, params: dict[str, Any], cancel_token: CancelToken) -> ToolResult: ...

    def to_declaration(self) -> FunctionDeclaration:
        return FunctionDeclaration(
            name=self.name, description=self.description, parameters=self.parameters
        )
