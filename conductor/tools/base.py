"""Base class for agent tools."""

from abc import ABC, abstractmethod
from typing import Any

_JSON_TYPES: dict[str, tuple[type, ...]] = {
    "string": (str,),
    "integer": (int,),
    "number": (int, float),
    "boolean": (bool,),
    "object": (dict,),
    "array": (list,),
}


class Tool(ABC):
    """
    A callable capability exposed to the model.

    Subclasses describe themselves with a name, a description and a JSON
    schema for their parameters, and implement ``execute``. Results are
    plain text fed back to the model.
    """

    toolset: str = "core"

    @property
    @abstractmethod
    def name(self) -> str:
        ...

    @property
    @abstractmethod
    def description(self) -> str:
        ...

    @property
    @abstractmethod
    def parameters(self) -> dict[str, Any]:
        ...

    @abstractmethod
    async def execute(self, **kwargs: Any) -> str:
        ...

    def is_available(self) -> bool:
        return True

    def to_schema(self) -> dict[str, Any]:
        """OpenAI function-calling definition."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }

    def validate_params(self, params: dict[str, Any]) -> list[str]:
        """Shallow check against the parameter schema. Returns error strings."""
        errors: list[str] = []
        schema = self.parameters or {}
        properties = schema.get("properties", {})
        for key in schema.get("required", []):
            if key not in params:
                errors.append(f"missing required parameter '{key}'")
        for key, value in params.items():
            prop = properties.get(key)
            if prop is None:
                continue
            expected = _JSON_TYPES.get(prop.get("type", ""))
            if expected is None:
                continue
            if isinstance(value, bool) and bool not in expected:
                errors.append(f"parameter '{key}' should be {prop['type']}")
            elif not isinstance(value, expected):
                errors.append(f"parameter '{key}' should be {prop['type']}")
        return errors
