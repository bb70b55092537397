"""Client-facing stream events."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class EventType(str, Enum):
    TEXT = "text"
    TOOL_CALL = "tool_call"
    WARNING = "warning"
    ERROR = "error"
    END = "end"


@dataclass(frozen=True)
class StreamEvent:
    """One event on a turn's stream. END and ERROR are terminal."""
    type: EventType
    content: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def done(self) -> bool:
        return self.type in (EventType.END, EventType.ERROR)

    @property
    def stage(self) -> str | None:
        return self.metadata.get("stage")

    @classmethod
    def text(cls, content: str, stage: str | None = None) -> "StreamEvent":
        return cls(EventType.TEXT, content, {"stage": stage} if stage else {})

    @classmethod
    def tool_call(cls, name: str, arguments: dict[str, Any] | None = None) -> "StreamEvent":
        return cls(EventType.TOOL_CALL, f"Calling tool: {name}", {"tool": name, "arguments": arguments or {}})

    @classmethod
    def warning(cls, content: str) -> "StreamEvent":
        return cls(EventType.WARNING, content)

    @classmethod
    def error(cls, cause: str | BaseException) -> "StreamEvent":
        message = str(cause) or type(cause).__name__
        return cls(EventType.ERROR, message)

    @classmethod
    def end(cls, content: str = "", stage: str | None = None) -> "StreamEvent":
        return cls(EventType.END, content, {"stage": stage} if stage else {})

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "content": self.content,
            "done": self.done,
            "metadata": dict(self.metadata),
        }
