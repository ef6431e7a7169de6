from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel


class UsageStats(BaseModel):
    """Token counters reported by the model provider for one turn."""

    input_tokens: int = 0
    output_tokens: int = 0
    cache_creation_input_tokens: int = 0
    cache_read_input_tokens: int = 0

    def add(self, other: UsageStats | None) -> None:
        if other is None:
            return
        self.input_tokens += other.input_tokens
        self.output_tokens += other.output_tokens
        self.cache_creation_input_tokens += other.cache_creation_input_tokens
        self.cache_read_input_tokens += other.cache_read_input_tokens


@dataclass(frozen=True)
class SystemStatus:
    subtype: str
    data: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ThinkingDelta:
    text: str


@dataclass(frozen=True)
class TextDelta:
    text: str


@dataclass(frozen=True)
class ToolUse:
    id: str
    name: str
    input: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ToolResult:
    tool_use_id: str
    content: Any = None
    is_error: bool = False


@dataclass(frozen=True)
class TurnResult:
    """Terminal agent event; ``result`` is the agent's summary text."""

    result: str = ""
    is_error: bool = False
    errors: tuple[str, ...] = ()
    usage: UsageStats | None = None


AgentEvent = SystemStatus | ThinkingDelta | TextDelta | ToolUse | ToolResult | TurnResult
