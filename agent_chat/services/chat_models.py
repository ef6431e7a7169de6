from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field

NEW_CHAT_TITLE = "New Chat"


class SessionStatus(str, Enum):
    IDLE = "idle"
    STREAMING = "streaming"
    AWAITING_PERMISSION = "awaiting_permission"
    AWAITING_INPUT = "awaiting_input"


class ToolResultPayload(BaseModel):
    """Result attached to a tool_use block once the tool has run."""

    content: Any = None
    is_error: bool = False


class ThinkingBlock(BaseModel):
    type: Literal["thinking"] = "thinking"
    text: str = ""


class TextBlock(BaseModel):
    type: Literal["text"] = "text"
    text: str = ""


class ToolUseBlock(BaseModel):
    type: Literal["tool_use"] = "tool_use"
    id: str
    name: str
    input: dict[str, Any] = Field(default_factory=dict)
    result: ToolResultPayload | None = None


MessageBlock = Annotated[ThinkingBlock | TextBlock | ToolUseBlock, Field(discriminator="type")]


def utc_now() -> datetime:
    return datetime.now(UTC)


class ChatMessage(BaseModel):
    role: Literal["user", "assistant"]
    content: str
    blocks: list[MessageBlock] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=utc_now)


class ChatSession(BaseModel):
    """Static configuration and metadata of a chat session."""

    id: str
    title: str = NEW_CHAT_TITLE
    agent_slug: str | None = None
    model: str = ""
    working_directory: str | None = None
    status: SessionStatus = SessionStatus.IDLE
    total_input_tokens: int = 0
    total_output_tokens: int = 0
    total_cache_creation_tokens: int = 0
    total_cache_read_tokens: int = 0
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class AgentConfig(BaseModel):
    """Read-only agent definition consumed when a turn starts."""

    slug: str
    name: str = ""
    model: str = ""
    thinking: Literal["adaptive", "enabled", "disabled"] = "adaptive"
    system_prompt: str = ""
    built_in_tools: list[str] = Field(default_factory=list)


def truncate_title(text: str, max_chars: int) -> str:
    """Derive a session title from the first user message."""
    text = " ".join(text.split())
    if len(text) <= max_chars:
        return text
    return text[:max_chars] + "..."
