from __future__ import annotations

from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Literal, Protocol

from agent_chat.agents.events import AgentEvent

ASK_USER_QUESTION_TOOL = "AskUserQuestion"
REQUEST_CANCELLED_MESSAGE = "request canceled"


@dataclass(frozen=True)
class PermissionResult:
    behavior: Literal["allow", "deny"]
    message: str = ""


PermissionHandler = Callable[[str, dict[str, Any]], Awaitable[PermissionResult]]


@dataclass
class RunOptions:
    """Per-turn agent invocation settings resolved from the chat session."""

    thread_id: str
    model: str
    system_prompt: str = ""
    thinking: str = "adaptive"
    working_directory: str | None = None
    allowed_tools: list[str] | None = None
    permission_handler: PermissionHandler | None = None


class ChatAgent(Protocol):
    """Contract for agents that stream normalized events for one turn."""

    def astream(self, message: str, *, options: RunOptions) -> AsyncIterator[AgentEvent]:
        """Stream agent events for a user message; the last event is a ``TurnResult``."""
