from __future__ import annotations

from collections.abc import Sequence
from contextlib import AbstractAsyncContextManager
from typing import TYPE_CHECKING, Any, Protocol

import asyncpg

from agent_chat.agents.events import UsageStats
from agent_chat.services.chat_models import AgentConfig, ChatMessage, ChatSession

if TYPE_CHECKING:
    from agent_chat.services.session_mediator import SessionMediator


class DatabaseServiceProtocol(Protocol):
    """Abstraction for async SQL execution against the chat Postgres store."""

    async def connect(self) -> None:
        """Initialize underlying DB resources before request handling begins."""

    async def disconnect(self) -> None:
        """Release open DB resources during application shutdown."""

    async def fetchrow(self, query: str, *args: object) -> asyncpg.Record | None:
        """Execute a query and return a single row, or ``None`` when no row matches."""

    async def fetch(self, query: str, *args: object) -> Sequence[asyncpg.Record]:
        """Execute a query and return all matching rows."""

    async def execute(self, query: str, *args: object) -> str:
        """Execute a write statement and return the backend status string."""

    def transaction(self) -> AbstractAsyncContextManager[asyncpg.Connection]:
        """Acquire a connection wrapped in a transaction for multi-statement writes."""


class ChatCacheProtocol(Protocol):
    """JSON cache contract used for chat history reads."""

    async def ping(self) -> bool:
        """Probe cache availability during startup checks."""

    async def get_json(self, key: str) -> Any | None:
        """Return the decoded value for ``key``, or ``None`` on miss."""

    async def set_json(self, key: str, payload: Any, ttl_seconds: int, *, session_id: str | None = None) -> None:
        """Store a JSON-serializable value with TTL, tied to ``session_id`` when given."""

    async def invalidate_session(self, session_id: str) -> None:
        """Drop the session list and every value tied to ``session_id``."""

    async def close(self) -> None:
        """Release underlying network resources during shutdown."""


class ChatStoreProtocol(Protocol):
    """Persistence contract for chat sessions and their ordered message history."""

    async def ensure_schema(self) -> None:
        """Create chat tables when they do not exist yet."""

    async def create_session(
        self,
        *,
        session_id: str | None = None,
        agent_slug: str | None = None,
        model: str = "",
        working_directory: str | None = None,
    ) -> ChatSession:
        """Insert a new session titled ``New Chat`` and return it."""

    async def get_session(self, session_id: str) -> ChatSession | None:
        """Load session metadata, or ``None`` when it does not exist."""

    async def list_sessions(self) -> list[ChatSession]:
        """Return sessions ordered by most recently updated."""

    async def delete_session(self, session_id: str) -> bool:
        """Delete a session and its messages; returns whether a row was removed."""

    async def append_message(self, session_id: str, message: ChatMessage) -> int:
        """Append a message atomically and return its per-session sequence number."""

    async def list_messages(self, session_id: str) -> list[ChatMessage]:
        """Return the session's messages in ascending sequence order."""

    async def update_session_metadata(
        self,
        session_id: str,
        *,
        title: str | None = None,
        usage: UsageStats | None = None,
    ) -> None:
        """Add token usage to the running totals; ``title`` replaces only the placeholder title."""


class AgentStoreProtocol(Protocol):
    """Read-only lookup of agent definitions."""

    async def get_agent(self, slug: str) -> AgentConfig | None:
        """Return the agent with ``slug``, or ``None`` when it is not defined."""


class ChatHistoryProtocol(Protocol):
    """Cached façade over chat persistence used by the API and the turn mediator."""

    async def create_session(
        self,
        *,
        session_id: str | None = None,
        agent_slug: str | None = None,
        model: str = "",
        working_directory: str | None = None,
    ) -> ChatSession:
        """Create a session and invalidate cached listings."""

    async def get_session(self, session_id: str) -> ChatSession | None:
        """Load session metadata through the cache."""

    async def list_sessions(self) -> list[ChatSession]:
        """List sessions through the cache."""

    async def delete_session(self, session_id: str) -> bool:
        """Delete a session and drop its cached reads."""

    async def append_message(self, session_id: str, message: ChatMessage) -> int:
        """Persist a message and drop the session's cached reads."""

    async def list_messages(self, session_id: str) -> list[ChatMessage]:
        """Return ordered history through the cache."""

    async def update_session_metadata(
        self,
        session_id: str,
        *,
        title: str | None = None,
        usage: UsageStats | None = None,
    ) -> None:
        """Persist metadata changes and drop the session's cached reads."""


class ChatServiceProtocol(Protocol):
    """High-level chat orchestration contract used by HTTP/SSE endpoints."""

    async def create_session(
        self,
        *,
        agent_slug: str | None = None,
        working_directory: str | None = None,
        model: str | None = None,
    ) -> ChatSession:
        """Create a session after validating the referenced agent."""

    async def list_sessions(self) -> list[ChatSession]:
        """List sessions with their live turn status."""

    async def get_session_with_messages(self, session_id: str) -> tuple[ChatSession, list[ChatMessage]]:
        """Return a session with live status and its ordered history."""

    async def delete_session(self, session_id: str) -> None:
        """Cancel any active turn and delete the session."""

    async def send_message(self, session_id: str, content: str) -> SessionMediator:
        """Start a turn and return the mediator whose events the caller consumes."""

    def provide_input(self, session_id: str, answer: str) -> None:
        """Resolve the session's pending input request."""

    def respond_permission(self, session_id: str, allow: bool) -> None:
        """Resolve the session's pending permission request."""

    async def abort(self, session_id: str) -> bool:
        """Cancel the session's active turn; returns whether anything was cancelled."""

    @property
    def active_turns(self) -> int:
        """Number of turns currently in flight across all sessions."""
