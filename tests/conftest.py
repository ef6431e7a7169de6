"""Shared test utilities and fixtures for agent-chat backend tests."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from types import SimpleNamespace

import pytest
import punq

from agent_chat.agents.base import RunOptions
from agent_chat.agents.events import AgentEvent, UsageStats
from agent_chat.core.settings import Settings
from agent_chat.services.chat_models import NEW_CHAT_TITLE, AgentConfig, ChatMessage, ChatSession
from agent_chat.services.errors import NotFoundError
from agent_chat.services.history_cache_store import SESSION_LIST_KEY

FIXED_NOW = datetime(2026, 2, 19, 12, 0, tzinfo=UTC)


def session_row(session_id: str = "chat-1", **overrides) -> dict[str, object]:
    row: dict[str, object] = {
        "id": session_id,
        "title": "New Chat",
        "agent_slug": None,
        "model": "gpt-5.2",
        "working_directory": None,
        "total_input_tokens": 0,
        "total_output_tokens": 0,
        "total_cache_creation_tokens": 0,
        "total_cache_read_tokens": 0,
        "created_at": FIXED_NOW,
        "updated_at": FIXED_NOW,
    }
    row.update(overrides)
    return row


class FakeConnection:
    """Connection handed out by ``FakeDatabaseService.transaction``."""

    def __init__(self, database: FakeDatabaseService) -> None:
        self._database = database

    async def fetchrow(self, query: str, *args):
        return await self._database.fetchrow(query, *args)

    async def execute(self, query: str, *args):
        return await self._database.execute(query, *args)


class FakeDatabaseService:
    """Shared fake DB service used at the external DB boundary in unit tests."""

    def __init__(self) -> None:
        self.fetchrow_calls: list[tuple[str, tuple]] = []
        self.fetch_calls: list[tuple[str, tuple]] = []
        self.execute_calls: list[tuple[str, tuple]] = []
        self.fetchrow_results: dict[str, object] = {}
        self.fetch_results: dict[str, list[dict[str, object]]] = {}
        self.execute_status = "UPDATE 1"
        self.transactions = 0

    async def connect(self) -> None:
        return None

    async def disconnect(self) -> None:
        return None

    async def fetchrow(self, query: str, *args):
        self.fetchrow_calls.append((query, args))
        for marker, result in self.fetchrow_results.items():
            if marker in query:
                return result
        return None

    async def fetch(self, query: str, *args):
        self.fetch_calls.append((query, args))
        for marker, result in self.fetch_results.items():
            if marker in query:
                return result
        return []

    async def execute(self, query: str, *args):
        self.execute_calls.append((query, args))
        return self.execute_status

    @asynccontextmanager
    async def transaction(self):
        self.transactions += 1
        yield FakeConnection(self)


class FakeChatCache:
    """Simple in-memory cache fake implementing chat cache protocol semantics."""

    def __init__(self) -> None:
        self.values: dict[str, object] = {}
        self.session_keys: dict[str, set[str]] = {}
        self.fail_deletes = False

    async def ping(self) -> bool:
        return True

    async def get_json(self, key: str):
        return self.values.get(key)

    async def set_json(self, key: str, payload, ttl_seconds: int, *, session_id: str | None = None) -> None:
        self.values[key] = payload
        if session_id is not None:
            self.session_keys.setdefault(session_id, set()).add(key)

    async def invalidate_session(self, session_id: str) -> None:
        if self.fail_deletes:
            raise ConnectionError("cache unavailable")
        self.values.pop(SESSION_LIST_KEY, None)
        for key in self.session_keys.pop(session_id, set()):
            self.values.pop(key, None)

    async def close(self) -> None:
        return None


class InMemoryChatHistory:
    """In-memory stand-in for the cached chat history service."""

    def __init__(self) -> None:
        self.sessions: dict[str, ChatSession] = {}
        self.messages: dict[str, list[ChatMessage]] = {}
        self.fail_metadata_updates = False
        self.fail_appends = False
        self._counter = 0

    async def create_session(
        self,
        *,
        session_id: str | None = None,
        agent_slug: str | None = None,
        model: str = "",
        working_directory: str | None = None,
    ) -> ChatSession:
        if session_id is None:
            self._counter += 1
            session_id = f"chat-{self._counter}"
        session = ChatSession(
            id=session_id,
            agent_slug=agent_slug,
            model=model,
            working_directory=working_directory,
        )
        self.sessions[session_id] = session
        self.messages[session_id] = []
        return session

    async def get_session(self, session_id: str) -> ChatSession | None:
        return self.sessions.get(session_id)

    async def list_sessions(self) -> list[ChatSession]:
        return list(self.sessions.values())

    async def delete_session(self, session_id: str) -> bool:
        self.messages.pop(session_id, None)
        return self.sessions.pop(session_id, None) is not None

    async def append_message(self, session_id: str, message: ChatMessage) -> int:
        if self.fail_appends:
            raise ConnectionError("database unavailable")
        if session_id not in self.sessions:
            raise NotFoundError("chat", session_id)
        self.messages[session_id].append(message)
        return len(self.messages[session_id])

    async def list_messages(self, session_id: str) -> list[ChatMessage]:
        return list(self.messages.get(session_id, []))

    async def update_session_metadata(
        self,
        session_id: str,
        *,
        title: str | None = None,
        usage: UsageStats | None = None,
    ) -> None:
        if self.fail_metadata_updates:
            raise ConnectionError("database unavailable")
        session = self.sessions[session_id]
        usage = usage or UsageStats()
        self.sessions[session_id] = session.model_copy(
            update={
                "title": title if title and session.title == NEW_CHAT_TITLE else session.title,
                "total_input_tokens": session.total_input_tokens + usage.input_tokens,
                "total_output_tokens": session.total_output_tokens + usage.output_tokens,
            }
        )


class FakeAgentStore:
    def __init__(self, agents: list[AgentConfig] | None = None) -> None:
        self.agents = {agent.slug: agent for agent in agents or []}

    async def get_agent(self, slug: str) -> AgentConfig | None:
        return self.agents.get(slug)


AgentScript = Callable[[str, RunOptions], AsyncIterator[AgentEvent]]


class ScriptedChatAgent:
    """Chat agent double that replays an async generator script per turn."""

    def __init__(self, script: AgentScript) -> None:
        self.script = script
        self.calls: list[tuple[str, RunOptions]] = []

    async def astream(self, message: str, *, options: RunOptions) -> AsyncIterator[AgentEvent]:
        self.calls.append((message, options))
        async for event in self.script(message, options):
            yield event


async def wait_until(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    async with asyncio.timeout(timeout):
        while not predicate():
            await asyncio.sleep(0)


@pytest.fixture
def fake_database_service() -> FakeDatabaseService:
    return FakeDatabaseService()


@pytest.fixture
def fake_chat_cache() -> FakeChatCache:
    return FakeChatCache()


@pytest.fixture
def history() -> InMemoryChatHistory:
    return InMemoryChatHistory()


@pytest.fixture
def test_settings() -> Settings:
    return Settings()


def build_test_request(container: punq.Container, *, headers: dict[str, str] | None = None):
    """Build a request-shaped object using a real punq container in app state."""

    return SimpleNamespace(
        app=SimpleNamespace(state=SimpleNamespace(container=container)),
        headers=headers or {},
    )


def build_test_container(bindings: dict[object, object]) -> punq.Container:
    """Create a punq container and bind protocol/service keys to test doubles."""

    container = punq.Container()
    for key, value in bindings.items():
        container.register(key, instance=value)
    return container
