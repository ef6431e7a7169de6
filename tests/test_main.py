"""Application wiring tests: module import, route table and lifespan start-up/shutdown."""

from __future__ import annotations

import asyncio

import httpx
import pytest

from agent_chat import main
from agent_chat.agents.events import TurnResult
from agent_chat.services.contracts import (
    ChatCacheProtocol,
    ChatHistoryProtocol,
    ChatServiceProtocol,
    DatabaseServiceProtocol,
)
from agent_chat.services.session_mediator import TurnStatus
from tests.conftest import FakeChatCache, FakeDatabaseService, InMemoryChatHistory, ScriptedChatAgent, wait_until


async def _waiting_script(message, options):
    await asyncio.Event().wait()
    yield TurnResult(result="unreachable")


class _ClosableAgent(ScriptedChatAgent):
    def __init__(self) -> None:
        super().__init__(_waiting_script)
        self.closed = False

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def wired_app(monkeypatch):
    database = FakeDatabaseService()
    cache = FakeChatCache()
    history = InMemoryChatHistory()
    agent = _ClosableAgent()
    real_build_container = main.build_container

    def build_container(settings):
        container = real_build_container(settings)
        container.register(DatabaseServiceProtocol, instance=database)
        container.register(ChatCacheProtocol, instance=cache)
        container.register(ChatHistoryProtocol, instance=history)
        return container

    async def build_chat_agent(settings):
        return agent

    monkeypatch.setattr(main, "build_container", build_container)
    monkeypatch.setattr(main, "build_chat_agent", build_chat_agent)
    return database, history, agent


def test_app_exposes_health_and_chat_routes() -> None:
    paths = {route.path for route in main.app.routes}

    assert {"/healthz", "/readyz", "/api/chats", "/api/chats/{chat_id}/messages", "/api/chats/{chat_id}/abort"} <= paths


@pytest.mark.asyncio
async def test_lifespan_wires_services_and_cancels_turns_on_shutdown(wired_app) -> None:
    database, history, agent = wired_app

    async with main.lifespan(main.app):
        async with httpx.AsyncClient(transport=httpx.ASGITransport(app=main.app), base_url="http://test") as client:
            created = await client.post("/api/chats", json={})
            service = main.app.state.container.resolve(ChatServiceProtocol)
            mediator = await service.send_message(created.json()["id"], "wait for me")
            await wait_until(lambda: len(agent.calls) == 1)
            ready = await client.get("/readyz")

    assert created.status_code == 201
    assert ready.json() == {"status": "ok", "active_turns": 1}
    assert await mediator.wait() is TurnStatus.CANCELLED
    assert agent.closed is True
    assert any("CREATE TABLE IF NOT EXISTS chat_sessions" in query for query, _ in database.execute_calls)
    assert [message.role for message in history.messages[created.json()["id"]]] == ["user"]
