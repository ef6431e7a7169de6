from __future__ import annotations

import punq
from fastapi import Request

from agent_chat.agents.base import ChatAgent
from agent_chat.core.settings import Settings
from agent_chat.services.chat_history_service import ChatHistoryService
from agent_chat.services.chat_service import ChatService
from agent_chat.services.chat_store import AgentStore, ChatStore
from agent_chat.services.contracts import (
    AgentStoreProtocol,
    ChatCacheProtocol,
    ChatHistoryProtocol,
    ChatServiceProtocol,
    ChatStoreProtocol,
    DatabaseServiceProtocol,
)
from agent_chat.services.database_service import DatabaseService
from agent_chat.services.history_cache_store import RedisChatCacheStore
from agent_chat.services.session_registry import SessionRegistry


def build_container(settings: Settings) -> punq.Container:
    container = punq.Container()
    container.register(Settings, instance=settings)

    container.register(
        DatabaseServiceProtocol,
        factory=lambda: DatabaseService(
            dsn=settings.chat_db_dsn,
            reshape_schema_query=settings.reshape_schema_query,
            min_size=settings.chat_db_pool_min_size,
            max_size=settings.chat_db_pool_max_size,
        ),
        scope=punq.Scope.singleton,
    )
    container.register(
        ChatCacheProtocol,
        factory=lambda: RedisChatCacheStore(
            redis_url=settings.chat_cache_redis_url,
            key_prefix=settings.chat_cache_key_prefix,
            jitter_max_seconds=settings.chat_cache_jitter_max_seconds,
        ),
        scope=punq.Scope.singleton,
    )
    container.register(ChatStoreProtocol, factory=ChatStore, scope=punq.Scope.singleton)
    container.register(AgentStoreProtocol, factory=AgentStore, scope=punq.Scope.singleton)
    container.register(ChatHistoryProtocol, factory=ChatHistoryService, scope=punq.Scope.singleton)
    container.register(SessionRegistry, factory=SessionRegistry, scope=punq.Scope.singleton)
    container.register(ChatServiceProtocol, factory=ChatService, scope=punq.Scope.singleton)

    return container


def register_chat_agent(container: punq.Container, agent: ChatAgent) -> None:
    container.register(ChatAgent, instance=agent)


def get_container(request: Request) -> punq.Container:
    return request.app.state.container
