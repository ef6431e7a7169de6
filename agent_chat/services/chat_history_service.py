from __future__ import annotations

import logging

from pydantic import ValidationError

from agent_chat.agents.events import UsageStats
from agent_chat.core.settings import Settings
from agent_chat.services.chat_models import ChatMessage, ChatSession
from agent_chat.services.contracts import ChatCacheProtocol, ChatStoreProtocol
from agent_chat.services.history_cache_store import SESSION_LIST_KEY, messages_key, session_key

logger = logging.getLogger(__name__)

_NEGATIVE_CACHE_MARKER = "__not_found__"


class ChatHistoryService:
    """Cache-through reads and invalidating writes for chat sessions and messages."""

    def __init__(self, store: ChatStoreProtocol, cache: ChatCacheProtocol, settings: Settings) -> None:
        self._store = store
        self._cache = cache
        self._settings = settings

    async def create_session(
        self,
        *,
        session_id: str | None = None,
        agent_slug: str | None = None,
        model: str = "",
        working_directory: str | None = None,
    ) -> ChatSession:
        session = await self._store.create_session(
            session_id=session_id,
            agent_slug=agent_slug,
            model=model,
            working_directory=working_directory,
        )
        await self._invalidate(session.id)
        return session

    async def get_session(self, session_id: str) -> ChatSession | None:
        cache_key = session_key(session_id)
        cached = await self._cache.get_json(cache_key)
        if cached == _NEGATIVE_CACHE_MARKER:
            return None
        if isinstance(cached, dict):
            try:
                session = ChatSession.model_validate(cached)
            except ValidationError:
                logger.warning("discarding malformed cached session", extra={"session_id": session_id})
            else:
                logger.debug("chat cache hit", extra={"cache_area": "session"})
                return session

        session = await self._store.get_session(session_id)
        if session is None:
            await self._cache.set_json(
                cache_key,
                _NEGATIVE_CACHE_MARKER,
                ttl_seconds=self._settings.chat_cache_negative_ttl_seconds,
                session_id=session_id,
            )
            return None

        await self._cache.set_json(
            cache_key,
            session.model_dump(mode="json"),
            ttl_seconds=self._settings.chat_cache_history_ttl_seconds,
            session_id=session_id,
        )
        return session

    async def list_sessions(self) -> list[ChatSession]:
        cached = await self._cache.get_json(SESSION_LIST_KEY)
        if isinstance(cached, list):
            try:
                sessions = [ChatSession.model_validate(item) for item in cached]
            except ValidationError:
                logger.warning("discarding malformed cached session list")
            else:
                logger.debug("chat cache hit", extra={"cache_area": "session_list"})
                return sessions

        sessions = await self._store.list_sessions()
        await self._cache.set_json(
            SESSION_LIST_KEY,
            [session.model_dump(mode="json") for session in sessions],
            ttl_seconds=self._settings.chat_cache_list_ttl_seconds,
        )
        return sessions

    async def delete_session(self, session_id: str) -> bool:
        deleted = await self._store.delete_session(session_id)
        await self._invalidate(session_id)
        return deleted

    async def append_message(self, session_id: str, message: ChatMessage) -> int:
        sequence = await self._store.append_message(session_id, message)
        await self._invalidate(session_id)
        return sequence

    async def list_messages(self, session_id: str) -> list[ChatMessage]:
        cache_key = messages_key(session_id)
        cached = await self._cache.get_json(cache_key)
        if isinstance(cached, list):
            try:
                messages = [ChatMessage.model_validate(item) for item in cached]
            except ValidationError:
                logger.warning("discarding malformed cached messages", extra={"session_id": session_id})
            else:
                logger.debug("chat cache hit", extra={"cache_area": "messages"})
                return messages

        messages = await self._store.list_messages(session_id)
        await self._cache.set_json(
            cache_key,
            [message.model_dump(mode="json") for message in messages],
            ttl_seconds=self._settings.chat_cache_history_ttl_seconds,
            session_id=session_id,
        )
        return messages

    async def update_session_metadata(
        self,
        session_id: str,
        *,
        title: str | None = None,
        usage: UsageStats | None = None,
    ) -> None:
        await self._store.update_session_metadata(session_id, title=title, usage=usage)
        await self._invalidate(session_id)

    async def _invalidate(self, session_id: str) -> None:
        try:
            await self._cache.invalidate_session(session_id)
        except Exception:
            logger.exception("failed to invalidate chat cache", extra={"session_id": session_id})
