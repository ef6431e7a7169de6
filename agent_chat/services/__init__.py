"""Service layer orchestrating application use-cases."""

from agent_chat.services.chat_history_service import ChatHistoryService
from agent_chat.services.database_service import DatabaseService
from agent_chat.services.history_cache_store import RedisChatCacheStore

__all__ = ["ChatHistoryService", "DatabaseService", "RedisChatCacheStore"]
