from __future__ import annotations

import json
import logging
import random
from typing import Any

from redis.asyncio import Redis

logger = logging.getLogger(__name__)

SESSION_LIST_KEY = "sessions"
_KEY_VERSION = "v2"
# Grace period so a session's key set outlives the entries it tracks.
_KEY_SET_GRACE_SECONDS = 60


def session_key(session_id: str) -> str:
    return f"session:{session_id}"


def messages_key(session_id: str) -> str:
    return f"session:{session_id}:messages"


def _key_set(session_id: str) -> str:
    return f"session:{session_id}:keys"


class RedisChatCacheStore:
    """Redis cache of chat reads, grouped per session for invalidation.

    Every entry written for a session is recorded in that session's key set;
    ``invalidate_session`` drops the set, its entries and the session list in
    a single ``DEL``. TTLs carry up to ``jitter_max_seconds`` of random jitter.
    """

    def __init__(
        self,
        redis_url: str,
        key_prefix: str = "chat:history-cache",
        jitter_max_seconds: int = 5,
        redis_client: Redis | None = None,
    ) -> None:
        self._redis = redis_client if redis_client is not None else Redis.from_url(redis_url, decode_responses=True)
        self._namespace = f"{key_prefix.strip(':')}:{_KEY_VERSION}"
        self._jitter_max_seconds = max(0, jitter_max_seconds)

    async def ping(self) -> bool:
        return bool(await self._redis.ping())

    async def get_json(self, key: str) -> Any | None:
        raw = await self._redis.get(self._qualify(key))
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("dropping undecodable chat cache entry", extra={"key": key})
            return None

    async def set_json(self, key: str, payload: Any, ttl_seconds: int, *, session_id: str | None = None) -> None:
        ttl = max(1, ttl_seconds + random.randint(0, self._jitter_max_seconds))
        entry = self._qualify(key)
        pipe = self._redis.pipeline()
        pipe.set(entry, json.dumps(payload, default=str), ex=ttl)
        if session_id is not None:
            key_set = self._qualify(_key_set(session_id))
            pipe.sadd(key_set, entry)
            # NX covers a fresh set, GT only ever extends an existing one.
            pipe.expire(key_set, ttl + _KEY_SET_GRACE_SECONDS, nx=True)
            pipe.expire(key_set, ttl + _KEY_SET_GRACE_SECONDS, gt=True)
        await pipe.execute()

    async def invalidate_session(self, session_id: str) -> None:
        key_set = self._qualify(_key_set(session_id))
        entries = await self._redis.smembers(key_set)
        await self._redis.delete(*entries, key_set, self._qualify(SESSION_LIST_KEY))
        logger.debug("chat cache invalidated", extra={"session_id": session_id, "entries": len(entries)})

    async def close(self) -> None:
        await self._redis.aclose()

    def _qualify(self, key: str) -> str:
        return f"{self._namespace}:{key}"
