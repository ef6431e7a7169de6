from __future__ import annotations

from collections.abc import Mapping
import json
import logging
from typing import Any
import uuid

from pydantic import TypeAdapter, ValidationError

from agent_chat.agents.events import UsageStats
from agent_chat.services.chat_models import (
    NEW_CHAT_TITLE,
    AgentConfig,
    ChatMessage,
    ChatSession,
    MessageBlock,
)
from agent_chat.services.contracts import DatabaseServiceProtocol
from agent_chat.services.errors import NotFoundError

logger = logging.getLogger(__name__)

_BLOCKS_ADAPTER = TypeAdapter(list[MessageBlock])

_SCHEMA_STATEMENTS = (
    """
    CREATE TABLE IF NOT EXISTS chat_sessions (
      id TEXT PRIMARY KEY,
      title TEXT NOT NULL DEFAULT 'New Chat',
      agent_slug TEXT,
      model TEXT NOT NULL DEFAULT '',
      working_directory TEXT,
      total_input_tokens BIGINT NOT NULL DEFAULT 0,
      total_output_tokens BIGINT NOT NULL DEFAULT 0,
      total_cache_creation_tokens BIGINT NOT NULL DEFAULT 0,
      total_cache_read_tokens BIGINT NOT NULL DEFAULT 0,
      created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
      updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS chat_messages (
      id BIGSERIAL PRIMARY KEY,
      session_id TEXT NOT NULL REFERENCES chat_sessions (id) ON DELETE CASCADE,
      sequence INT NOT NULL,
      role TEXT NOT NULL CHECK (role IN ('user', 'assistant')),
      content TEXT NOT NULL,
      blocks JSONB NOT NULL DEFAULT '[]'::jsonb,
      created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
      UNIQUE (session_id, sequence)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS agents (
      slug TEXT PRIMARY KEY,
      name TEXT NOT NULL DEFAULT '',
      model TEXT NOT NULL DEFAULT '',
      thinking TEXT NOT NULL DEFAULT 'adaptive',
      system_prompt TEXT NOT NULL DEFAULT '',
      built_in_tools TEXT[] NOT NULL DEFAULT '{}'
    )
    """,
)

_SESSION_COLUMNS = """
  id,
  title,
  agent_slug,
  model,
  working_directory,
  total_input_tokens,
  total_output_tokens,
  total_cache_creation_tokens,
  total_cache_read_tokens,
  created_at,
  updated_at
"""


class ChatStore:
    """Postgres persistence for chat sessions and their message history."""

    def __init__(self, database: DatabaseServiceProtocol) -> None:
        self._database = database

    async def ensure_schema(self) -> None:
        for statement in _SCHEMA_STATEMENTS:
            await self._database.execute(statement)
        logger.info("chat schema ensured")

    async def create_session(
        self,
        *,
        session_id: str | None = None,
        agent_slug: str | None = None,
        model: str = "",
        working_directory: str | None = None,
    ) -> ChatSession:
        row = await self._database.fetchrow(
            f"""
            INSERT INTO chat_sessions (id, title, agent_slug, model, working_directory)
            VALUES ($1, $2, $3, $4, $5)
            RETURNING {_SESSION_COLUMNS}
            """,
            session_id or str(uuid.uuid4()),
            NEW_CHAT_TITLE,
            agent_slug or None,
            model,
            working_directory or None,
        )
        assert row is not None
        return session_from_row(row)

    async def get_session(self, session_id: str) -> ChatSession | None:
        row = await self._database.fetchrow(
            f"SELECT {_SESSION_COLUMNS} FROM chat_sessions WHERE id = $1",
            session_id,
        )
        return session_from_row(row) if row is not None else None

    async def list_sessions(self) -> list[ChatSession]:
        rows = await self._database.fetch(f"SELECT {_SESSION_COLUMNS} FROM chat_sessions ORDER BY updated_at DESC")
        return [session_from_row(row) for row in rows]

    async def delete_session(self, session_id: str) -> bool:
        status = await self._database.execute("DELETE FROM chat_sessions WHERE id = $1", session_id)
        return status.endswith(" 1")

    async def append_message(self, session_id: str, message: ChatMessage) -> int:
        """Append a message with the next per-session sequence inside one transaction."""
        blocks = json.dumps([block.model_dump(mode="json") for block in message.blocks])
        async with self._database.transaction() as connection:
            # Row lock serializes concurrent appends to the same session.
            locked = await connection.fetchrow("SELECT id FROM chat_sessions WHERE id = $1 FOR UPDATE", session_id)
            if locked is None:
                raise NotFoundError("chat", session_id)
            row = await connection.fetchrow(
                """
                INSERT INTO chat_messages (session_id, sequence, role, content, blocks, created_at)
                VALUES (
                  $1,
                  COALESCE((SELECT MAX(m.sequence) FROM chat_messages m WHERE m.session_id = $1), 0) + 1,
                  $2,
                  $3,
                  $4::jsonb,
                  $5
                )
                RETURNING sequence
                """,
                session_id,
                message.role,
                message.content,
                blocks,
                message.timestamp,
            )
            await connection.execute("UPDATE chat_sessions SET updated_at = NOW() WHERE id = $1", session_id)
        assert row is not None
        return int(row["sequence"])

    async def list_messages(self, session_id: str) -> list[ChatMessage]:
        rows = await self._database.fetch(
            """
            SELECT role, content, blocks, created_at
            FROM chat_messages
            WHERE session_id = $1
            ORDER BY sequence ASC
            """,
            session_id,
        )
        return [message_from_row(row) for row in rows]

    async def update_session_metadata(
        self,
        session_id: str,
        *,
        title: str | None = None,
        usage: UsageStats | None = None,
    ) -> None:
        """Add turn usage and set ``title`` only while the session still has the placeholder title."""
        usage = usage or UsageStats()
        await self._database.execute(
            """
            UPDATE chat_sessions
            SET title = COALESCE(CASE WHEN title = $7 THEN $2::text END, title),
                total_input_tokens = total_input_tokens + $3,
                total_output_tokens = total_output_tokens + $4,
                total_cache_creation_tokens = total_cache_creation_tokens + $5,
                total_cache_read_tokens = total_cache_read_tokens + $6,
                updated_at = NOW()
            WHERE id = $1
            """,
            session_id,
            title,
            usage.input_tokens,
            usage.output_tokens,
            usage.cache_creation_input_tokens,
            usage.cache_read_input_tokens,
            NEW_CHAT_TITLE,
        )


class AgentStore:
    """Read-only agent definitions stored alongside chat sessions."""

    def __init__(self, database: DatabaseServiceProtocol) -> None:
        self._database = database

    async def get_agent(self, slug: str) -> AgentConfig | None:
        row = await self._database.fetchrow(
            """
            SELECT slug, name, model, thinking, system_prompt, built_in_tools
            FROM agents
            WHERE slug = $1
            """,
            slug,
        )
        if row is None:
            return None
        return AgentConfig(
            slug=row["slug"],
            name=row["name"] or "",
            model=row["model"] or "",
            thinking=row["thinking"] or "adaptive",
            system_prompt=row["system_prompt"] or "",
            built_in_tools=list(row["built_in_tools"] or []),
        )


def session_from_row(row: Mapping[str, Any]) -> ChatSession:
    return ChatSession(
        id=row["id"],
        title=row["title"],
        agent_slug=row["agent_slug"],
        model=row["model"] or "",
        working_directory=row["working_directory"],
        total_input_tokens=row["total_input_tokens"],
        total_output_tokens=row["total_output_tokens"],
        total_cache_creation_tokens=row["total_cache_creation_tokens"],
        total_cache_read_tokens=row["total_cache_read_tokens"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def message_from_row(row: Mapping[str, Any]) -> ChatMessage:
    return ChatMessage(
        role=row["role"],
        content=row["content"],
        blocks=_parse_blocks(row["blocks"]),
        timestamp=row["created_at"],
    )


def _parse_blocks(raw: Any) -> list[MessageBlock]:
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("discarding undecodable message blocks")
            return []
    if not isinstance(raw, list):
        return []
    try:
        return _BLOCKS_ADAPTER.validate_python(raw)
    except ValidationError:
        logger.warning("discarding invalid message blocks", extra={"blocks_count": len(raw)})
        return []
