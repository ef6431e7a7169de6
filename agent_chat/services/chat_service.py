from __future__ import annotations

import logging

from agent_chat.agents.base import ChatAgent, RunOptions
from agent_chat.core.settings import Settings
from agent_chat.services.cancellation import CLIENT_ABORT, SESSION_DELETED
from agent_chat.services.chat_models import ChatMessage, ChatSession, SessionStatus
from agent_chat.services.contracts import AgentStoreProtocol, ChatHistoryProtocol
from agent_chat.services.errors import NoPendingInputError, NoPendingPermissionError, NotFoundError
from agent_chat.services.session_mediator import SessionMediator
from agent_chat.services.session_registry import SessionRegistry

logger = logging.getLogger(__name__)


class ChatService:
    """Use-case service for chat sessions and their streamed turns."""

    def __init__(
        self,
        agent: ChatAgent,
        history: ChatHistoryProtocol,
        agent_store: AgentStoreProtocol,
        registry: SessionRegistry,
        settings: Settings,
    ) -> None:
        self._agent = agent
        self._history = history
        self._agent_store = agent_store
        self._registry = registry
        self._settings = settings

    async def create_session(
        self,
        *,
        agent_slug: str | None = None,
        working_directory: str | None = None,
        model: str | None = None,
    ) -> ChatSession:
        if agent_slug:
            agent = await self._agent_store.get_agent(agent_slug)
            if agent is None:
                raise NotFoundError("agent", agent_slug)
            model = model or agent.model
        session = await self._history.create_session(
            agent_slug=agent_slug,
            model=model or "",
            working_directory=working_directory,
        )
        logger.info("chat session created", extra={"session_id": session.id, "agent_slug": agent_slug})
        return session

    async def list_sessions(self) -> list[ChatSession]:
        sessions = await self._history.list_sessions()
        return [self._with_live_status(session) for session in sessions]

    async def get_session_with_messages(self, session_id: str) -> tuple[ChatSession, list[ChatMessage]]:
        session = await self._require_session(session_id)
        messages = await self._history.list_messages(session_id)
        return self._with_live_status(session), messages

    async def delete_session(self, session_id: str) -> None:
        mediator = self._registry.get(session_id)
        if mediator is not None and mediator.cancel(SESSION_DELETED):
            await mediator.wait()
        if not await self._history.delete_session(session_id):
            raise NotFoundError("chat", session_id)
        logger.info("chat session deleted", extra={"session_id": session_id})

    async def send_message(self, session_id: str, content: str) -> SessionMediator:
        """Append the user message and start a turn; the caller consumes ``mediator.events()``."""
        session = await self._history.get_session(session_id)
        if session is None:
            session = await self._history.create_session(session_id=session_id, model=self._settings.chat_default_model)
            logger.info("chat session created on first message", extra={"session_id": session_id})

        options = await self._resolve_run_options(session)
        mediator = SessionMediator(
            session=session,
            content=content,
            options=options,
            agent=self._agent,
            history=self._history,
            registry=self._registry,
            settings=self._settings,
        )
        self._registry.claim(session.id, mediator)
        try:
            await self._history.append_message(session.id, ChatMessage(role="user", content=content))
        except BaseException:
            self._registry.release(session.id, mediator)
            raise
        mediator.start()
        return mediator

    def provide_input(self, session_id: str, answer: str) -> None:
        mediator = self._registry.get(session_id)
        if mediator is None or mediator.status is not SessionStatus.AWAITING_INPUT:
            raise NoPendingInputError(session_id)
        if not mediator.provide_input(answer):
            raise NoPendingInputError(session_id)

    def respond_permission(self, session_id: str, allow: bool) -> None:
        mediator = self._registry.get(session_id)
        if mediator is None or mediator.status is not SessionStatus.AWAITING_PERMISSION:
            raise NoPendingPermissionError(session_id)
        if not mediator.respond_permission(allow):
            raise NoPendingPermissionError(session_id)

    async def abort(self, session_id: str) -> bool:
        """Cancel the in-flight turn and wait until the session is free again."""
        mediator = self._registry.get(session_id)
        if mediator is None or not mediator.cancel(CLIENT_ABORT):
            return False
        await mediator.wait()
        return True

    @property
    def active_turns(self) -> int:
        return self._registry.active_count

    async def _require_session(self, session_id: str) -> ChatSession:
        session = await self._history.get_session(session_id)
        if session is None:
            raise NotFoundError("chat", session_id)
        return session

    async def _resolve_run_options(self, session: ChatSession) -> RunOptions:
        agent = await self._agent_store.get_agent(session.agent_slug) if session.agent_slug else None
        if agent is None:
            if session.agent_slug:
                logger.warning(
                    "chat agent no longer defined; using defaults",
                    extra={"session_id": session.id, "agent_slug": session.agent_slug},
                )
            return RunOptions(
                thread_id=session.id,
                model=session.model or self._settings.chat_default_model,
                system_prompt=self._settings.chat_system_prompt,
                working_directory=session.working_directory,
            )
        return RunOptions(
            thread_id=session.id,
            model=session.model or agent.model or self._settings.chat_default_model,
            system_prompt=agent.system_prompt,
            thinking=agent.thinking,
            working_directory=session.working_directory,
            allowed_tools=list(agent.built_in_tools) or None,
        )

    def _with_live_status(self, session: ChatSession) -> ChatSession:
        status = self._registry.status(session.id)
        if status is session.status:
            return session
        return session.model_copy(update={"status": status})
