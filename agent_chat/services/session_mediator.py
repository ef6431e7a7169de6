from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import aclosing
from dataclasses import dataclass, field, replace
from enum import Enum
import logging
from typing import Any

from agent_chat.agents.base import (
    ASK_USER_QUESTION_TOOL,
    REQUEST_CANCELLED_MESSAGE,
    ChatAgent,
    PermissionResult,
    RunOptions,
)
from agent_chat.agents.events import (
    AgentEvent,
    SystemStatus,
    TextDelta,
    ThinkingDelta,
    ToolResult,
    ToolUse,
    TurnResult,
    UsageStats,
)
from agent_chat.core.settings import Settings
from agent_chat.services.block_assembler import BlockAssembler, plain_text
from agent_chat.services.cancellation import CLIENT_ABORT, CancellationScope
from agent_chat.services.chat_models import (
    ChatMessage,
    ChatSession,
    SessionStatus,
    ToolResultPayload,
    truncate_title,
)
from agent_chat.services.chat_stream import ChatStreamEvent, ChatStreamEventType
from agent_chat.services.contracts import ChatHistoryProtocol
from agent_chat.services.errors import AgentError, TransportFailure
from agent_chat.services.session_registry import SessionRegistry
from agent_chat.services.suspension import (
    InputGate,
    InputRequest,
    PendingSuspension,
    PermissionDecision,
    PermissionGate,
    PermissionRequest,
    SuspensionSlot,
)

logger = logging.getLogger(__name__)

_SENTINEL = object()

PERMISSION_DENIED_MESSAGE = "Permission denied by user"


class TurnStatus(str, Enum):
    STREAMING = "streaming"
    AWAITING_PERMISSION = "awaiting_permission"
    AWAITING_INPUT = "awaiting_input"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (TurnStatus.COMPLETED, TurnStatus.CANCELLED, TurnStatus.FAILED)


_SESSION_STATUS_BY_TURN_STATUS = {
    TurnStatus.STREAMING: SessionStatus.STREAMING,
    TurnStatus.AWAITING_PERMISSION: SessionStatus.AWAITING_PERMISSION,
    TurnStatus.AWAITING_INPUT: SessionStatus.AWAITING_INPUT,
}


@dataclass
class TurnState:
    """Mutable accumulators of one turn, owned by its mediator."""

    scope: CancellationScope
    assembler: BlockAssembler = field(default_factory=BlockAssembler)
    slot: SuspensionSlot = field(default_factory=SuspensionSlot)
    usage: UsageStats = field(default_factory=UsageStats)
    status: TurnStatus = TurnStatus.STREAMING
    permission_gate: PermissionGate = field(init=False)
    input_gate: InputGate = field(init=False)

    def __post_init__(self) -> None:
        self.permission_gate = PermissionGate(self.slot)
        self.input_gate = InputGate(self.slot)


class SessionMediator:
    """Drives one turn of a chat session and exposes it as an ordered event stream.

    The producer task consumes the agent's events in arrival order, folds content
    into blocks, suspends on permission and input gates, and commits the assistant
    message when the agent reports its terminal result. ``events`` is the single
    reader of the produced stream.
    """

    def __init__(
        self,
        *,
        session: ChatSession,
        content: str,
        options: RunOptions,
        agent: ChatAgent,
        history: ChatHistoryProtocol,
        registry: SessionRegistry,
        settings: Settings,
    ) -> None:
        self._session = session
        self._content = content
        self._options = replace(options, permission_handler=self._handle_permission)
        self._agent = agent
        self._history = history
        self._registry = registry
        self._settings = settings
        self._turn = TurnState(scope=CancellationScope(name=session.id))
        self._queue: asyncio.Queue[tuple[int, ChatStreamEvent] | object] = asyncio.Queue()
        self._sequence = 0
        self._permission_lock = asyncio.Lock()
        self._reader_attached = False
        self._task: asyncio.Task[None] | None = None
        self._metadata_task: asyncio.Task[None] | None = None

    @property
    def session_id(self) -> str:
        return self._session.id

    @property
    def turn_status(self) -> TurnStatus:
        return self._turn.status

    @property
    def status(self) -> SessionStatus:
        return _SESSION_STATUS_BY_TURN_STATUS.get(self._turn.status, SessionStatus.IDLE)

    @property
    def pending(self) -> PendingSuspension | None:
        return self._turn.slot.pending

    @property
    def metadata_task(self) -> asyncio.Task[None] | None:
        return self._metadata_task

    def start(self) -> None:
        if self._task is not None:
            raise RuntimeError("turn already started")
        scope = self._turn.scope
        scope.on_cancel(self._on_cancelled)
        scope.arm_timeout(self._settings.chat_turn_timeout_seconds)
        self._task = asyncio.create_task(self._produce(), name=f"chat-turn:{self._session.id}")
        self._task.add_done_callback(self._on_task_done)
        logger.info("chat turn started", extra={"session_id": self._session.id})

    async def events(self) -> AsyncIterator[tuple[int, ChatStreamEvent]]:
        """Yield ``(sequence, event)`` pairs until the turn reaches a terminal state."""
        if self._reader_attached:
            raise RuntimeError("turn events already have a reader")
        self._reader_attached = True
        while True:
            item = await self._queue.get()
            if item is _SENTINEL:
                return
            yield item

    async def wait(self) -> TurnStatus:
        if self._task is not None:
            await asyncio.wait({self._task})
        return self._turn.status

    def provide_input(self, answer: str) -> bool:
        return self._turn.input_gate.provide(answer)

    def respond_permission(self, allow: bool) -> bool:
        gate = self._turn.permission_gate
        return gate.allow() if allow else gate.deny()

    def cancel(self, reason: str = CLIENT_ABORT) -> bool:
        return self._turn.scope.cancel(reason)

    async def _produce(self) -> None:
        try:
            async with aclosing(self._agent.astream(self._content, options=self._options)) as stream:
                async for event in stream:
                    if isinstance(event, TurnResult):
                        await self._finish(event)
                        return
                    self._dispatch(event)
            raise TransportFailure()
        except asyncio.CancelledError:
            logger.info(
                "chat turn stopped",
                extra={"session_id": self._session.id, "reason": self._turn.scope.reason},
            )
            raise
        except AgentError as exc:
            self._fail(exc)
        except Exception:
            logger.exception("chat turn failed", extra={"session_id": self._session.id})
            self._fail(TransportFailure())

    def _on_task_done(self, task: asyncio.Task[None]) -> None:
        # Also runs when the task is cancelled before its first step.
        turn = self._turn
        if task.cancelled():
            turn.status = TurnStatus.CANCELLED
        turn.scope.close()
        turn.slot.close()
        self._registry.release(self._session.id, self)
        self._queue.put_nowait(_SENTINEL)

    def _dispatch(self, event: AgentEvent) -> None:
        assembler = self._turn.assembler
        if isinstance(event, SystemStatus):
            self._emit("system_status", {"subtype": event.subtype, "data": dict(event.data)})
        elif isinstance(event, ThinkingDelta):
            assembler.on_thinking_delta(event.text)
            self._emit("delta", {"type": "thinking_delta", "text": event.text})
        elif isinstance(event, TextDelta):
            assembler.on_text_delta(event.text)
            self._emit("delta", {"type": "text_delta", "text": event.text})
        elif isinstance(event, ToolUse):
            block = assembler.on_tool_use(event.id, event.name, event.input)
            self._emit("assistant_block", {"blocks": [block.model_dump(mode="json")]})
        elif isinstance(event, ToolResult):
            assembler.on_tool_result(
                event.tool_use_id,
                ToolResultPayload(content=event.content, is_error=event.is_error),
            )
            self._emit(
                "tool_result",
                {"tool_use_id": event.tool_use_id, "content": event.content, "is_error": event.is_error},
            )
        else:
            raise TypeError(f"unhandled agent event: {type(event).__name__}")

    async def _finish(self, result: TurnResult) -> None:
        turn = self._turn
        turn.usage.add(result.usage)
        if result.is_error:
            raise AgentError(list(result.errors))

        # Past this point the turn commits; a late abort has no effect.
        turn.scope.close()
        blocks = turn.assembler.finalize()
        content = plain_text(blocks) or result.result
        if content or blocks:
            await self._history.append_message(
                self._session.id,
                ChatMessage(role="assistant", content=content, blocks=blocks),
            )
        turn.status = TurnStatus.COMPLETED
        self._emit(
            "result",
            {
                "subtype": "success",
                "is_error": False,
                "result": result.result,
                "errors": [],
                "usage": turn.usage.model_dump(),
            },
        )
        logger.info(
            "chat turn completed",
            extra={"session_id": self._session.id, "blocks_count": len(blocks)},
        )
        self._metadata_task = asyncio.create_task(self._refresh_metadata(turn.usage.model_copy()))

    def _fail(self, error: AgentError) -> None:
        turn = self._turn
        turn.scope.close()
        turn.assembler.reset()
        turn.status = TurnStatus.FAILED
        logger.warning(
            "chat turn ended with agent error",
            extra={"session_id": self._session.id, "errors_count": len(error.messages)},
        )
        self._emit(
            "result",
            {
                "subtype": "error",
                "is_error": True,
                "result": "",
                "errors": list(error.messages),
                "usage": turn.usage.model_dump(),
            },
        )

    def _on_cancelled(self) -> None:
        turn = self._turn
        turn.status = TurnStatus.CANCELLED
        turn.slot.close()
        turn.assembler.reset()
        if self._task is not None and not self._task.done():
            self._task.cancel()

    async def _handle_permission(self, tool_name: str, tool_input: dict[str, Any]) -> PermissionResult:
        turn = self._turn
        # Parallel tool calls queue here so only one suspension is pending at a time.
        async with self._permission_lock:
            if tool_name == ASK_USER_QUESTION_TOOL:
                resolution = await turn.input_gate.request(tool_input, on_suspended=self._on_suspended)
                self._resume()
                if resolution.cancelled:
                    return PermissionResult(behavior="deny", message=REQUEST_CANCELLED_MESSAGE)
                return PermissionResult(behavior="deny", message=resolution.answer)

            decision = await turn.permission_gate.request(tool_name, tool_input, on_suspended=self._on_suspended)
            self._resume()
            logger.info(
                "tool permission resolved",
                extra={"session_id": self._session.id, "tool_name": tool_name, "decision": decision.value},
            )
            if decision is PermissionDecision.ALLOW:
                return PermissionResult(behavior="allow")
            if decision is PermissionDecision.CANCELLED:
                return PermissionResult(behavior="deny", message=REQUEST_CANCELLED_MESSAGE)
            return PermissionResult(behavior="deny", message=PERMISSION_DENIED_MESSAGE)

    def _on_suspended(self, request: PendingSuspension) -> None:
        turn = self._turn
        if isinstance(request, PermissionRequest):
            turn.status = TurnStatus.AWAITING_PERMISSION
            self._emit("permission_request", {"tool_name": request.tool_name, "input": dict(request.input)})
        elif isinstance(request, InputRequest):
            turn.status = TurnStatus.AWAITING_INPUT
            self._emit("user_input_required", {"input": dict(request.input)})
        else:
            raise TypeError(f"unhandled suspension: {type(request).__name__}")

    def _resume(self) -> None:
        if self._turn.status in (TurnStatus.AWAITING_PERMISSION, TurnStatus.AWAITING_INPUT):
            self._turn.status = TurnStatus.STREAMING

    def _emit(self, event_type: ChatStreamEventType, data: Any) -> None:
        self._sequence += 1
        self._queue.put_nowait((self._sequence, {"type": event_type, "data": data}))

    async def _refresh_metadata(self, usage: UsageStats) -> None:
        # The store keeps any title other than the placeholder.
        title = truncate_title(self._content, self._settings.chat_title_max_chars)
        try:
            await self._history.update_session_metadata(self._session.id, title=title, usage=usage)
        except Exception:
            logger.exception("failed to refresh chat metadata", extra={"session_id": self._session.id})
