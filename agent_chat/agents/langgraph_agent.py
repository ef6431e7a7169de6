from __future__ import annotations

from collections.abc import AsyncIterator, Callable
from contextlib import AbstractAsyncContextManager, aclosing
import logging
from typing import Any

from langchain.agents import create_agent
from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import AIMessage, ToolMessage
from langchain_core.tools import BaseTool
from langgraph.checkpoint.postgres.aio import AsyncPostgresSaver
from langgraph.errors import GraphRecursionError

from agent_chat.agents.base import REQUEST_CANCELLED_MESSAGE, RunOptions
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
from agent_chat.agents.tools import guard_tool

logger = logging.getLogger(__name__)

ModelFactory = Callable[[str, str], BaseChatModel]
ToolsFactory = Callable[[RunOptions], list[BaseTool]]

STEP_LIMIT_MESSAGE = "The agent stopped after reaching its step limit"


class LangGraphChatAgent:
    """LangGraph tool-calling agent with Postgres-backed conversation memory.

    A fresh graph is compiled for every turn so the model, tools and permission
    handler belong to that turn alone; the checkpointer is shared and keyed by
    the session's thread id.
    """

    def __init__(
        self,
        *,
        model_factory: ModelFactory,
        tools_factory: ToolsFactory | None = None,
        checkpointer: Any = None,
        checkpointer_cm: AbstractAsyncContextManager[AsyncPostgresSaver] | None = None,
        max_steps: int = 50,
        graph_builder: Callable[..., Any] = create_agent,
    ) -> None:
        self._model_factory = model_factory
        self._tools_factory = tools_factory
        self._checkpointer = checkpointer
        self._checkpointer_cm = checkpointer_cm
        self._max_steps = max_steps
        self._graph_builder = graph_builder

    @classmethod
    async def create(
        cls,
        *,
        model_factory: ModelFactory,
        chat_db_dsn: str,
        tools_factory: ToolsFactory | None = None,
        max_steps: int = 50,
    ) -> LangGraphChatAgent:
        checkpointer_cm = AsyncPostgresSaver.from_conn_string(chat_db_dsn)
        checkpointer = await checkpointer_cm.__aenter__()
        await checkpointer.setup()
        return cls(
            model_factory=model_factory,
            tools_factory=tools_factory,
            checkpointer=checkpointer,
            checkpointer_cm=checkpointer_cm,
            max_steps=max_steps,
        )

    def _build_graph(self, options: RunOptions) -> tuple[Any, list[str]]:
        tools = self._tools_factory(options) if self._tools_factory is not None else []
        if options.permission_handler is not None:
            tools = [guard_tool(tool, options.permission_handler) for tool in tools]
        graph = self._graph_builder(
            model=self._model_factory(options.model, options.thinking),
            tools=tools,
            system_prompt=options.system_prompt or None,
            checkpointer=self._checkpointer,
        )
        return graph, [tool.name for tool in tools]

    async def astream(self, message: str, *, options: RunOptions) -> AsyncIterator[AgentEvent]:
        logger.debug(
            "streaming chat turn",
            extra={"message_length": len(message), "thread_id": options.thread_id, "model": options.model},
        )
        graph, tool_names = self._build_graph(options)
        yield SystemStatus(
            subtype="init",
            data={"model": options.model, "thread_id": options.thread_id, "tools": tool_names},
        )

        config = {"configurable": {"thread_id": options.thread_id}, "recursion_limit": self._max_steps}
        replies = await self._interrupted_tool_replies(graph, config)

        usage = UsageStats()
        final_text = ""
        stream = graph.astream(
            {"messages": [*replies, {"role": "user", "content": message}]},
            stream_mode=["messages", "updates"],
            config=config,
        )
        try:
            async with aclosing(stream):
                async for mode, payload in stream:
                    if mode == "messages":
                        chunk, metadata = payload
                        if metadata.get("langgraph_node") != "model":
                            continue
                        usage.add(self._extract_usage(chunk))
                        for event in self._extract_message_deltas(chunk):
                            yield event
                        continue

                    if mode != "updates":
                        continue

                    for event in self._extract_update_events(payload):
                        yield event
                    final_text = self._final_text(payload) or final_text
        except GraphRecursionError:
            logger.warning("chat turn hit the step limit", extra={"thread_id": options.thread_id})
            yield TurnResult(is_error=True, errors=(STEP_LIMIT_MESSAGE,), usage=usage)
            return

        yield TurnResult(result=final_text, usage=usage)

    async def _interrupted_tool_replies(self, graph: Any, config: dict[str, Any]) -> list[ToolMessage]:
        """Answer tool calls left open by a cancelled turn.

        Providers reject a history where an assistant tool call is not followed
        by its tool reply, so every unanswered call gets an error reply before
        the next user message.
        """
        if self._checkpointer is None:
            return []
        snapshot = await graph.aget_state(config)
        messages = list((snapshot.values or {}).get("messages", []))

        last_ai_index = next(
            (index for index in range(len(messages) - 1, -1, -1) if isinstance(messages[index], AIMessage)),
            None,
        )
        if last_ai_index is None:
            return []
        trailing = messages[last_ai_index + 1 :]
        if any(not isinstance(message, ToolMessage) for message in trailing):
            return []

        answered = {message.tool_call_id for message in trailing}
        replies = [
            ToolMessage(
                content=REQUEST_CANCELLED_MESSAGE,
                tool_call_id=call["id"],
                name=call["name"],
                status="error",
            )
            for call in messages[last_ai_index].tool_calls
            if call.get("id") and call["id"] not in answered
        ]
        if replies:
            logger.info(
                "closing tool calls interrupted by a cancelled turn",
                extra={"thread_id": config["configurable"]["thread_id"], "tool_calls": len(replies)},
            )
        return replies

    def _extract_message_deltas(self, chunk: Any) -> list[AgentEvent]:
        deltas: list[AgentEvent] = []
        additional_kwargs = getattr(chunk, "additional_kwargs", None) or {}
        reasoning_content = additional_kwargs.get("reasoning_content")
        if isinstance(reasoning_content, str) and reasoning_content:
            deltas.append(ThinkingDelta(text=reasoning_content))

        chunk_content = getattr(chunk, "content", chunk)
        if isinstance(chunk_content, str):
            if chunk_content:
                deltas.append(TextDelta(text=chunk_content))
            return deltas

        if not isinstance(chunk_content, list):
            return deltas

        for item in chunk_content:
            item_type = item.get("type") if isinstance(item, dict) else getattr(item, "type", None)
            if item_type == "text":
                text = item.get("text", "") if isinstance(item, dict) else getattr(item, "text", "")
                if text:
                    deltas.append(TextDelta(text=text))
            elif item_type in ("thinking", "reasoning") and isinstance(item, dict):
                text = self._reasoning_text(item)
                if text:
                    deltas.append(ThinkingDelta(text=text))
        return deltas

    @staticmethod
    def _reasoning_text(item: dict[str, Any]) -> str:
        for key in ("thinking", "reasoning", "text"):
            value = item.get(key)
            if isinstance(value, str) and value:
                return value
        # OpenAI Responses API reasoning carries its text in summary parts.
        summary = item.get("summary")
        if isinstance(summary, list):
            return "".join(part.get("text", "") for part in summary if isinstance(part, dict))
        return ""

    @staticmethod
    def _extract_usage(chunk: Any) -> UsageStats | None:
        usage_metadata = getattr(chunk, "usage_metadata", None)
        if not usage_metadata:
            return None
        details = usage_metadata.get("input_token_details") or {}
        return UsageStats(
            input_tokens=int(usage_metadata.get("input_tokens") or 0),
            output_tokens=int(usage_metadata.get("output_tokens") or 0),
            cache_creation_input_tokens=int(details.get("cache_creation") or 0),
            cache_read_input_tokens=int(details.get("cache_read") or 0),
        )

    def _extract_update_events(self, update_payload: Any) -> list[AgentEvent]:
        events: list[AgentEvent] = []
        for message in self._update_messages(update_payload):
            for tool_call in self._message_tool_calls(message):
                tool_id = str(tool_call.get("id") or "")
                if not tool_id:
                    continue
                args = tool_call.get("args") if isinstance(tool_call.get("args"), dict) else {}
                events.append(ToolUse(id=tool_id, name=str(tool_call.get("name") or ""), input=args))

            if getattr(message, "type", None) != "tool":
                continue
            status = str(getattr(message, "status", "") or "")
            artifact = getattr(message, "artifact", None)
            events.append(
                ToolResult(
                    tool_use_id=str(getattr(message, "tool_call_id", "")),
                    content=artifact if artifact is not None else getattr(message, "content", None),
                    is_error=status == "error",
                )
            )
        return events

    def _final_text(self, update_payload: Any) -> str:
        text = ""
        for message in self._update_messages(update_payload):
            if getattr(message, "type", None) != "ai" or self._message_tool_calls(message):
                continue
            content = getattr(message, "content", "")
            if isinstance(content, str):
                text = content
            elif isinstance(content, list):
                text = "".join(
                    item.get("text", "") for item in content if isinstance(item, dict) and item.get("type") == "text"
                )
        return text.strip()

    @staticmethod
    def _update_messages(update_payload: Any) -> list[Any]:
        if not isinstance(update_payload, dict):
            return []
        messages: list[Any] = []
        for node_update in update_payload.values():
            if isinstance(node_update, dict):
                messages.extend(node_update.get("messages", []))
        return messages

    def _message_tool_calls(self, message: Any) -> list[dict[str, Any]]:
        tool_calls = getattr(message, "tool_calls", None)
        if isinstance(tool_calls, list):
            return [call for call in tool_calls if isinstance(call, dict)]

        content = getattr(message, "content", None)
        if not isinstance(content, list):
            return []
        return [item for item in content if isinstance(item, dict) and item.get("type") == "tool_call"]

    async def aclose(self) -> None:
        if self._checkpointer_cm is None:
            return
        await self._checkpointer_cm.__aexit__(None, None, None)
        self._checkpointer_cm = None
