"""Conversation memory tests running the real LangGraph agent graph with an in-memory checkpointer."""

from __future__ import annotations

from typing import Any

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage
from langchain_core.outputs import ChatGeneration, ChatResult
from langchain_core.tools import StructuredTool
from langgraph.checkpoint.memory import InMemorySaver
from pydantic import Field
import pytest

from agent_chat.agents.base import ASK_USER_QUESTION_TOOL, REQUEST_CANCELLED_MESSAGE
from agent_chat.agents.langgraph_agent import LangGraphChatAgent
from agent_chat.agents.tools.ask_user import build_ask_user_question_tool
from agent_chat.core.settings import Settings
from agent_chat.services.chat_models import SessionStatus
from agent_chat.services.chat_service import ChatService
from agent_chat.services.session_mediator import TurnStatus
from agent_chat.services.session_registry import SessionRegistry
from tests.conftest import FakeAgentStore, InMemoryChatHistory, wait_until


class RecordingChatModel(BaseChatModel):
    """Replays canned responses and records the messages of every call."""

    responses: list[AIMessage]
    seen: list[list[BaseMessage]] = Field(default_factory=list)

    @property
    def _llm_type(self) -> str:
        return "recording"

    def _generate(self, messages, stop=None, run_manager=None, **kwargs: Any) -> ChatResult:
        self.seen.append(list(messages))
        return ChatResult(generations=[ChatGeneration(message=self.responses[len(self.seen) - 1])])

    def bind_tools(self, tools, **kwargs: Any) -> RecordingChatModel:
        return self


async def _echo(text: str) -> str:
    return text


def _echo_tool() -> StructuredTool:
    return StructuredTool.from_function(coroutine=_echo, name="Echo", description="Echo the text back.")


def _service(model: RecordingChatModel, history: InMemoryChatHistory) -> ChatService:
    agent = LangGraphChatAgent(
        model_factory=lambda model_name, thinking: model,
        tools_factory=lambda options: [_echo_tool(), build_ask_user_question_tool()],
        checkpointer=InMemorySaver(),
    )
    return ChatService(
        agent=agent,
        history=history,
        agent_store=FakeAgentStore(),
        registry=SessionRegistry(),
        settings=Settings(CHAT_SYSTEM_PROMPT=""),
    )


def _tool_call(name: str, args: dict[str, Any], call_id: str) -> AIMessage:
    return AIMessage(content="", tool_calls=[{"name": name, "args": args, "id": call_id}])


@pytest.mark.asyncio
async def test_turn_cancelled_at_permission_prompt_leaves_answerable_history(history: InMemoryChatHistory) -> None:
    model = RecordingChatModel(
        responses=[_tool_call("Echo", {"text": "hi"}, "call-1"), AIMessage(content="Back again.")]
    )
    service = _service(model, history)

    mediator = await service.send_message("S", "echo hi")
    await wait_until(lambda: mediator.status is SessionStatus.AWAITING_PERMISSION, timeout=5.0)
    assert await service.abort("S") is True

    next_mediator = await service.send_message("S", "are you there?")
    assert await next_mediator.wait() is TurnStatus.COMPLETED

    second_call = model.seen[1]
    assert [message.type for message in second_call] == ["human", "ai", "tool", "human"]
    assert second_call[2].tool_call_id == "call-1"
    assert second_call[2].content == REQUEST_CANCELLED_MESSAGE
    assert second_call[3].content == "are you there?"
    assert history.messages["S"][-1].content == "Back again."


@pytest.mark.asyncio
async def test_turn_cancelled_while_awaiting_input_answers_the_question_call(history: InMemoryChatHistory) -> None:
    question = {"questions": [{"question": "Which branch?"}]}
    model = RecordingChatModel(
        responses=[_tool_call(ASK_USER_QUESTION_TOOL, question, "call-7"), AIMessage(content="Using main.")]
    )
    service = _service(model, history)

    mediator = await service.send_message("S", "merge it")
    await wait_until(lambda: mediator.status is SessionStatus.AWAITING_INPUT, timeout=5.0)
    assert await service.abort("S") is True

    next_mediator = await service.send_message("S", "main")
    assert await next_mediator.wait() is TurnStatus.COMPLETED

    tool_replies = [message for message in model.seen[1] if message.type == "tool"]
    assert [reply.tool_call_id for reply in tool_replies] == ["call-7"]
    assert model.seen[1][-1].content == "main"


@pytest.mark.asyncio
async def test_completed_turns_add_no_extra_tool_replies(history: InMemoryChatHistory) -> None:
    model = RecordingChatModel(responses=[AIMessage(content="Hello."), AIMessage(content="Still here.")])
    service = _service(model, history)

    first = await service.send_message("S", "hi")
    assert await first.wait() is TurnStatus.COMPLETED
    second = await service.send_message("S", "again")
    assert await second.wait() is TurnStatus.COMPLETED

    assert [message.type for message in model.seen[1]] == ["human", "ai", "human"]
