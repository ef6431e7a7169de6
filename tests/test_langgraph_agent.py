from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Any

from langchain_core.language_models.fake_chat_models import FakeListChatModel
from langchain_core.tools import StructuredTool
from langgraph.errors import GraphRecursionError
import pytest

from agent_chat.agents.base import PermissionResult, RunOptions
from agent_chat.agents.events import SystemStatus, TextDelta, ThinkingDelta, ToolResult, ToolUse, TurnResult
from agent_chat.agents.langgraph_agent import STEP_LIMIT_MESSAGE, LangGraphChatAgent


class _Chunk:
    def __init__(self, content, *, additional_kwargs: dict | None = None, usage_metadata: dict | None = None):
        self.content = content
        self.additional_kwargs = additional_kwargs or {}
        self.usage_metadata = usage_metadata


class _ModelMessage:
    type = "ai"

    def __init__(self, content: Any = "", tool_calls: list[dict] | None = None) -> None:
        self.content = content
        self.tool_calls = tool_calls or []


class _ToolMessage:
    type = "tool"

    def __init__(self, *, tool_call_id: str, content: str, artifact: object = None, status: str = "success") -> None:
        self.tool_call_id = tool_call_id
        self.content = content
        self.artifact = artifact
        self.status = status


class FakeCompiledAgent:
    def __init__(self, stream_items: list[tuple[str, object]], *, raise_after: BaseException | None = None) -> None:
        self.stream_items = stream_items
        self.raise_after = raise_after
        self.calls: list[tuple[tuple, dict]] = []

    async def astream(self, *args, **kwargs) -> AsyncIterator[tuple[str, object]]:
        self.calls.append((args, kwargs))
        for item in self.stream_items:
            yield item
        if self.raise_after is not None:
            raise self.raise_after


class GraphBuilderSpy:
    def __init__(self, compiled: FakeCompiledAgent) -> None:
        self.compiled = compiled
        self.kwargs: dict[str, Any] = {}

    def __call__(self, **kwargs) -> FakeCompiledAgent:
        self.kwargs = kwargs
        return self.compiled


def _model_factory(model: str, thinking: str) -> FakeListChatModel:  # noqa: ARG001
    return FakeListChatModel(responses=["unused"])


def _agent(compiled: FakeCompiledAgent, **kwargs) -> tuple[LangGraphChatAgent, GraphBuilderSpy]:
    builder = GraphBuilderSpy(compiled)
    agent = LangGraphChatAgent(model_factory=_model_factory, graph_builder=builder, max_steps=7, **kwargs)
    return agent, builder


@pytest.mark.asyncio
async def test_astream_maps_deltas_tool_events_and_final_result() -> None:
    compiled = FakeCompiledAgent(
        [
            (
                "messages",
                (_Chunk("", additional_kwargs={"reasoning_content": "Listing files"}), {"langgraph_node": "model"}),
            ),
            (
                "updates",
                {"model": {"messages": [_ModelMessage(tool_calls=[{"id": "tu-1", "name": "Bash", "args": {"command": "ls"}}])]}},
            ),
            ("updates", {"tools": {"messages": [_ToolMessage(tool_call_id="tu-1", content="a.txt")]}}),
            ("messages", (_Chunk([{"type": "text", "text": "Found a.txt"}]), {"langgraph_node": "model"})),
            ("messages", (_Chunk("ignored tool chatter"), {"langgraph_node": "tools"})),
            ("updates", {"model": {"messages": [_ModelMessage(content="Found a.txt")]}}),
        ]
    )
    agent, _ = _agent(compiled)

    events = [event async for event in agent.astream("list files", options=RunOptions(thread_id="S", model="gpt-5.2"))]

    assert isinstance(events[0], SystemStatus)
    assert events[0].data["thread_id"] == "S"
    assert events[1:] == [
        ThinkingDelta(text="Listing files"),
        ToolUse(id="tu-1", name="Bash", input={"command": "ls"}),
        ToolResult(tool_use_id="tu-1", content="a.txt", is_error=False),
        TextDelta(text="Found a.txt"),
        TurnResult(result="Found a.txt", usage=events[-1].usage),
    ]
    _, kwargs = compiled.calls[0]
    assert kwargs["stream_mode"] == ["messages", "updates"]
    assert kwargs["config"] == {"configurable": {"thread_id": "S"}, "recursion_limit": 7}


@pytest.mark.asyncio
async def test_astream_accumulates_usage_from_model_chunks() -> None:
    compiled = FakeCompiledAgent(
        [
            (
                "messages",
                (
                    _Chunk(
                        "Hi",
                        usage_metadata={
                            "input_tokens": 12,
                            "output_tokens": 3,
                            "input_token_details": {"cache_read": 8, "cache_creation": 2},
                        },
                    ),
                    {"langgraph_node": "model"},
                ),
            ),
            ("messages", (_Chunk("!", usage_metadata={"input_tokens": 0, "output_tokens": 1}), {"langgraph_node": "model"})),
        ]
    )
    agent, _ = _agent(compiled)

    events = [event async for event in agent.astream("hi", options=RunOptions(thread_id="S", model="m"))]

    result = events[-1]
    assert isinstance(result, TurnResult)
    assert result.usage is not None
    assert result.usage.input_tokens == 12
    assert result.usage.output_tokens == 4
    assert result.usage.cache_read_input_tokens == 8
    assert result.usage.cache_creation_input_tokens == 2


@pytest.mark.asyncio
async def test_astream_reads_reasoning_summary_blocks() -> None:
    compiled = FakeCompiledAgent(
        [
            (
                "messages",
                (
                    _Chunk([{"type": "reasoning", "summary": [{"type": "summary_text", "text": "Plan"}]}]),
                    {"langgraph_node": "model"},
                ),
            ),
        ]
    )
    agent, _ = _agent(compiled)

    events = [event async for event in agent.astream("hi", options=RunOptions(thread_id="S", model="m"))]

    assert ThinkingDelta(text="Plan") in events


@pytest.mark.asyncio
async def test_tool_errors_are_flagged() -> None:
    compiled = FakeCompiledAgent(
        [("updates", {"tools": {"messages": [_ToolMessage(tool_call_id="tu-1", content="boom", status="error")]}})]
    )
    agent, _ = _agent(compiled)

    events = [event async for event in agent.astream("hi", options=RunOptions(thread_id="S", model="m"))]

    assert ToolResult(tool_use_id="tu-1", content="boom", is_error=True) in events


@pytest.mark.asyncio
async def test_step_limit_becomes_error_result() -> None:
    compiled = FakeCompiledAgent([], raise_after=GraphRecursionError("too deep"))
    agent, _ = _agent(compiled)

    events = [event async for event in agent.astream("hi", options=RunOptions(thread_id="S", model="m"))]

    assert events[-1] == TurnResult(is_error=True, errors=(STEP_LIMIT_MESSAGE,), usage=events[-1].usage)


@pytest.mark.asyncio
async def test_tools_are_guarded_by_the_permission_handler() -> None:
    invocations: list[str] = []

    def _echo(text: str) -> str:
        invocations.append(text)
        return text

    echo_tool = StructuredTool.from_function(func=_echo, name="Echo", description="Echo text.")
    decisions: list[tuple[str, dict]] = []

    async def handler(tool_name: str, tool_input: dict) -> PermissionResult:
        decisions.append((tool_name, tool_input))
        return PermissionResult(behavior="deny", message="Permission denied by user")

    compiled = FakeCompiledAgent([])
    agent, builder = _agent(compiled, tools_factory=lambda options: [echo_tool])

    events = [
        event
        async for event in agent.astream(
            "hi",
            options=RunOptions(thread_id="S", model="m", system_prompt="Be brief.", permission_handler=handler),
        )
    ]

    assert events[0].data["tools"] == ["Echo"]
    assert builder.kwargs["system_prompt"] == "Be brief."
    guarded = builder.kwargs["tools"][0]
    assert guarded.name == "Echo"
    assert await guarded.ainvoke({"text": "hello"}) == "Permission denied by user"
    assert decisions == [("Echo", {"text": "hello"})]
    assert invocations == []


@pytest.mark.asyncio
async def test_aclose_exits_checkpointer_context_once() -> None:
    class _CheckpointerContext:
        def __init__(self) -> None:
            self.exits = 0

        async def __aexit__(self, *args) -> None:
            self.exits += 1

    context = _CheckpointerContext()
    agent, _ = _agent(FakeCompiledAgent([]), checkpointer_cm=context)

    await agent.aclose()
    await agent.aclose()

    assert context.exits == 1
