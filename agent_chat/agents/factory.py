from __future__ import annotations

import logging
from pathlib import Path

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.language_models.fake_chat_models import FakeListChatModel
from langchain_core.tools import BaseTool
from langchain_openai import ChatOpenAI

from agent_chat.agents.base import ChatAgent, RunOptions
from agent_chat.agents.langgraph_agent import LangGraphChatAgent
from agent_chat.agents.tools import build_builtin_tools
from agent_chat.core.settings import Settings

logger = logging.getLogger(__name__)

_MOCK_MESSAGE_DELIMITER = "\n\n--- message ---\n\n"


def _load_mock_messages(messages_file: str) -> list[str]:
    path = Path(messages_file)
    raw_content = path.read_text(encoding="utf-8")
    parsed_messages = [chunk.strip() for chunk in raw_content.split(_MOCK_MESSAGE_DELIMITER)]
    messages = [message for message in parsed_messages if message]
    if not messages:
        raise ValueError(
            f"No mock messages found in {path}. Use delimiter {_MOCK_MESSAGE_DELIMITER!r} between messages."
        )
    return messages


def _build_mock_model_factory(settings: Settings):
    fake_responses = _load_mock_messages(messages_file=settings.chat_agent_mock_messages_file)
    logger.info("using FakeListChatModel chat agent", extra={"responses_count": len(fake_responses)})
    model = FakeListChatModel(responses=fake_responses)

    def _model_for(model_name: str, thinking: str) -> BaseChatModel:  # noqa: ARG001
        return model

    return _model_for


def _build_provider_model_factory(settings: Settings):
    logger.info("using model-provider chat agent", extra={"default_model": settings.chat_default_model})

    def _model_for(model_name: str, thinking: str) -> BaseChatModel:
        options = {"reasoning_effort": "high"} if thinking == "enabled" else {}
        return ChatOpenAI(
            model=model_name or settings.chat_default_model,
            base_url=settings.model_provider_base_url,
            api_key=settings.model_provider_api_key,
            temperature=settings.chat_agent_temperature,
            streaming=True,
            stream_usage=True,
            **options,
        )

    return _model_for


def _build_tools_factory(settings: Settings):
    def _tools_for(options: RunOptions) -> list[BaseTool]:
        return build_builtin_tools(
            working_directory=options.working_directory,
            allowed_tools=options.allowed_tools,
            shell_timeout_seconds=settings.chat_shell_timeout_seconds,
        )

    return _tools_for


async def build_chat_agent(settings: Settings) -> ChatAgent:
    """Create the chat agent with real or fake model backends."""

    if settings.chat_agent_use_mock:
        return await LangGraphChatAgent.create(
            model_factory=_build_mock_model_factory(settings),
            chat_db_dsn=settings.chat_db_dsn,
            max_steps=settings.chat_agent_max_steps,
        )
    return await LangGraphChatAgent.create(
        model_factory=_build_provider_model_factory(settings),
        chat_db_dsn=settings.chat_db_dsn,
        tools_factory=_build_tools_factory(settings),
        max_steps=settings.chat_agent_max_steps,
    )
