from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from agent_chat.services.chat_models import ChatMessage, ChatSession, MessageBlock, SessionStatus


class CreateChatRequest(BaseModel):
    agent_slug: str | None = Field(default=None, description="Agent whose configuration drives the chat; omit for a plain chat")
    working_directory: str | None = Field(default=None, description="Directory the agent's tools operate in")
    model: str | None = Field(default=None, description="Model override; defaults to the agent's or the server's model")


class SendMessageRequest(BaseModel):
    content: str = Field(..., min_length=1, description="User message text sent to the agent")


class ProvideInputRequest(BaseModel):
    answer: str = Field(..., description="Free-form answer to the agent's pending question")


class PermissionResponseRequest(BaseModel):
    allow: bool = Field(..., description="Whether the pending tool invocation may run")


class AbortResponse(BaseModel):
    cancelled: bool = Field(..., description="Whether an active turn was cancelled by this call")


class ChatSessionResponse(BaseModel):
    id: str
    title: str
    agent_slug: str | None
    model: str
    working_directory: str | None
    status: SessionStatus
    total_input_tokens: int
    total_output_tokens: int
    total_cache_creation_tokens: int
    total_cache_read_tokens: int
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_session(cls, session: ChatSession) -> "ChatSessionResponse":
        return cls.model_validate(session.model_dump())


class ChatMessageResponse(BaseModel):
    role: Literal["user", "assistant"]
    content: str
    blocks: list[MessageBlock] = Field(default_factory=list)
    timestamp: datetime

    @classmethod
    def from_message(cls, message: ChatMessage) -> "ChatMessageResponse":
        return cls(role=message.role, content=message.content, blocks=message.blocks, timestamp=message.timestamp)


class ChatDetailResponse(BaseModel):
    session: ChatSessionResponse
    messages: list[ChatMessageResponse]

