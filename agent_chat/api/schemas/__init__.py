from agent_chat.api.schemas.chat import (
    AbortResponse,
    ChatDetailResponse,
    ChatMessageResponse,
    ChatSessionResponse,
    CreateChatRequest,
    PermissionResponseRequest,
    ProvideInputRequest,
    SendMessageRequest,
)

__all__ = [
    "AbortResponse",
    "ChatDetailResponse",
    "ChatMessageResponse",
    "ChatSessionResponse",
    "CreateChatRequest",
    "PermissionResponseRequest",
    "ProvideInputRequest",
    "SendMessageRequest",
]
