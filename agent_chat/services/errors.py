from __future__ import annotations

from collections.abc import Sequence


class ChatError(Exception):
    """Base class for chat failures that end a request or a turn."""


class NotFoundError(ChatError):
    """Raised when a chat session or agent does not exist."""

    def __init__(self, resource: str, resource_id: str) -> None:
        super().__init__(f"{resource} {resource_id!r} not found")
        self.resource = resource
        self.resource_id = resource_id


class SessionBusyError(ChatError):
    """Raised when a message is sent while the session already has an active turn."""

    def __init__(self, session_id: str) -> None:
        super().__init__(f"chat {session_id!r} already has an active turn")
        self.session_id = session_id


class SuspensionAlreadyPendingError(ChatError):
    """Raised when a gate is asked to suspend while another suspension is pending."""


class NoPendingInputError(ChatError):
    """Raised when an answer is posted for a session that is not awaiting input."""

    def __init__(self, session_id: str) -> None:
        super().__init__(f"chat {session_id!r} is not currently awaiting input")
        self.session_id = session_id


class NoPendingPermissionError(ChatError):
    """Raised when a permission decision is posted for a session that is not awaiting one."""

    def __init__(self, session_id: str) -> None:
        super().__init__(f"chat {session_id!r} is not currently awaiting a permission response")
        self.session_id = session_id


class AgentError(ChatError):
    """Terminal error reported by the agent for the current turn."""

    fallback_message = "The agent reported an error"

    def __init__(self, messages: Sequence[str] | None = None) -> None:
        self.messages = [message for message in (messages or []) if message] or [self.fallback_message]
        super().__init__("; ".join(self.messages))


class TransportFailure(AgentError):
    """The agent stream dropped or raised before producing a terminal result."""

    fallback_message = "The agent stream ended unexpectedly"
