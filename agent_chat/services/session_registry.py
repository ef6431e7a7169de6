from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

from agent_chat.services.cancellation import SHUTDOWN
from agent_chat.services.chat_models import SessionStatus
from agent_chat.services.errors import SessionBusyError

if TYPE_CHECKING:
    from agent_chat.services.session_mediator import SessionMediator

logger = logging.getLogger(__name__)


class SessionRegistry:
    """Process-wide map of session id to the mediator driving its active turn.

    A session id holds at most one mediator. The entry is removed by the mediator
    that owns it when its turn reaches a terminal state.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._active: dict[str, SessionMediator] = {}

    def claim(self, session_id: str, mediator: SessionMediator) -> None:
        with self._lock:
            if session_id in self._active:
                raise SessionBusyError(session_id)
            self._active[session_id] = mediator
        logger.debug("session turn claimed", extra={"session_id": session_id})

    def release(self, session_id: str, mediator: SessionMediator) -> bool:
        with self._lock:
            if self._active.get(session_id) is not mediator:
                return False
            del self._active[session_id]
        logger.debug("session turn released", extra={"session_id": session_id})
        return True

    def get(self, session_id: str) -> SessionMediator | None:
        with self._lock:
            return self._active.get(session_id)

    def status(self, session_id: str) -> SessionStatus:
        mediator = self.get(session_id)
        return mediator.status if mediator is not None else SessionStatus.IDLE

    @property
    def active_count(self) -> int:
        with self._lock:
            return len(self._active)

    def cancel_all(self, reason: str = SHUTDOWN) -> int:
        with self._lock:
            mediators = list(self._active.values())
        cancelled = sum(1 for mediator in mediators if mediator.cancel(reason))
        if cancelled:
            logger.info("cancelled active turns", extra={"count": cancelled, "reason": reason})
        return cancelled
