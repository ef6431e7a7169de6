from __future__ import annotations

import asyncio
from collections.abc import Callable
import logging

logger = logging.getLogger(__name__)

CLIENT_ABORT = "client_abort"
CLIENT_DISCONNECTED = "client_disconnected"
TURN_TIMEOUT = "turn_timeout"
SESSION_DELETED = "session_deleted"
SHUTDOWN = "shutdown"


class CancellationScope:
    """Single cancellation signal for one turn.

    ``cancel`` runs the registered callbacks exactly once. After ``close`` (natural
    completion) it is a no-op.
    """

    def __init__(self, *, name: str = "") -> None:
        self._name = name
        self._callbacks: list[Callable[[], object]] = []
        self._event = asyncio.Event()
        self._reason: str | None = None
        self._closed = False
        self._timer: asyncio.TimerHandle | None = None

    @property
    def cancelled(self) -> bool:
        return self._reason is not None

    @property
    def reason(self) -> str | None:
        return self._reason

    def on_cancel(self, callback: Callable[[], object]) -> None:
        self._callbacks.append(callback)

    def arm_timeout(self, timeout_seconds: float) -> None:
        """Trigger the same cancellation path when the turn outlives ``timeout_seconds``."""
        if self._timer is not None:
            self._timer.cancel()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(timeout_seconds, self.cancel, TURN_TIMEOUT)

    def cancel(self, reason: str = CLIENT_ABORT) -> bool:
        if self._closed or self._reason is not None:
            return False
        self._reason = reason
        self._disarm()
        logger.info("turn cancelled", extra={"turn": self._name, "reason": reason})
        for callback in self._callbacks:
            try:
                callback()
            except Exception:
                logger.exception("cancellation callback failed", extra={"turn": self._name})
        self._event.set()
        return True

    async def wait(self) -> str | None:
        await self._event.wait()
        return self._reason

    def close(self) -> None:
        self._closed = True
        self._disarm()
        self._callbacks.clear()

    def _disarm(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
