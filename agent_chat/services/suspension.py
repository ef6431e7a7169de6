from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
import logging
from typing import Any

from agent_chat.services.errors import SuspensionAlreadyPendingError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PermissionRequest:
    tool_name: str
    input: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class InputRequest:
    """Free-form input request; ``input`` carries the structured prompt when one exists."""

    input: dict[str, Any] = field(default_factory=dict)


PendingSuspension = PermissionRequest | InputRequest


class PermissionDecision(str, Enum):
    ALLOW = "allow"
    DENY = "deny"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class InputResolution:
    answer: str = ""
    cancelled: bool = False


_CANCELLED = object()

SuspendedCallback = Callable[[PendingSuspension], None]


class SuspensionSlot:
    """Holds the single pending suspension of a turn.

    Permission and input gates share one slot, so a turn can never wait on both at
    once. Resolution is single-use: later resolve or cancel calls return ``False``.
    """

    def __init__(self) -> None:
        self._pending: PendingSuspension | None = None
        self._waiter: asyncio.Future[Any] | None = None
        self._closed = False

    @property
    def pending(self) -> PendingSuspension | None:
        return self._pending

    @property
    def closed(self) -> bool:
        return self._closed

    async def suspend(self, request: PendingSuspension, on_suspended: SuspendedCallback | None = None) -> Any:
        """Wait until the request is resolved; returns the resolved value or the cancel marker."""
        if self._pending is not None:
            raise SuspensionAlreadyPendingError(
                f"cannot suspend for {type(request).__name__}: {type(self._pending).__name__} already pending"
            )
        if self._closed:
            return _CANCELLED

        waiter = asyncio.get_running_loop().create_future()
        self._pending = request
        self._waiter = waiter
        try:
            if on_suspended is not None:
                on_suspended(request)
            return await waiter
        finally:
            self._pending = None
            self._waiter = None

    def resolve(self, kind: type, value: Any) -> bool:
        if not isinstance(self._pending, kind) or self._waiter is None or self._waiter.done():
            logger.debug("ignoring resolution for non-pending suspension", extra={"kind": kind.__name__})
            return False
        self._waiter.set_result(value)
        return True

    def close(self) -> bool:
        """Cancel any pending wait and refuse future suspensions."""
        self._closed = True
        if self._waiter is None or self._waiter.done():
            return False
        self._waiter.set_result(_CANCELLED)
        return True


class PermissionGate:
    """Suspends a turn until the user allows or denies a tool invocation."""

    def __init__(self, slot: SuspensionSlot) -> None:
        self._slot = slot

    @property
    def pending(self) -> PermissionRequest | None:
        pending = self._slot.pending
        return pending if isinstance(pending, PermissionRequest) else None

    async def request(
        self,
        tool_name: str,
        tool_input: dict[str, Any] | None = None,
        *,
        on_suspended: SuspendedCallback | None = None,
    ) -> PermissionDecision:
        value = await self._slot.suspend(PermissionRequest(tool_name=tool_name, input=dict(tool_input or {})), on_suspended)
        if value is _CANCELLED:
            return PermissionDecision.CANCELLED
        return PermissionDecision.ALLOW if value else PermissionDecision.DENY

    def allow(self) -> bool:
        return self._slot.resolve(PermissionRequest, True)

    def deny(self) -> bool:
        return self._slot.resolve(PermissionRequest, False)


class InputGate:
    """Suspends a turn until the user supplies free-form text."""

    def __init__(self, slot: SuspensionSlot) -> None:
        self._slot = slot

    @property
    def pending(self) -> InputRequest | None:
        pending = self._slot.pending
        return pending if isinstance(pending, InputRequest) else None

    async def request(
        self,
        prompt: dict[str, Any] | None = None,
        *,
        on_suspended: SuspendedCallback | None = None,
    ) -> InputResolution:
        value = await self._slot.suspend(InputRequest(input=dict(prompt or {})), on_suspended)
        if value is _CANCELLED:
            return InputResolution(cancelled=True)
        return InputResolution(answer=value)

    def provide(self, answer: str) -> bool:
        return self._slot.resolve(InputRequest, answer)
