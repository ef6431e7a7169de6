from __future__ import annotations

import json
from typing import Any, Literal, TypedDict


class SystemStatusEventData(TypedDict):
    subtype: str
    data: dict[str, Any]


class AssistantBlockEventData(TypedDict):
    blocks: list[dict[str, Any]]


class DeltaEventData(TypedDict):
    type: Literal["thinking_delta", "text_delta"]
    text: str


class PermissionRequestEventData(TypedDict):
    tool_name: str
    input: dict[str, Any]


class UserInputRequiredEventData(TypedDict):
    input: dict[str, Any]


class ToolResultEventData(TypedDict):
    tool_use_id: str
    content: Any
    is_error: bool


class ResultEventData(TypedDict):
    subtype: Literal["success", "error"]
    is_error: bool
    result: str
    errors: list[str]
    usage: dict[str, int]


ChatStreamEventType = Literal[
    "system_status",
    "assistant_block",
    "delta",
    "permission_request",
    "user_input_required",
    "tool_result",
    "result",
]


class ChatStreamEvent(TypedDict):
    type: ChatStreamEventType
    data: (
        SystemStatusEventData
        | AssistantBlockEventData
        | DeltaEventData
        | PermissionRequestEventData
        | UserInputRequiredEventData
        | ToolResultEventData
        | ResultEventData
    )


def encode_sse_event(event: ChatStreamEvent, event_id: int | None = None) -> str:
    id_line = f"id: {event_id}\n" if event_id is not None else ""
    return f"event: {event['type']}\n{id_line}data: {json.dumps(event['data'], default=str)}\n\n"
