from __future__ import annotations

from datetime import datetime
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from langchain_core.tools import StructuredTool, ToolException

CURRENT_TIME_TOOL = "CurrentTime"


def current_time(timezone: str = "UTC") -> str:
    try:
        zone = ZoneInfo(timezone)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ToolException(f"unknown timezone: {timezone}") from exc
    return datetime.now(tz=zone).isoformat()


def build_current_time_tool() -> StructuredTool:
    return StructuredTool.from_function(
        func=current_time,
        name=CURRENT_TIME_TOOL,
        description="Return the current date and time as ISO 8601 in the given IANA timezone (default UTC).",
        handle_tool_error=True,
    )
