from pathlib import Path

from langchain_core.tools import StructuredTool

from agent_chat.agents.base import ASK_USER_QUESTION_TOOL
from agent_chat.agents.tools.ask_user import build_ask_user_question_tool
from agent_chat.agents.tools.current_time import CURRENT_TIME_TOOL, build_current_time_tool
from agent_chat.agents.tools.files import GLOB_TOOL, READ_TOOL, build_file_tools
from agent_chat.agents.tools.permissions import guard_tool
from agent_chat.agents.tools.shell import BASH_TOOL, build_shell_tool

BUILTIN_TOOL_NAMES = (BASH_TOOL, READ_TOOL, GLOB_TOOL, CURRENT_TIME_TOOL, ASK_USER_QUESTION_TOOL)


def build_builtin_tools(
    *,
    working_directory: str | None,
    allowed_tools: list[str] | None = None,
    shell_timeout_seconds: float = 120,
) -> list[StructuredTool]:
    """Build the built-in tools, keeping only ``allowed_tools`` when the agent restricts them.

    ``AskUserQuestion`` is always available because it drives clarification prompts.
    """
    root = Path(working_directory).expanduser().resolve() if working_directory else Path.cwd()
    tools = [
        build_shell_tool(working_directory=root, timeout_seconds=shell_timeout_seconds),
        *build_file_tools(working_directory=root),
        build_current_time_tool(),
        build_ask_user_question_tool(),
    ]
    if not allowed_tools:
        return tools
    allowed = {*allowed_tools, ASK_USER_QUESTION_TOOL}
    return [tool for tool in tools if tool.name in allowed]


__all__ = [
    "BUILTIN_TOOL_NAMES",
    "build_builtin_tools",
    "guard_tool",
]
