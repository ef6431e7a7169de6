from __future__ import annotations

import logging
from typing import Any

from langchain_core.tools import BaseTool, StructuredTool
from pydantic_core import to_jsonable_python

from agent_chat.agents.base import PermissionHandler

logger = logging.getLogger(__name__)


def guard_tool(tool: BaseTool, handler: PermissionHandler) -> StructuredTool:
    """Wrap ``tool`` so every invocation is approved by ``handler`` first.

    A denial does not fail the tool call: the handler's message becomes the tool
    output, so the model can react to it and carry on.
    """

    async def _guarded(**kwargs: Any) -> Any:
        decision = await handler(tool.name, to_jsonable_python(kwargs))
        if decision.behavior != "allow":
            logger.debug("tool invocation denied", extra={"tool_name": tool.name})
            return decision.message
        return await tool.ainvoke(kwargs)

    return StructuredTool.from_function(
        coroutine=_guarded,
        name=tool.name,
        description=tool.description,
        args_schema=tool.args_schema,
    )
