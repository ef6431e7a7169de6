from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from langchain_core.tools import StructuredTool

logger = logging.getLogger(__name__)

BASH_TOOL = "Bash"

_MAX_OUTPUT_CHARS = 30_000


class ShellTool:
    """Runs a shell command inside the session working directory."""

    def __init__(self, *, working_directory: Path, timeout_seconds: float) -> None:
        self._working_directory = working_directory
        self._timeout_seconds = timeout_seconds

    async def run(self, command: str, timeout_seconds: float | None = None) -> str:
        timeout = min(timeout_seconds or self._timeout_seconds, self._timeout_seconds)
        logger.debug("launching shell command", extra={"cwd": str(self._working_directory), "timeout": timeout})
        process = await asyncio.create_subprocess_exec(
            "/bin/bash",
            "-c",
            command,
            cwd=self._working_directory,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
        )
        try:
            stdout, _ = await asyncio.wait_for(process.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            logger.warning("shell command timed out", extra={"timeout": timeout})
            return f"Command timed out after {timeout:g} seconds"
        except asyncio.CancelledError:
            process.kill()
            await process.wait()
            raise

        output = stdout.decode("utf-8", errors="replace")
        if len(output) > _MAX_OUTPUT_CHARS:
            output = output[:_MAX_OUTPUT_CHARS] + "\n... output truncated"
        if process.returncode != 0:
            return f"{output}\nExit code: {process.returncode}".lstrip()
        return output


def build_shell_tool(*, working_directory: Path, timeout_seconds: float) -> StructuredTool:
    shell = ShellTool(working_directory=working_directory, timeout_seconds=timeout_seconds)

    async def _bash(command: str, timeout_seconds: float | None = None) -> str:
        return await shell.run(command, timeout_seconds=timeout_seconds)

    return StructuredTool.from_function(
        coroutine=_bash,
        name=BASH_TOOL,
        description=(
            "Run a bash command in the session working directory and return its combined stdout/stderr. "
            "Non-zero exit codes are reported after the output."
        ),
    )
