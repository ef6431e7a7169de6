from __future__ import annotations

import logging
from pathlib import Path

from langchain_core.tools import StructuredTool, ToolException

logger = logging.getLogger(__name__)

READ_TOOL = "Read"
GLOB_TOOL = "Glob"

_DEFAULT_LINE_LIMIT = 2_000
_MAX_LINE_CHARS = 2_000
_MAX_GLOB_RESULTS = 200


def resolve_path(working_directory: Path, path: str) -> Path:
    candidate = Path(path).expanduser()
    if not candidate.is_absolute():
        candidate = working_directory / candidate
    return candidate.resolve()


def read_file(working_directory: Path, file_path: str, offset: int = 0, limit: int = _DEFAULT_LINE_LIMIT) -> str:
    """Return ``limit`` lines starting at ``offset``, numbered from 1 like ``cat -n``."""
    path = resolve_path(working_directory, file_path)
    if not path.is_file():
        raise ToolException(f"file not found: {file_path}")

    offset = max(0, offset)
    limit = max(1, limit)
    lines: list[str] = []
    with path.open(encoding="utf-8", errors="replace") as handle:
        for number, line in enumerate(handle, start=1):
            if number <= offset:
                continue
            if len(lines) >= limit:
                break
            lines.append(f"{number:>6}\t{line.rstrip(chr(10))[:_MAX_LINE_CHARS]}")
    return "\n".join(lines)


def glob_files(working_directory: Path, pattern: str, path: str | None = None) -> list[str]:
    """Return matching files, most recently modified first."""
    root = resolve_path(working_directory, path) if path else working_directory
    if not root.is_dir():
        raise ToolException(f"directory not found: {path}")
    matches = [match for match in root.glob(pattern) if match.is_file()]
    matches.sort(key=lambda match: match.stat().st_mtime, reverse=True)
    if len(matches) > _MAX_GLOB_RESULTS:
        logger.debug("glob results truncated", extra={"matches_count": len(matches)})
    return [str(match) for match in matches[:_MAX_GLOB_RESULTS]]


def build_file_tools(*, working_directory: Path) -> list[StructuredTool]:
    def _read(file_path: str, offset: int = 0, limit: int = _DEFAULT_LINE_LIMIT) -> str:
        return read_file(working_directory, file_path, offset=offset, limit=limit)

    def _glob(pattern: str, path: str | None = None) -> list[str]:
        return glob_files(working_directory, pattern, path=path)

    return [
        StructuredTool.from_function(
            func=_read,
            name=READ_TOOL,
            description=(
                "Read a text file. Relative paths resolve against the session working directory. "
                "Use offset and limit to page through large files."
            ),
            handle_tool_error=True,
        ),
        StructuredTool.from_function(
            func=_glob,
            name=GLOB_TOOL,
            description="Find files matching a glob pattern such as '**/*.py', most recently modified first.",
            handle_tool_error=True,
        ),
    ]
