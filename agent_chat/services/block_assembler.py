from __future__ import annotations

import logging
from typing import Any

from agent_chat.services.chat_models import MessageBlock, TextBlock, ThinkingBlock, ToolResultPayload, ToolUseBlock

logger = logging.getLogger(__name__)


def plain_text(blocks: list[MessageBlock]) -> str:
    """Joined content of all text blocks, used as the message's plain-text fallback."""
    parts = [block.text.strip() for block in blocks if isinstance(block, TextBlock)]
    return "\n\n".join(part for part in parts if part)


class ToolResultCorrelator:
    """Index of tool_use blocks by request id for late-bound results."""

    def __init__(self) -> None:
        self._blocks: dict[str, ToolUseBlock] = {}

    def register(self, block: ToolUseBlock) -> None:
        if block.id in self._blocks:
            logger.warning("duplicate tool_use id; later block wins", extra={"tool_use_id": block.id})
        self._blocks[block.id] = block

    def attach(self, tool_use_id: str, result: ToolResultPayload) -> ToolUseBlock | None:
        """Attach ``result`` to the matching block; returns the block or ``None`` when unmatched."""
        block = self._blocks.get(tool_use_id)
        if block is None:
            logger.warning("tool result has no matching tool_use block", extra={"tool_use_id": tool_use_id})
            return None
        if block.result is not None:
            logger.warning("tool result already attached; ignoring duplicate", extra={"tool_use_id": tool_use_id})
            return None
        block.result = result
        return block

    def clear(self) -> None:
        self._blocks.clear()


class BlockAssembler:
    """Folds streamed deltas into ordered thinking/text/tool_use blocks.

    Consecutive fragments of the same kind merge into the open block. A tool_use
    block, or a delta of the other kind, closes it. Blocks are never reordered.
    ``finalize`` hands the blocks over once per turn; call ``reset`` before reuse.
    """

    def __init__(self) -> None:
        self._blocks: list[MessageBlock] = []
        self._open: ThinkingBlock | TextBlock | None = None
        self._correlator = ToolResultCorrelator()
        self._finalized = False

    @property
    def blocks(self) -> list[MessageBlock]:
        return list(self._blocks)

    @property
    def finalized(self) -> bool:
        return self._finalized

    def on_thinking_delta(self, text: str) -> None:
        self._ensure_open_for_writes()
        if isinstance(self._open, ThinkingBlock):
            self._open.text += text
            return
        block = ThinkingBlock(text=text)
        self._blocks.append(block)
        self._open = block

    def on_text_delta(self, text: str) -> None:
        self._ensure_open_for_writes()
        if isinstance(self._open, TextBlock):
            self._open.text += text
            return
        block = TextBlock(text=text)
        self._blocks.append(block)
        self._open = block

    def on_tool_use(self, tool_use_id: str, name: str, tool_input: dict[str, Any] | None = None) -> ToolUseBlock:
        self._ensure_open_for_writes()
        block = ToolUseBlock(id=tool_use_id, name=name, input=dict(tool_input or {}))
        self._blocks.append(block)
        self._correlator.register(block)
        self._open = None
        return block

    def on_tool_result(self, tool_use_id: str, result: ToolResultPayload) -> ToolUseBlock | None:
        if self._finalized:
            logger.warning("tool result arrived after assembly was finalized", extra={"tool_use_id": tool_use_id})
            return None
        return self._correlator.attach(tool_use_id, result)

    def text(self) -> str:
        return plain_text(self._blocks)

    def finalize(self) -> list[MessageBlock]:
        if self._finalized:
            raise RuntimeError("block assembler already finalized for this turn; call reset() first")
        blocks = [block for block in self._blocks if not self._is_empty(block)]
        self._clear()
        self._finalized = True
        return blocks

    def reset(self) -> None:
        self._clear()
        self._finalized = False

    def _clear(self) -> None:
        self._blocks = []
        self._open = None
        self._correlator.clear()

    def _ensure_open_for_writes(self) -> None:
        if self._finalized:
            raise RuntimeError("block assembler is finalized; call reset() before the next turn")

    @staticmethod
    def _is_empty(block: MessageBlock) -> bool:
        return isinstance(block, (ThinkingBlock, TextBlock)) and not block.text
