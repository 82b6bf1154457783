"""Explicit per-round and per-turn state for the orchestrator loop."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from cadence.agent.blocks import ChatMessage, ContentBlock, TextBlock, ToolUseBlock

# Stop reason that asks for another round with tool results
TOOL_USE = "tool_use"


class FinishReason(str, Enum):
    NO_TOOL_USE = "no_tool_use"
    BUDGET_EXHAUSTED = "budget_exhausted"


@dataclass
class ToolBuilder:
    """A tool-use block whose input JSON is still streaming in."""

    id: str
    name: str
    input_str: str = ""


@dataclass
class RoundState:
    """Owned by one round; discarded once the round completes."""

    text: str = ""
    current_tool: ToolBuilder | None = None
    tool_calls: list[ToolUseBlock] = field(default_factory=list)
    stop_reason: str = ""

    @property
    def wants_tools(self) -> bool:
        return self.stop_reason == TOOL_USE and bool(self.tool_calls)

    def assistant_message(self) -> ChatMessage:
        """Assistant history entry: round text (if any) then its tool-use blocks."""
        blocks: list[ContentBlock] = []
        if self.text:
            blocks.append(TextBlock(text=self.text))
        blocks.extend(self.tool_calls)
        return ChatMessage(role="assistant", content=blocks)


@dataclass
class TurnState:
    """Owned by the orchestrator for the lifetime of one request."""

    history: list[ChatMessage]
    text_parts: list[str] = field(default_factory=list)
    round_index: int = 0
    finish_reason: FinishReason | None = None

    @property
    def text(self) -> str:
        """Cumulative assistant text across all rounds; this is what gets persisted."""
        return "".join(self.text_parts)

    def api_messages(self) -> list[dict[str, Any]]:
        return [message.to_api() for message in self.history]
