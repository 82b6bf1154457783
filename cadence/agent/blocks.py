"""Content blocks and chat messages exchanged with the Messages API.

Each block type knows how to render itself in Anthropic API format, so
the history can hold typed blocks and only become dicts at the wire.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, Union

Role = Literal["user", "assistant"]


@dataclass
class TextBlock:
    text: str

    def to_api(self) -> dict[str, Any]:
        return {"type": "text", "text": self.text}


@dataclass
class ToolUseBlock:
    """A completed tool invocation request; `input` is parsed JSON."""

    id: str
    name: str
    input: dict[str, Any] = field(default_factory=dict)

    def to_api(self) -> dict[str, Any]:
        return {"type": "tool_use", "id": self.id, "name": self.name, "input": self.input}


@dataclass
class ToolResultBlock:
    tool_use_id: str
    content: str  # JSON-encoded ToolResult

    def to_api(self) -> dict[str, Any]:
        return {"type": "tool_result", "tool_use_id": self.tool_use_id, "content": self.content}


@dataclass
class DocumentBlock:
    media_type: str
    data: str  # base64

    def to_api(self) -> dict[str, Any]:
        return {
            "type": "document",
            "source": {"type": "base64", "media_type": self.media_type, "data": self.data},
        }


@dataclass
class ImageBlock:
    media_type: str
    data: str  # base64

    def to_api(self) -> dict[str, Any]:
        return {
            "type": "image",
            "source": {"type": "base64", "media_type": self.media_type, "data": self.data},
        }


ContentBlock = Union[TextBlock, ToolUseBlock, ToolResultBlock, DocumentBlock, ImageBlock]


@dataclass
class ChatMessage:
    """A single history entry: plain text or a list of content blocks."""

    role: Role
    content: str | list[ContentBlock]

    def to_api(self) -> dict[str, Any]:
        if isinstance(self.content, str):
            return {"role": self.role, "content": self.content}
        return {"role": self.role, "content": [block.to_api() for block in self.content]}

    def plain_text(self) -> str:
        """Text of the message with non-text blocks ignored."""
        if isinstance(self.content, str):
            return self.content
        return "".join(b.text for b in self.content if isinstance(b, TextBlock))
