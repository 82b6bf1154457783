"""Agent module: the streaming, tool-using turn loop.

Public API: TurnOrchestrator + the request, state and tool types it uses.
"""

from cadence.agent.attachments import Attachment, apply_attachments, build_attachment_blocks
from cadence.agent.blocks import (
    ChatMessage,
    ContentBlock,
    DocumentBlock,
    ImageBlock,
    TextBlock,
    ToolResultBlock,
    ToolUseBlock,
)
from cadence.agent.orchestrator import TurnOrchestrator, TurnRequest
from cadence.agent.provider import AnthropicProvider, ProviderError, StreamEvent
from cadence.agent.rounds import BlockAccumulator, RoundExecutor
from cadence.agent.state import FinishReason, RoundState, TurnState
from cadence.agent.tools import (
    HttpToolService,
    ToolDispatchAdapter,
    ToolError,
    ToolRegistry,
    ToolResult,
)

__all__ = [
    "TurnOrchestrator",
    "TurnRequest",
    # Content
    "ChatMessage",
    "ContentBlock",
    "DocumentBlock",
    "ImageBlock",
    "TextBlock",
    "ToolResultBlock",
    "ToolUseBlock",
    # Attachments
    "Attachment",
    "apply_attachments",
    "build_attachment_blocks",
    # Provider
    "AnthropicProvider",
    "ProviderError",
    "StreamEvent",
    # Rounds
    "BlockAccumulator",
    "FinishReason",
    "RoundExecutor",
    "RoundState",
    "TurnState",
    # Tools
    "HttpToolService",
    "ToolDispatchAdapter",
    "ToolError",
    "ToolRegistry",
    "ToolResult",
]
