"""Turn orchestrator -- drives a multi-round, tool-using model exchange.

One orchestrator serves every request; each call to ``run()`` owns its
own TurnState, so concurrent turns share nothing but the store and the
tool service.

The loop per turn:
1. Rewrite the newest user message around any attachments
2. Run a round (stream text to the caller as chunk events)
3. If the round did not ask for tools, finish
4. Otherwise append the assistant blocks, run every tool call in order,
   append one user message holding all tool results
5. Stop once the round budget is spent
6. Persist the cumulative assistant text and emit ``done``

Any failure ends the stream with a single ``error`` event instead.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import aclosing
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol

from cadence.agent.attachments import MAX_ATTACHMENTS, Attachment, apply_attachments
from cadence.agent.blocks import ChatMessage, ToolResultBlock
from cadence.agent.provider import ModelProvider
from cadence.agent.rounds import RoundExecutor
from cadence.agent.state import FinishReason, RoundState, TurnState
from cadence.agent.tools import ToolDispatchAdapter
from cadence.events import DoneEvent, ErrorEvent, WireEvent
from cadence.utils import to_millis

logger = logging.getLogger(__name__)

DEFAULT_ROUND_BUDGET = 10


class SavedMessage(Protocol):
    id: str
    created_at: datetime


class MessageSink(Protocol):
    """The part of the message store a turn writes to."""

    async def create_message(self, conversation_id: str, role: str, content: str) -> SavedMessage: ...

    async def touch_conversation(self, conversation_id: str) -> None: ...


@dataclass
class TurnRequest:
    """Everything one turn needs; built once per caller request."""

    conversation_id: str
    caller_id: str
    user_message: SavedMessage  # already persisted before streaming starts
    history: list[ChatMessage]
    system_prompt: str
    tools: list[dict[str, Any]] = field(default_factory=list)
    attachments: list[Attachment] = field(default_factory=list)
    round_budget: int = DEFAULT_ROUND_BUDGET

    def __post_init__(self) -> None:
        if self.round_budget < 1:
            raise ValueError(f"round_budget must be positive, got {self.round_budget}")
        if len(self.attachments) > MAX_ATTACHMENTS:
            raise ValueError(f"At most {MAX_ATTACHMENTS} attachments are allowed")


class TurnOrchestrator:
    """Runs turns: rounds against the provider, tools in between."""

    def __init__(
        self,
        provider: ModelProvider,
        dispatcher: ToolDispatchAdapter,
        store: MessageSink,
        round_timeout: float | None = None,
    ) -> None:
        self._rounds = RoundExecutor(provider, round_timeout=round_timeout)
        self._dispatcher = dispatcher
        self._store = store

    async def run(self, request: TurnRequest) -> AsyncIterator[WireEvent]:
        """Yield the turn's wire events, ending in exactly one done or error."""
        try:
            turn = TurnState(history=apply_attachments(request.history, request.attachments))
            async with aclosing(self._loop(turn, request)) as events:
                async for event in events:
                    yield event

            assistant = await self._store.create_message(request.conversation_id, "assistant", turn.text)
            await self._store.touch_conversation(request.conversation_id)
        except (asyncio.CancelledError, GeneratorExit):
            logger.info("Turn in %s abandoned by caller; nothing persisted", request.conversation_id[:8])
            raise
        except Exception as e:
            logger.exception("Turn failed in conversation %s", request.conversation_id[:8])
            yield ErrorEvent(error=str(e) or type(e).__name__)
            return

        logger.info(
            "Turn finished in %s: %s after %d round(s), %d chars",
            request.conversation_id[:8], turn.finish_reason.value if turn.finish_reason else "?",
            turn.round_index, len(turn.text),
        )
        yield DoneEvent(
            user_id=request.user_message.id,
            user_created_at=to_millis(request.user_message.created_at),
            assistant_id=assistant.id,
            assistant_created_at=to_millis(assistant.created_at),
        )

    async def _loop(self, turn: TurnState, request: TurnRequest) -> AsyncIterator[WireEvent]:
        while True:
            round_state = RoundState()
            logger.debug("Round %d of %d starting", turn.round_index + 1, request.round_budget)
            chunks = self._rounds.execute(round_state, turn, request.system_prompt, request.tools)
            async with aclosing(chunks) as stream:
                async for chunk in stream:
                    yield chunk

            if not round_state.wants_tools:
                turn.round_index += 1
                turn.finish_reason = FinishReason.NO_TOOL_USE
                return

            turn.history.append(round_state.assistant_message())
            results: list[ToolResultBlock] = []
            tool_events = self._dispatcher.run_all(round_state.tool_calls, request.caller_id, results)
            async with aclosing(tool_events) as stream:
                async for event in stream:
                    yield event
            turn.history.append(ChatMessage(role="user", content=list(results)))

            turn.round_index += 1
            if turn.round_index >= request.round_budget:
                logger.warning("Turn hit round budget of %d with tools still requested", request.round_budget)
                turn.finish_reason = FinishReason.BUDGET_EXHAUSTED
                return
