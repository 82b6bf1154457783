"""One model round: stream a response and rebuild its content blocks.

BlockAccumulator turns partial provider signals into complete text and
tool-use blocks. RoundExecutor opens one streamed request, feeds the
accumulator and forwards text deltas to the caller as chunk events.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator
from contextlib import aclosing
from typing import Any

from cadence.agent.blocks import ToolUseBlock
from cadence.agent.provider import ModelProvider, ProviderError, StreamEvent
from cadence.agent.state import RoundState, ToolBuilder, TurnState
from cadence.events import ChunkEvent

logger = logging.getLogger(__name__)


class BlockAccumulator:
    """Feeds provider signals into a RoundState (and the turn's text).

    Only one tool builder is open at a time. A tool call is added to the
    round's completed list only once its input JSON parses at block stop.
    The Messages API requires a tool_use input to be a JSON object, so input
    that parses to anything else (a list, a string) is dropped like a parse
    failure; echoing it back in history would get the next request rejected.
    """

    def __init__(self, round_state: RoundState, turn_state: TurnState) -> None:
        self.round = round_state
        self.turn = turn_state

    def feed(self, event: StreamEvent) -> None:
        if event.type == "block_start":
            if event.block_kind == "tool_use":
                if self.round.current_tool is not None:
                    logger.warning(
                        "Tool block %s started while %s still open; closing it first",
                        event.tool_id, self.round.current_tool.id,
                    )
                    self._close_tool()
                self.round.current_tool = ToolBuilder(id=event.tool_id, name=event.tool_name)

        elif event.type == "text_delta":
            self.round.text += event.text
            self.turn.text_parts.append(event.text)

        elif event.type == "input_delta":
            if self.round.current_tool is not None:
                self.round.current_tool.input_str += event.text

        elif event.type == "block_stop":
            self._close_tool()

        elif event.type == "message_delta":
            if event.stop_reason:
                self.round.stop_reason = event.stop_reason

    def _close_tool(self) -> None:
        builder = self.round.current_tool
        if builder is None:
            return
        self.round.current_tool = None
        try:
            parsed: Any = json.loads(builder.input_str) if builder.input_str else {}
        except json.JSONDecodeError as e:
            logger.warning(
                "Dropping tool call %s (%s): input is not valid JSON (%s): %.200s",
                builder.id, builder.name, e, builder.input_str,
            )
            return
        if not isinstance(parsed, dict):
            logger.warning(
                "Dropping tool call %s (%s): input is %s, but tool_use input must be a JSON object",
                builder.id, builder.name, type(parsed).__name__,
            )
            return
        self.round.tool_calls.append(ToolUseBlock(id=builder.id, name=builder.name, input=parsed))


class RoundExecutor:
    """Runs exactly one request/response cycle against the provider.

    The round's outcome lands in the RoundState passed in; the iterator
    yields a ChunkEvent for every text delta as it arrives. Provider errors
    propagate untouched. ``round_timeout`` bounds the total time spent
    waiting on the provider within the round (None or 0 disables it).
    """

    def __init__(self, provider: ModelProvider, round_timeout: float | None = None) -> None:
        self._provider = provider
        self._round_timeout = round_timeout or None

    async def execute(
        self,
        round_state: RoundState,
        turn_state: TurnState,
        system_prompt: str,
        tools: list[dict[str, Any]],
    ) -> AsyncIterator[ChunkEvent]:
        accumulator = BlockAccumulator(round_state, turn_state)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._round_timeout if self._round_timeout else None

        signals = self._provider.stream(
            system_prompt=system_prompt,
            messages=turn_state.api_messages(),
            tools=tools or None,
        )
        async with aclosing(signals) as stream:
            while True:
                try:
                    async with asyncio.timeout_at(deadline):
                        event = await anext(stream)
                except StopAsyncIteration:
                    break
                except TimeoutError:
                    raise ProviderError(
                        f"Model round timed out after {self._round_timeout:.0f}s"
                    ) from None

                accumulator.feed(event)
                if event.type == "text_delta" and event.text:
                    yield ChunkEvent(text=event.text)

        if round_state.current_tool is not None:
            logger.warning(
                "Dropping tool call %s (%s): stream ended before its block stopped",
                round_state.current_tool.id, round_state.current_tool.name,
            )
            round_state.current_tool = None
