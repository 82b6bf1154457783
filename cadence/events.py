"""Wire events streamed to the caller during a turn.

Five event kinds, modelled as a closed union discriminated on ``type``.
Each event is serialized to one JSON object per line (NDJSON) and handed
to the response as soon as it is produced; nothing is buffered or
reordered here.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import aclosing
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

NDJSON_MEDIA_TYPE = "application/x-ndjson"


class ChunkEvent(BaseModel):
    type: Literal["chunk"] = "chunk"
    text: str


class ToolStartEvent(BaseModel):
    type: Literal["tool_start"] = "tool_start"
    tool: str
    label: str


class ToolDoneEvent(BaseModel):
    type: Literal["tool_done"] = "tool_done"
    tool: str
    success: bool


class DoneEvent(BaseModel):
    """Terminal success event; timestamps are epoch milliseconds."""

    model_config = ConfigDict(populate_by_name=True)

    type: Literal["done"] = "done"
    user_id: str = Field(alias="userId")
    user_created_at: int = Field(alias="userCreatedAt")
    assistant_id: str = Field(alias="assistantId")
    assistant_created_at: int = Field(alias="assistantCreatedAt")


class ErrorEvent(BaseModel):
    type: Literal["error"] = "error"
    error: str


WireEvent = Annotated[
    Union[ChunkEvent, ToolStartEvent, ToolDoneEvent, DoneEvent, ErrorEvent],
    Field(discriminator="type"),
]

_wire_adapter: TypeAdapter[WireEvent] = TypeAdapter(WireEvent)


def encode_event(event: WireEvent) -> bytes:
    """One NDJSON line for the event, newline included."""
    return event.model_dump_json(by_alias=True).encode() + b"\n"


def decode_event(line: str | bytes) -> WireEvent:
    """Parse one NDJSON line back into its event model."""
    return _wire_adapter.validate_json(line)


async def ndjson_stream(events: AsyncIterator[WireEvent]) -> AsyncIterator[bytes]:
    """Encode events as they arrive.

    Each yielded line is written to the client before the next event is
    pulled. If the client goes away the response stops iterating, and the
    event source is closed so the turn stops at its next suspension point.
    """
    async with aclosing(events) as source:
        async for event in source:
            yield encode_event(event)
