"""Tests for NDJSON wire events."""

import json

import pytest
from pydantic import ValidationError

from cadence.events import (
    ChunkEvent,
    DoneEvent,
    ErrorEvent,
    ToolDoneEvent,
    ToolStartEvent,
    decode_event,
    encode_event,
    ndjson_stream,
)


class TestEncodeEvent:
    def test_chunk(self):
        assert encode_event(ChunkEvent(text="Hel")) == b'{"type":"chunk","text":"Hel"}\n'

    def test_tool_events(self):
        start = json.loads(encode_event(ToolStartEvent(tool="get_weather", label="Checking the weather")))
        done = json.loads(encode_event(ToolDoneEvent(tool="get_weather", success=False)))
        assert start == {"type": "tool_start", "tool": "get_weather", "label": "Checking the weather"}
        assert done == {"type": "tool_done", "tool": "get_weather", "success": False}

    def test_done_uses_camel_case_keys(self):
        event = DoneEvent(user_id="u1", user_created_at=1000, assistant_id="a1", assistant_created_at=2000)
        assert json.loads(encode_event(event)) == {
            "type": "done",
            "userId": "u1",
            "userCreatedAt": 1000,
            "assistantId": "a1",
            "assistantCreatedAt": 2000,
        }

    def test_error(self):
        assert json.loads(encode_event(ErrorEvent(error="boom"))) == {"type": "error", "error": "boom"}

    def test_one_line_per_event(self):
        line = encode_event(ChunkEvent(text="line one\nline two"))
        assert line.count(b"\n") == 1
        assert line.endswith(b"\n")


class TestDecodeEvent:
    def test_discriminates_on_type(self):
        event = decode_event('{"type":"done","userId":"u","userCreatedAt":1,"assistantId":"a","assistantCreatedAt":2}')
        assert isinstance(event, DoneEvent)
        assert event.assistant_id == "a"

    def test_unknown_type_rejected(self):
        with pytest.raises(ValidationError):
            decode_event('{"type":"progress","pct":50}')

    def test_decodes_encoded_bytes(self):
        assert decode_event(encode_event(ToolDoneEvent(tool="x", success=True))) == ToolDoneEvent(tool="x", success=True)


async def test_ndjson_stream_preserves_order():
    async def events():
        yield ChunkEvent(text="a")
        yield ChunkEvent(text="b")
        yield ErrorEvent(error="stop")

    lines = [line async for line in ndjson_stream(events())]
    assert [json.loads(line)["type"] for line in lines] == ["chunk", "chunk", "error"]


async def test_ndjson_stream_closes_source():
    closed = []

    async def events():
        try:
            yield ChunkEvent(text="a")
            yield ChunkEvent(text="b")
        finally:
            closed.append(True)

    stream = ndjson_stream(events())
    assert await anext(stream) == b'{"type":"chunk","text":"a"}\n'
    await stream.aclose()
    assert closed == [True]
