"""Test fixtures: in-memory SQLite store, scripted provider, fake tool service."""

import copy
import itertools
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

import pytest
import pytest_asyncio

from cadence.agent.provider import StreamEvent
from cadence.config import Settings
from cadence.storage.database import Database
from cadence.storage.store import MessageStore

# ---------------------------------------------------------------------------
# Scripted provider
# ---------------------------------------------------------------------------


def text_round(*parts: str, stop_reason: str = "end_turn") -> list[StreamEvent]:
    """Signals for a round that streams text and stops."""
    events = [StreamEvent(type="block_start", block_kind="text", index=0)]
    events += [StreamEvent(type="text_delta", text=p, index=0) for p in parts]
    events += [
        StreamEvent(type="block_stop", index=0),
        StreamEvent(type="message_delta", stop_reason=stop_reason),
        StreamEvent(type="message_stop"),
    ]
    return events


def tool_round(
    *tools: tuple[str, str, str],
    text: str = "",
    stop_reason: str = "tool_use",
) -> list[StreamEvent]:
    """Signals for a round requesting tools; each tool is (id, name, input_json)."""
    events: list[StreamEvent] = []
    index = 0
    if text:
        events += [
            StreamEvent(type="block_start", block_kind="text", index=0),
            StreamEvent(type="text_delta", text=text, index=0),
            StreamEvent(type="block_stop", index=0),
        ]
        index = 1
    for tool_id, name, input_json in tools:
        events.append(StreamEvent(type="block_start", block_kind="tool_use", tool_id=tool_id, tool_name=name, index=index))
        # Split the JSON into fragments the way the API streams it
        for i in range(0, len(input_json), 5):
            events.append(StreamEvent(type="input_delta", text=input_json[i:i + 5], index=index))
        events.append(StreamEvent(type="block_stop", index=index))
        index += 1
    events += [
        StreamEvent(type="message_delta", stop_reason=stop_reason),
        StreamEvent(type="message_stop"),
    ]
    return events


class ScriptedProvider:
    """Replays one list of signals per round; the last script repeats.

    An Exception instance inside a script is raised at that point.
    """

    def __init__(self, *rounds: list[Any]) -> None:
        self.rounds = list(rounds)
        self.calls: list[dict[str, Any]] = []

    async def stream(self, system_prompt, messages, tools=None):
        self.calls.append({
            "system_prompt": system_prompt,
            "messages": copy.deepcopy(messages),
            "tools": tools,
        })
        script = self.rounds[min(len(self.calls), len(self.rounds)) - 1]
        for event in script:
            if isinstance(event, Exception):
                raise event
            yield event


# ---------------------------------------------------------------------------
# Fake tool service and message sink
# ---------------------------------------------------------------------------


class FakeToolService:
    """Records calls; replies from a name -> result (or exception) table."""

    def __init__(self, replies: dict[str, Any] | None = None, labels: dict[str, str] | None = None) -> None:
        self.replies = replies or {}
        self._labels = labels or {}
        self.calls: list[tuple[str, dict[str, Any], str]] = []

    @property
    def labels(self) -> dict[str, str]:
        return dict(self._labels)

    def tool_definitions(self) -> list[dict[str, Any]]:
        return [
            {"name": name, "description": "", "input_schema": {"type": "object"}}
            for name in self.replies
        ]

    async def execute(self, tool_name, tool_input, caller_id):
        self.calls.append((tool_name, tool_input, caller_id))
        reply = self.replies.get(tool_name, {"success": False, "error": f"Unknown tool: {tool_name}"})
        if isinstance(reply, Exception):
            raise reply
        return reply


@dataclass
class SavedRecord:
    id: str
    created_at: datetime


@dataclass
class FakeMessageSink:
    """In-memory stand-in for MessageStore's write side."""

    fail_on_create: Exception | None = None
    messages: list[tuple[str, str, str]] = field(default_factory=list)
    touched: list[str] = field(default_factory=list)
    _ids: Any = field(default_factory=lambda: itertools.count(1))

    async def create_message(self, conversation_id, role, content):
        if self.fail_on_create is not None:
            raise self.fail_on_create
        self.messages.append((conversation_id, role, content))
        return SavedRecord(id=f"msg-{next(self._ids)}", created_at=datetime(2026, 2, 19, 14, 30, tzinfo=UTC))

    async def touch_conversation(self, conversation_id):
        self.touched.append(conversation_id)


# ---------------------------------------------------------------------------
# Database fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings() -> Settings:
    """Settings pointed at an in-memory SQLite database."""
    return Settings(database_url="sqlite+aiosqlite:///:memory:", max_rounds=10, round_timeout=5)


@pytest_asyncio.fixture
async def db(settings):
    """Fresh in-memory database per test."""
    database = Database(settings)
    await database.connect()
    yield database
    await database.disconnect()


@pytest_asyncio.fixture
async def store(db) -> MessageStore:
    return MessageStore(db)
