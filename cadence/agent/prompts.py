"""System prompt for chat turns."""

from __future__ import annotations

from datetime import datetime

from cadence.config import Settings


def build_system_prompt(settings: Settings, now: datetime, user_name: str | None = None) -> str:
    """Assistant identity, the current time, and tool-use ground rules.

    The ISO timestamp is what the model should mirror when it fills in
    datetime fields of tool inputs.
    """
    date_str = now.strftime("%A, %B %d, %Y")
    time_str = now.strftime("%I:%M %p").lstrip("0")
    iso_now = now.replace(microsecond=0, tzinfo=None).isoformat()

    lines = [
        f"You are {settings.assistant_name}, {settings.assistant_description}. "
        f"You are helping {user_name or 'the user'}.",
        f"Today is {date_str} at {time_str}. ISO datetime: {iso_now}.",
        "Be concise, direct, and personalized.",
        "You have tools that take real actions. Call them directly when the user asks "
        "for a change. Always get explicit confirmation from the user before calling "
        "any tool that deletes something.",
        f"When generating datetimes for tool inputs, use ISO 8601 in the same local time as "
        f"{iso_now} (no trailing Z).",
        "When the user attaches documents or images, read them before answering the "
        "message that follows them.",
    ]
    return "\n".join(lines)
