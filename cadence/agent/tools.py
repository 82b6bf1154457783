"""Tool execution services and the dispatch adapter used by the turn loop.

Provides:
- ToolResult: uniform success/error shape handed back to the model
- ToolRegistry: in-process tool service (register handlers + schemas)
- HttpToolService: remote tool service reached over httpx
- ToolDispatchAdapter: runs a round's tool calls one at a time and emits
  tool_start / tool_done events around each call
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator, Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import Any, Protocol

import httpx

from cadence.agent.blocks import ToolResultBlock, ToolUseBlock
from cadence.events import ToolDoneEvent, ToolStartEvent

logger = logging.getLogger(__name__)

# Handler type: async function taking (tool input, caller id), returning result data
ToolHandler = Callable[[dict[str, Any], str], Awaitable[Any]]


class ToolError(Exception):
    """Raised by a tool handler to report a failure back to the model."""


@dataclass
class ToolResult:
    success: bool
    data: Any = None
    error: str | None = None

    @classmethod
    def ok(cls, data: Any = None) -> "ToolResult":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: str) -> "ToolResult":
        return cls(success=False, error=error)

    @classmethod
    def from_service(cls, raw: Any) -> "ToolResult":
        """Normalize a service reply ({success, data?, error?}) into a ToolResult."""
        if isinstance(raw, ToolResult):
            return raw
        if not isinstance(raw, Mapping) or "success" not in raw:
            return cls.fail(f"Malformed tool service reply: {raw!r:.200}")
        if raw["success"]:
            return cls.ok(raw.get("data"))
        return cls.fail(str(raw.get("error") or "Tool failed"))

    def to_content(self) -> str:
        """JSON text for a tool_result block, whatever the outcome."""
        if self.success:
            return json.dumps({"success": True, "data": self.data}, default=str)
        return json.dumps({"success": False, "error": self.error})


class ToolService(Protocol):
    async def execute(self, tool_name: str, tool_input: dict[str, Any], caller_id: str) -> Any: ...

    def tool_definitions(self) -> list[dict[str, Any]]: ...

    @property
    def labels(self) -> dict[str, str]: ...


# ---------------------------------------------------------------------------
# ToolRegistry
# ---------------------------------------------------------------------------


class ToolRegistry:
    """Registers tool handlers and executes calls in-process.

    Each handler is an async callable ``handler(tool_input, caller_id)``
    returning JSON-serializable data, or raising ToolError on failure.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, ToolHandler] = {}
        self._schemas: dict[str, dict[str, Any]] = {}
        self._labels: dict[str, str] = {}

    def register(
        self,
        name: str,
        handler: ToolHandler,
        schema: dict[str, Any],
        label: str | None = None,
    ) -> None:
        """Register a tool handler with its JSON schema and display label."""
        self._handlers[name] = handler
        self._schemas[name] = schema
        if label:
            self._labels[name] = label

    @property
    def labels(self) -> dict[str, str]:
        return dict(self._labels)

    async def execute(self, tool_name: str, tool_input: dict[str, Any], caller_id: str) -> dict[str, Any]:
        handler = self._handlers.get(tool_name)
        if not handler:
            return {"success": False, "error": f"Unknown tool: {tool_name}"}
        try:
            data = await handler(tool_input, caller_id)
        except ToolError as e:
            return {"success": False, "error": str(e)}
        except Exception as e:
            logger.exception("Tool handler error for %s", tool_name)
            return {"success": False, "error": str(e)}
        return {"success": True, "data": data}

    def tool_definitions(self) -> list[dict[str, Any]]:
        """Return all tool definitions in Anthropic API format."""
        return [
            {
                "name": name,
                "description": schema.get("description", ""),
                "input_schema": {k: v for k, v in schema.items() if k != "description"},
            }
            for name, schema in self._schemas.items()
        ]


# ---------------------------------------------------------------------------
# HttpToolService
# ---------------------------------------------------------------------------


class HttpToolService:
    """Tool service living behind HTTP.

    ``GET /tools`` returns ``{"tools": [{name, description, input_schema,
    label?}]}``; ``POST /execute`` takes ``{tool, input, caller_id}`` and
    returns ``{success, data?, error?}``.
    """

    def __init__(self, http: httpx.AsyncClient) -> None:
        self._http = http
        self._definitions: list[dict[str, Any]] = []
        self._labels: dict[str, str] = {}

    async def load_manifest(self) -> None:
        response = await self._http.get("/tools")
        response.raise_for_status()
        definitions: list[dict[str, Any]] = []
        labels: dict[str, str] = {}
        for tool in response.json().get("tools", []):
            if tool.get("label"):
                labels[tool["name"]] = tool["label"]
            definitions.append({
                "name": tool["name"],
                "description": tool.get("description", ""),
                "input_schema": tool.get("input_schema", {"type": "object"}),
            })
        self._definitions = definitions
        self._labels = labels
        logger.info("Loaded %d tool(s) from remote tool service", len(definitions))

    @property
    def labels(self) -> dict[str, str]:
        return dict(self._labels)

    def tool_definitions(self) -> list[dict[str, Any]]:
        return list(self._definitions)

    async def execute(self, tool_name: str, tool_input: dict[str, Any], caller_id: str) -> Any:
        response = await self._http.post(
            "/execute",
            json={"tool": tool_name, "input": tool_input, "caller_id": caller_id},
        )
        if response.status_code != 200:
            return {
                "success": False,
                "error": f"Tool service error ({response.status_code}): {response.text[:500]}",
            }
        return response.json()


# ---------------------------------------------------------------------------
# Dispatch adapter
# ---------------------------------------------------------------------------


class ToolDispatchAdapter:
    """Executes completed tool calls against a ToolService.

    Never raises for a tool failure: errors become ToolResult(success=False).
    Calls run strictly one after another so side effects land in order.
    """

    def __init__(self, service: ToolService, labels: Mapping[str, str] | None = None) -> None:
        self._service = service
        self._labels = dict(labels) if labels is not None else None

    def label_for(self, tool_name: str) -> str:
        labels = self._labels if self._labels is not None else self._service.labels
        return labels.get(tool_name, tool_name)

    async def dispatch(self, call: ToolUseBlock, caller_id: str) -> ToolResult:
        try:
            raw = await self._service.execute(call.name, call.input, caller_id)
        except Exception as e:
            logger.exception("Tool execution failed for %s (%s)", call.name, call.id)
            return ToolResult.fail(str(e))
        result = ToolResult.from_service(raw)
        if not result.success:
            logger.info("Tool %s reported failure: %s", call.name, result.error)
        return result

    async def run_all(
        self,
        calls: list[ToolUseBlock],
        caller_id: str,
        results: list[ToolResultBlock],
    ) -> AsyncIterator[ToolStartEvent | ToolDoneEvent]:
        """Dispatch calls in order, appending one ToolResultBlock per call."""
        for call in calls:
            yield ToolStartEvent(tool=call.name, label=self.label_for(call.name))
            result = await self.dispatch(call, caller_id)
            results.append(ToolResultBlock(tool_use_id=call.id, content=result.to_content()))
            yield ToolDoneEvent(tool=call.name, success=result.success)
