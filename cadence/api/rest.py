"""REST API for cadence.

Endpoints:
  POST   /conversations            - Create a conversation
  GET    /conversations/{id}       - Conversation with its messages
  DELETE /conversations/{id}       - Delete a conversation and its messages
  POST   /conversations/{id}/send  - Send a message, stream the turn as NDJSON
  GET    /health                   - Health check (DB connectivity)

The caller is identified by the X-User-Id header; conversations are only
visible to the user that created them.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from pydantic import ValidationError
from sqlalchemy import text
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse, Response, StreamingResponse
from starlette.routing import Route

from cadence.agent.blocks import ChatMessage
from cadence.agent.orchestrator import TurnOrchestrator, TurnRequest
from cadence.agent.prompts import build_system_prompt
from cadence.agent.tools import ToolService
from cadence.api.models import CreateConversationRequest, SendMessageRequest, validation_message
from cadence.config import Settings
from cadence.events import NDJSON_MEDIA_TYPE, ndjson_stream
from cadence.storage.database import Database
from cadence.storage.models import DEFAULT_TITLE, Conversation
from cadence.storage.store import MessageStore
from cadence.utils import to_millis

logger = logging.getLogger(__name__)

USER_HEADER = "x-user-id"


def _error(message: str, status_code: int = 400) -> JSONResponse:
    return JSONResponse({"ok": False, "error": message}, status_code=status_code)


def _conversation_json(conversation: Conversation) -> dict[str, Any]:
    return {
        "id": conversation.id,
        "title": conversation.title or DEFAULT_TITLE,
        "createdAt": to_millis(conversation.created_at),
        "updatedAt": to_millis(conversation.updated_at),
    }


def _replay_history(stored: list[Any]) -> list[ChatMessage]:
    """Stored messages as model history; it must open with a user message.

    Empty messages (turns that produced no text) are skipped: the Messages
    API rejects empty content on any but the final assistant message.
    Consecutive messages from the same role left behind are merged into one.
    """
    history: list[ChatMessage] = []
    for m in stored:
        if not m.content.strip():
            continue
        if history and history[-1].role == m.role:
            history[-1] = ChatMessage(role=m.role, content=f"{history[-1].content}\n\n{m.content}")
            continue
        history.append(ChatMessage(role=m.role, content=m.content))
    while history and history[0].role != "user":
        history.pop(0)
    return history


def create_app(
    orchestrator: TurnOrchestrator,
    store: MessageStore,
    tools: ToolService,
    database: Database,
    settings: Settings,
    lifespan: Any | None = None,
) -> Starlette:
    """Create the Starlette ASGI app with all routes."""

    async def create_conversation(request: Request) -> JSONResponse:
        """POST /conversations - Create a conversation (optional title)."""
        user_id = request.headers.get(USER_HEADER, "").strip()
        if not user_id:
            return _error("Unauthorized", 401)

        try:
            body = await request.json()
        except Exception:
            body = {}
        try:
            payload = CreateConversationRequest.model_validate(body if isinstance(body, dict) else {})
        except ValidationError as e:
            return _error(validation_message(e))

        try:
            conversation = await store.create_conversation(user_id, payload.title)
            return JSONResponse({"ok": True, "conversation": _conversation_json(conversation)}, status_code=201)
        except Exception as e:
            logger.error("Create conversation error: %s", e)
            return _error(str(e), 500)

    async def get_conversation(request: Request) -> JSONResponse:
        """GET /conversations/{id} - Conversation detail + messages."""
        user_id = request.headers.get(USER_HEADER, "").strip()
        if not user_id:
            return _error("Unauthorized", 401)
        conversation_id = request.path_params["id"].strip()

        try:
            conversation = await store.get_conversation(conversation_id, user_id)
            if conversation is None:
                return _error("Conversation not found", 404)
            messages = await store.list_messages(conversation_id)
            return JSONResponse({
                "ok": True,
                "conversation": _conversation_json(conversation),
                "messages": [
                    {
                        "id": m.id,
                        "role": m.role,
                        "content": m.content,
                        "createdAt": to_millis(m.created_at),
                    }
                    for m in messages
                ],
            })
        except Exception as e:
            logger.error("Get conversation error: %s", e)
            return _error(str(e), 500)

    async def delete_conversation(request: Request) -> JSONResponse:
        """DELETE /conversations/{id} - Delete conversation and messages."""
        user_id = request.headers.get(USER_HEADER, "").strip()
        if not user_id:
            return _error("Unauthorized", 401)
        conversation_id = request.path_params["id"].strip()

        try:
            conversation = await store.get_conversation(conversation_id, user_id)
            if conversation is None:
                return _error("Conversation not found", 404)
            await store.delete_conversation(conversation_id)
            return JSONResponse({"ok": True})
        except Exception as e:
            logger.error("Delete conversation error: %s", e)
            return _error(str(e), 500)

    async def send_message(request: Request) -> Response:
        """POST /conversations/{id}/send - Stream one turn as NDJSON."""
        user_id = request.headers.get(USER_HEADER, "").strip()
        if not user_id:
            return _error("Unauthorized", 401)
        conversation_id = request.path_params["id"].strip()

        try:
            body = await request.json()
        except Exception:
            return _error("Invalid JSON body")
        if not isinstance(body, dict):
            return _error("Invalid JSON body")
        try:
            payload = SendMessageRequest.model_validate(body)
        except ValidationError as e:
            return _error(validation_message(e))

        try:
            conversation = await store.get_conversation(conversation_id, user_id)
            if conversation is None:
                return _error("Conversation not found", 404)

            # The user message is durable before any model output exists
            user_message = await store.create_message(conversation_id, "user", payload.content)
            await store.retitle_or_touch(conversation, payload.content)
            stored = await store.list_messages(conversation_id, limit=settings.history_limit)
        except Exception as e:
            logger.error("Send message error: %s", e)
            return _error(str(e), 500)

        turn_request = TurnRequest(
            conversation_id=conversation_id,
            caller_id=user_id,
            user_message=user_message,
            history=_replay_history(stored),
            system_prompt=build_system_prompt(settings, datetime.now()),
            tools=tools.tool_definitions(),
            attachments=[a.to_attachment() for a in payload.attachments],
            round_budget=settings.max_rounds,
        )
        return StreamingResponse(
            ndjson_stream(orchestrator.run(turn_request)),
            media_type=NDJSON_MEDIA_TYPE,
            headers={
                "Cache-Control": "no-cache",
                "X-Accel-Buffering": "no",
            },
        )

    async def health(request: Request) -> JSONResponse:
        """GET /health - Health check."""
        try:
            async with database.session() as session:
                await session.execute(text("SELECT 1"))
            return JSONResponse({"status": "healthy"})
        except Exception as e:
            return JSONResponse({"status": "unhealthy", "error": str(e)}, status_code=503)

    routes = [
        Route("/conversations", create_conversation, methods=["POST"]),
        Route("/conversations/{id}", get_conversation, methods=["GET"]),
        Route("/conversations/{id}", delete_conversation, methods=["DELETE"]),
        Route("/conversations/{id}/send", send_message, methods=["POST"]),
        Route("/health", health),
    ]

    kwargs: dict[str, Any] = {"routes": routes}
    if lifespan is not None:
        kwargs["lifespan"] = lifespan
    return Starlette(**kwargs)
