"""Chat router -- model listing, SSE chat streaming, and cancellation."""

from __future__ import annotations

import json
import logging
import uuid

from fastapi import APIRouter, HTTPException, Query, status
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from lexagent.config import get_context_window, list_models
from lexagent.schemas import Message
from lexagent.services.chat_service import ChatRequest, chat_service
from lexagent.services.events import StreamEvent, event_to_dict

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["chat"])


class ChatBody(BaseModel):
    """Request body for ``POST /api/chat``.

    ``messages`` and ``model`` are optional here so a missing value gets the
    400 response the frontend expects instead of a 422.
    """

    messages: list[dict] | None = None
    model: str | None = None
    num_ctx: int | None = Field(default=None, gt=0)
    deep_research: bool = False
    session_id: str | None = Field(default=None, max_length=128)


def format_sse(event: StreamEvent) -> str:
    """Frame one event as a Server-Sent Events ``data:`` line."""
    return f"data: {json.dumps(event_to_dict(event))}\n\n"


@router.get("/models")
async def get_models() -> list[dict]:
    """List configured models with their default context windows."""
    return list_models()


@router.post("/chat")
async def chat(body: ChatBody) -> StreamingResponse:
    """Run the agent and stream its events as ``text/event-stream``.

    Events: ``token``, ``tool_start``, ``tool_end``, then one ``result`` or
    ``error``.  A newer request for the same ``session_id`` cancels this one;
    so does the client closing the connection.
    """
    if body.messages is None or not body.model:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing messages or model",
        )

    messages = [Message.from_dict(m) for m in body.messages]
    session_id = body.session_id or uuid.uuid4().hex
    request = ChatRequest(
        messages=messages,
        model=body.model,
        num_ctx=body.num_ctx,
        deep_research=body.deep_research,
        session_id=session_id,
    )
    logger.info(
        "Chat request: session=%s model=%s messages=%d deep_research=%s",
        session_id, body.model, len(messages), body.deep_research,
    )

    async def _events():
        async for event in chat_service.stream(request):
            yield format_sse(event)

    return StreamingResponse(
        _events(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Session-ID": session_id,
        },
    )


@router.post("/chat/{session_id}/cancel")
async def cancel_chat(session_id: str) -> dict:
    """Cancel the session's running request, if there is one."""
    cancelled = chat_service.cancel(session_id)
    if cancelled:
        logger.info("Session %s: cancelled by user", session_id)
    return {"cancelled": cancelled}


@router.get("/chat/{session_id}/usage")
async def chat_usage(
    session_id: str,
    model: str = "",
    num_ctx: int | None = Query(default=None, gt=0),
) -> dict:
    """Approximate context usage of the session against the model's window."""
    return chat_service.usage(session_id, get_context_window(model, num_ctx))


@router.post("/chat/{session_id}/reset")
async def reset_chat_usage(session_id: str) -> dict:
    """Forget the session's usage estimate after the caller clears its history."""
    return {"reset": chat_service.reset_usage(session_id)}
