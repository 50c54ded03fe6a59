"""Chat API: stream one turn as server-sent events."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse

from app.commands.chat.stream_chat_command import StreamChatCommand
from app.core.auth import client_ip, get_verified_principal
from app.routers.utils.dependencies import (
    get_llm,
    get_rate_limiter,
    get_session_factory,
)
from app.schemas.chat import ChatRequest
from app.utils.db.db_session_helper import SessionFactory
from app.utils.rate_limit import RateLimiter
from app.workers.llm import CompletionStreamer

router = APIRouter(prefix="/chat", tags=["chat"])

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


@router.post("")
async def stream_chat(
    request: Request,
    body: ChatRequest,
    principal: Optional[str] = Depends(get_verified_principal),
    llm: CompletionStreamer = Depends(get_llm),
    rate_limiter: RateLimiter = Depends(get_rate_limiter),
    session_factory: SessionFactory = Depends(get_session_factory),
) -> StreamingResponse:
    """
    Stream the assistant reply. The first event is a metadata event carrying
    the message ids (and the session id for a new conversation).
    """
    command = StreamChatCommand(session_factory, llm, rate_limiter)
    events = await command.execute(body, principal, ip=client_ip(request))
    return StreamingResponse(
        events, media_type="text/event-stream", headers=SSE_HEADERS
    )
