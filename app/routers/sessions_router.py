"""Sessions API: list, get, messages, rename, delete, quota status."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response

from app.config import get_settings
from app.core.auth import client_ip, get_verified_principal
from app.exceptions import InvalidCursor
from app.routers.utils.dependencies import get_rate_limiter, get_remote_store
from app.schemas.chat import RateLimitUsage
from app.schemas.session import CursorPage, MessageRead, SessionRead, SessionUpdate
from app.services.remote_session_store import RemoteSessionStore
from app.utils.rate_limit import RateLimiter

sessions_router = APIRouter(prefix="/sessions", tags=["Session"])
rate_limit_router = APIRouter(prefix="/rate-limit", tags=["Rate limit"])


@sessions_router.get("", response_model=CursorPage[SessionRead, str])
def list_sessions(
    cursor: Optional[str] = Query(None),
    limit: Optional[int] = Query(None, ge=1, le=100),
    store: RemoteSessionStore = Depends(get_remote_store),
) -> CursorPage[SessionRead, str]:
    """List the caller's sessions, most recently updated first."""
    try:
        return store.list_sessions(
            cursor=cursor, limit=limit or get_settings().sessions_page_size
        )
    except InvalidCursor as e:
        raise HTTPException(status_code=400, detail=str(e)) from e


@sessions_router.get("/{session_id}", response_model=SessionRead)
def get_session(
    session_id: str,
    store: RemoteSessionStore = Depends(get_remote_store),
) -> SessionRead:
    """Get a session by ID."""
    session = store.get_session(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return session


@sessions_router.get(
    "/{session_id}/messages", response_model=CursorPage[MessageRead, str]
)
def list_session_messages(
    session_id: str,
    cursor: Optional[str] = Query(None),
    limit: Optional[int] = Query(None, ge=1, le=200),
    store: RemoteSessionStore = Depends(get_remote_store),
) -> CursorPage[MessageRead, str]:
    """List messages for a session, oldest first."""
    try:
        return store.list_messages(
            session_id,
            cursor=cursor,
            limit=limit or get_settings().messages_page_size,
        )
    except InvalidCursor as e:
        raise HTTPException(status_code=400, detail=str(e)) from e


@sessions_router.patch("/{session_id}", response_model=SessionRead)
def rename_session(
    session_id: str,
    data: SessionUpdate,
    store: RemoteSessionStore = Depends(get_remote_store),
) -> SessionRead:
    """Rename a session."""
    return store.update_session(session_id, data.title)


@sessions_router.delete("/{session_id}", status_code=204)
def delete_session(
    session_id: str,
    store: RemoteSessionStore = Depends(get_remote_store),
) -> Response:
    """Delete a session together with all of its messages."""
    store.delete_session(session_id)
    return Response(status_code=204)


@rate_limit_router.get("", response_model=RateLimitUsage)
def get_rate_limit_status(
    request: Request,
    principal: Optional[str] = Depends(get_verified_principal),
    rate_limiter: RateLimiter = Depends(get_rate_limiter),
) -> RateLimitUsage:
    """Today's quota usage for the caller (user when authenticated, else IP)."""
    if principal is not None:
        return rate_limiter.status(principal, "user")
    ip = client_ip(request)
    if ip is None:
        raise HTTPException(status_code=400, detail="User identification required")
    return rate_limiter.status(ip, "ip")
