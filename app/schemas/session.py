"""Pydantic schemas for chat sessions, messages and cursor pages."""

from __future__ import annotations

from typing import Generic, Literal, Optional, TypeVar

from pydantic import BaseModel, Field

from app.utils.time_utils import now_ms

MessageRole = Literal["user", "assistant"]

ItemT = TypeVar("ItemT")
CursorT = TypeVar("CursorT")

# -----------------------------------------------------------------------------
# Pagination
# -----------------------------------------------------------------------------


class CursorPage(BaseModel, Generic[ItemT, CursorT]):
    """
    Page returned by both session stores. The cursor type differs per store:
    an int index for local storage, an opaque string token for the remote store.
    """

    items: list[ItemT] = Field(default_factory=list)
    next_cursor: Optional[CursorT] = None
    has_more: bool = False


# -----------------------------------------------------------------------------
# Session schemas
# -----------------------------------------------------------------------------


class SessionBase(BaseModel):
    """Fields shared by local and remote sessions."""

    session_id: str
    title: str
    created_at: int
    updated_at: int


class LocalSession(SessionBase):
    """Session held in local key-value storage; ownership is implicit."""

    pass


class SessionRead(SessionBase):
    """Remote session for API responses."""

    owner_id: str

    model_config = {"from_attributes": True}


class SessionUpdate(BaseModel):
    """Rename a session."""

    title: str = Field(..., min_length=1, max_length=256)


# -----------------------------------------------------------------------------
# Message schemas
# -----------------------------------------------------------------------------


class MessageCreate(BaseModel):
    """A message about to be persisted. message_id is allocated by the caller."""

    message_id: str
    role: MessageRole
    content: str = ""


class MessageRead(BaseModel):
    """A persisted message, identical in shape across both stores."""

    message_id: str
    session_id: str
    role: MessageRole
    content: str
    created_at: int = Field(default_factory=now_ms)

    model_config = {"from_attributes": True}


class HistoryItem(BaseModel):
    """Role/content pair used as model context."""

    role: MessageRole
    content: str


class LocalMessage(MessageRead):
    """Message held in local key-value storage."""

    pass
