"""ChatSession model: one row per conversation owned by a verified principal."""

from __future__ import annotations

from sqlalchemy import Column, Index, Integer, String

from app.db import Base
from app.models.mixins import TimestampMixin


class ChatSession(Base, TimestampMixin):
    """
    One row per conversation. session_id is the stable external handle;
    owner_id is the verified principal. updated_at is bumped on every append.
    """

    __tablename__ = "chat_sessions"

    __table_args__ = (
        Index("ix_chat_sessions_owner_id_updated_at", "owner_id", "updated_at"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(String(64), unique=True, nullable=False, index=True)
    owner_id = Column(String(256), nullable=False)
    title = Column(String(256), nullable=False, default="New Chat")
