"""ChatMessage model: immutable user/assistant messages, keyed by message_id."""

from __future__ import annotations

from sqlalchemy import BigInteger, Column, Index, Integer, String, Text

from app.db import Base
from app.utils.time_utils import now_ms


class ChatMessage(Base):
    """
    One row per message. message_id is generated before persistence and is the
    idempotency key. The integer primary key is the insertion-order index used
    to break created_at ties.

    No foreign key to chat_sessions: a message may be stored while its session
    row is missing.
    """

    __tablename__ = "chat_messages"

    __table_args__ = (
        Index("ix_chat_messages_session_id_created_at", "session_id", "created_at"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    message_id = Column(String(64), unique=True, nullable=False, index=True)
    session_id = Column(String(64), nullable=False)
    role = Column(String(16), nullable=False)  # 'user' | 'assistant'
    content = Column(Text, nullable=False, default="")
    created_at = Column(BigInteger, nullable=False, default=now_ms)
