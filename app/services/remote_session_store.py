"""
Remote session store: sessions and messages of verified principals.

Every client-facing entry point is scoped to the principal the store was built
with. Reads without a principal, or for a session owned by someone else, come
back empty; mutations raise Unauthorized/Forbidden.

Pagination uses keyset continuation tokens over the indexed columns:
sessions newest-first by (updated_at, id), messages oldest-first by
(created_at, id). This differs from the local store, which pages messages
backwards from the newest end by index. Both stores return the same
CursorPage shape, so callers never see the difference except in cursor type.
"""

from __future__ import annotations

import logging
from typing import Callable, List, Optional, Sequence

from sqlalchemy import and_, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session as DBSession

from app.exceptions import Forbidden, InvalidCursor, NotFound, Unauthorized
from app.models.chat_message import ChatMessage
from app.models.chat_session import ChatSession
from app.schemas.session import (
    CursorPage,
    HistoryItem,
    MessageCreate,
    MessageRead,
    SessionRead,
)
from app.utils.db.cursor import decode_cursor, encode_cursor
from app.utils.time_utils import now_ms

logger = logging.getLogger(__name__)

SESSIONS_PAGE_SIZE = 20
MESSAGES_PAGE_SIZE = 50

Clock = Callable[[], int]


def _cursor_position(cursor: str) -> tuple[int, int]:
    position = decode_cursor(cursor)
    try:
        return int(position["t"]), int(position["i"])
    except (KeyError, TypeError, ValueError) as e:
        raise InvalidCursor(f"Invalid cursor: {cursor!r}") from e


def _get_session_row(db: DBSession, session_id: str) -> Optional[ChatSession]:
    return db.query(ChatSession).filter(ChatSession.session_id == session_id).first()


def _insert_session(
    db: DBSession, session_id: str, owner_id: str, title: str, now: int
) -> ChatSession:
    """Insert a session row; a concurrent insert of the same id returns the winner."""
    session = ChatSession(
        session_id=session_id,
        owner_id=owner_id,
        title=title,
        created_at=now,
        updated_at=now,
    )
    db.add(session)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        existing = _get_session_row(db, session_id)
        if existing is None:
            raise
        return existing
    db.refresh(session)
    return session


def _insert_messages(
    db: DBSession,
    session_id: str,
    messages: Sequence[MessageCreate],
    now: int,
) -> List[ChatMessage]:
    """
    Insert messages in order with created_at = now + index, bumping the parent
    session's updated_at. Messages whose message_id is already stored are
    returned as-is. A missing parent session does not abort the insert.
    """
    rows: List[ChatMessage] = []
    pending: dict[str, ChatMessage] = {}
    inserted = False
    for offset, data in enumerate(messages):
        existing = pending.get(data.message_id) or (
            db.query(ChatMessage)
            .filter(ChatMessage.message_id == data.message_id)
            .first()
        )
        if existing is not None:
            rows.append(existing)
            continue
        row = ChatMessage(
            message_id=data.message_id,
            session_id=session_id,
            role=data.role,
            content=data.content,
            created_at=now + offset,
        )
        db.add(row)
        pending[data.message_id] = row
        rows.append(row)
        inserted = True

    if not inserted:
        return rows

    session = _get_session_row(db, session_id)
    if session is not None:
        session.updated_at = max(session.updated_at or 0, now + len(messages) - 1)
    else:
        logger.warning(
            "Session %s not found; storing %d message(s) without a parent session",
            session_id,
            len(messages),
        )
    db.commit()
    for row in rows:
        db.refresh(row)
    return rows


def _history_for(db: DBSession, session_id: str) -> List[HistoryItem]:
    messages = (
        db.query(ChatMessage)
        .filter(ChatMessage.session_id == session_id)
        .order_by(ChatMessage.created_at.asc(), ChatMessage.id.asc())
        .all()
    )
    return [HistoryItem(role=m.role, content=m.content) for m in messages]


class RemoteSessionStore:
    """Client-facing store; every call is checked against the verified principal."""

    def __init__(
        self,
        db: DBSession,
        principal: Optional[str],
        clock: Optional[Clock] = None,
    ) -> None:
        self.db = db
        self.principal = principal
        self._clock = clock or now_ms

    # -- reads ---------------------------------------------------------------

    def get_session(self, session_id: str) -> Optional[SessionRead]:
        session = self._owned_session(session_id)
        if session is None:
            return None
        return SessionRead.model_validate(session)

    def list_sessions(
        self,
        cursor: Optional[str] = None,
        limit: int = SESSIONS_PAGE_SIZE,
    ) -> CursorPage[SessionRead, str]:
        """Owner's sessions, most recently updated first."""
        if self.principal is None:
            return CursorPage[SessionRead, str]()
        query = self.db.query(ChatSession).filter(
            ChatSession.owner_id == self.principal
        )
        if cursor:
            updated_at, row_id = _cursor_position(cursor)
            query = query.filter(
                or_(
                    ChatSession.updated_at < updated_at,
                    and_(
                        ChatSession.updated_at == updated_at,
                        ChatSession.id < row_id,
                    ),
                )
            )
        rows = (
            query.order_by(ChatSession.updated_at.desc(), ChatSession.id.desc())
            .limit(limit + 1)
            .all()
        )
        has_more = len(rows) > limit
        rows = rows[:limit]
        next_cursor = (
            encode_cursor({"t": rows[-1].updated_at, "i": rows[-1].id})
            if has_more and rows
            else None
        )
        return CursorPage[SessionRead, str](
            items=[SessionRead.model_validate(s) for s in rows],
            next_cursor=next_cursor,
            has_more=has_more,
        )

    def list_messages(
        self,
        session_id: str,
        cursor: Optional[str] = None,
        limit: int = MESSAGES_PAGE_SIZE,
    ) -> CursorPage[MessageRead, str]:
        """Messages of an owned session, oldest first."""
        if self._owned_session(session_id) is None:
            return CursorPage[MessageRead, str]()
        query = self.db.query(ChatMessage).filter(ChatMessage.session_id == session_id)
        if cursor:
            created_at, row_id = _cursor_position(cursor)
            query = query.filter(
                or_(
                    ChatMessage.created_at > created_at,
                    and_(
                        ChatMessage.created_at == created_at,
                        ChatMessage.id > row_id,
                    ),
                )
            )
        rows = (
            query.order_by(ChatMessage.created_at.asc(), ChatMessage.id.asc())
            .limit(limit + 1)
            .all()
        )
        has_more = len(rows) > limit
        rows = rows[:limit]
        next_cursor = (
            encode_cursor({"t": rows[-1].created_at, "i": rows[-1].id})
            if has_more and rows
            else None
        )
        return CursorPage[MessageRead, str](
            items=[MessageRead.model_validate(m) for m in rows],
            next_cursor=next_cursor,
            has_more=has_more,
        )

    def get_full_history(self, session_id: str) -> List[HistoryItem]:
        """All messages of an owned session as model context, oldest first."""
        if self._owned_session(session_id) is None:
            return []
        return _history_for(self.db, session_id)

    # -- mutations -----------------------------------------------------------

    def create_session(self, session_id: str, title: str) -> SessionRead:
        principal = self._require_principal()
        existing = _get_session_row(self.db, session_id)
        if existing is not None:
            if existing.owner_id != principal:
                raise Forbidden()
            return SessionRead.model_validate(existing)
        session = _insert_session(
            self.db, session_id, principal, title, self._clock()
        )
        if session.owner_id != principal:
            raise Forbidden()
        return SessionRead.model_validate(session)

    def append_message(self, session_id: str, data: MessageCreate) -> MessageRead:
        return self.append_messages(session_id, [data])[0]

    def append_messages(
        self, session_id: str, messages: Sequence[MessageCreate]
    ) -> List[MessageRead]:
        """Append messages in order; same-millisecond ties are broken by index."""
        principal = self._require_principal()
        session = _get_session_row(self.db, session_id)
        if session is not None and session.owner_id != principal:
            raise Forbidden()
        rows = _insert_messages(self.db, session_id, messages, self._clock())
        return [MessageRead.model_validate(r) for r in rows]

    def update_session(self, session_id: str, title: str) -> SessionRead:
        session = self._require_owned_session(session_id)
        session.title = title
        session.updated_at = max(session.updated_at or 0, self._clock())
        self.db.commit()
        self.db.refresh(session)
        return SessionRead.model_validate(session)

    def delete_session(self, session_id: str) -> int:
        """Delete the session and all its messages in one commit. Returns messages removed."""
        session = self._require_owned_session(session_id)
        deleted = (
            self.db.query(ChatMessage)
            .filter(ChatMessage.session_id == session_id)
            .delete(synchronize_session=False)
        )
        self.db.delete(session)
        self.db.commit()
        logger.info("Deleted session %s with %d message(s)", session_id, deleted)
        return deleted

    # -- ownership -----------------------------------------------------------

    def _require_principal(self) -> str:
        if self.principal is None:
            raise Unauthorized()
        return self.principal

    def _owned_session(self, session_id: str) -> Optional[ChatSession]:
        if self.principal is None:
            return None
        session = _get_session_row(self.db, session_id)
        if session is None or session.owner_id != self.principal:
            return None
        return session

    def _require_owned_session(self, session_id: str) -> ChatSession:
        principal = self._require_principal()
        session = _get_session_row(self.db, session_id)
        if session is None:
            raise NotFound()
        if session.owner_id != principal:
            raise Forbidden()
        return session


class TrustedSessionWriter:
    """
    Server-side variant without per-call ownership checks. Only the chat stream
    command uses it, after it has verified the caller once for the request.
    Not exposed through any router.
    """

    def __init__(self, db: DBSession, clock: Optional[Clock] = None) -> None:
        self.db = db
        self._clock = clock or now_ms

    def get_session(self, session_id: str) -> Optional[SessionRead]:
        session = _get_session_row(self.db, session_id)
        return SessionRead.model_validate(session) if session else None

    def create_session(self, session_id: str, owner_id: str, title: str) -> SessionRead:
        existing = _get_session_row(self.db, session_id)
        if existing is not None:
            return SessionRead.model_validate(existing)
        session = _insert_session(self.db, session_id, owner_id, title, self._clock())
        return SessionRead.model_validate(session)

    def append_message(self, session_id: str, data: MessageCreate) -> MessageRead:
        row = _insert_messages(self.db, session_id, [data], self._clock())[0]
        return MessageRead.model_validate(row)

    def get_full_history(self, session_id: str) -> List[HistoryItem]:
        return _history_for(self.db, session_id)
