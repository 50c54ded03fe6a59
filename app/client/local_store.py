"""
Session store for anonymous users, backed by local key-value storage.

Three slots hold everything: the session list (newest first), a flat list of
messages for all sessions, and the anonymous identity token. Storage is
best-effort: a failing read yields empty results and a failing write is
dropped with a warning, so chat keeps working in memory.
"""

from __future__ import annotations

import json
import uuid
from typing import Any, List, Optional

from pydantic import ValidationError

from app.client.storage import KeyValueStorage
from app.exceptions import StorageUnavailable
from app.infra.logging_config import get_logger
from app.schemas.session import CursorPage, LocalMessage, LocalSession
from app.utils.time_utils import now_ms

logger = get_logger("local_store")

SESSIONS_KEY = "anon_chat_sessions"
MESSAGES_KEY = "anon_chat_messages"
IDENTITY_KEY = "anonymous_user_id"

ANONYMOUS_ID_PREFIX = "anon_"


class LocalSessionStore:
    def __init__(self, storage: KeyValueStorage, clock=now_ms) -> None:
        self.storage = storage
        self._clock = clock
        self._identity: Optional[str] = None

    # ------------------------------------------------------------------
    # Slot access
    # ------------------------------------------------------------------

    def _read_slot(self, key: str) -> List[dict[str, Any]]:
        try:
            raw = self.storage.get_item(key)
        except StorageUnavailable as e:
            logger.warning("Local storage read failed for %s: %s", key, e)
            return []
        if not raw:
            return []
        try:
            data = json.loads(raw)
        except ValueError:
            logger.warning("Discarding unreadable local slot %s", key)
            return []
        return data if isinstance(data, list) else []

    def _write_slot(self, key: str, items: List[dict[str, Any]]) -> bool:
        try:
            self.storage.set_item(key, json.dumps(items))
        except StorageUnavailable as e:
            logger.warning("Local storage write dropped for %s: %s", key, e)
            return False
        return True

    def _load_sessions(self) -> List[LocalSession]:
        sessions: List[LocalSession] = []
        for raw in self._read_slot(SESSIONS_KEY):
            try:
                sessions.append(LocalSession.model_validate(raw))
            except ValidationError:
                logger.warning("Skipping malformed local session record")
        return sessions

    def _load_messages(self) -> List[LocalMessage]:
        messages: List[LocalMessage] = []
        for raw in self._read_slot(MESSAGES_KEY):
            try:
                messages.append(LocalMessage.model_validate(raw))
            except ValidationError:
                logger.warning("Skipping malformed local message record")
        return messages

    def _save_sessions(self, sessions: List[LocalSession]) -> bool:
        return self._write_slot(SESSIONS_KEY, [s.model_dump() for s in sessions])

    def _save_messages(self, messages: List[LocalMessage]) -> bool:
        return self._write_slot(MESSAGES_KEY, [m.model_dump() for m in messages])

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_sessions(self) -> List[LocalSession]:
        """All sessions, most recently updated first."""
        return self._load_sessions()

    def get_session(self, session_id: str) -> Optional[LocalSession]:
        for session in self._load_sessions():
            if session.session_id == session_id:
                return session
        return None

    def get_messages(self, session_id: str) -> List[LocalMessage]:
        """All messages of a session, oldest first. Ties keep insertion order."""
        messages = [m for m in self._load_messages() if m.session_id == session_id]
        return sorted(messages, key=lambda m: m.created_at)

    def list_sessions(
        self, cursor: Optional[int] = None, limit: int = 20
    ) -> CursorPage[LocalSession, int]:
        """Page forward through sessions; the cursor is the next start index."""
        sessions = self._load_sessions()
        limit = max(limit, 1)
        start = max(cursor or 0, 0)
        end = start + limit
        has_more = end < len(sessions)
        return CursorPage[LocalSession, int](
            items=sessions[start:end],
            next_cursor=end if has_more else None,
            has_more=has_more,
        )

    def list_messages(
        self, session_id: str, cursor: Optional[int] = None, limit: int = 50
    ) -> CursorPage[LocalMessage, int]:
        """
        Page backwards from the newest message.

        The cursor counts messages already returned from the newest end. Each
        page is itself oldest first, so concatenating pages in reverse order
        rebuilds the full conversation.
        """
        messages = self.get_messages(session_id)
        limit = max(limit, 1)
        total = len(messages)
        consumed = max(cursor or 0, 0)
        end = max(total - consumed, 0)
        start = max(end - limit, 0)
        has_more = start > 0
        return CursorPage[LocalMessage, int](
            items=messages[start:end],
            next_cursor=consumed + limit if has_more else None,
            has_more=has_more,
        )

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_session(self, session_id: str, title: str) -> LocalSession:
        """Insert a session at the head of the list. Existing ids are returned as-is."""
        sessions = self._load_sessions()
        for session in sessions:
            if session.session_id == session_id:
                return session
        now = self._clock()
        session = LocalSession(
            session_id=session_id, title=title, created_at=now, updated_at=now
        )
        self._save_sessions([session] + sessions)
        return session

    def append_message(self, message: LocalMessage) -> None:
        """
        Store a message and move its session to the head of the list.

        Replaying a message_id that is already stored does nothing.
        """
        messages = self._load_messages()
        if any(m.message_id == message.message_id for m in messages):
            logger.debug("Message %s already stored locally", message.message_id)
            return
        if not self._save_messages(messages + [message]):
            return

        sessions = self._load_sessions()
        for index, session in enumerate(sessions):
            if session.session_id == message.session_id:
                bumped = session.model_copy(
                    update={
                        "updated_at": max(
                            session.updated_at, message.created_at, self._clock()
                        )
                    }
                )
                rest = sessions[:index] + sessions[index + 1 :]
                self._save_sessions([bumped] + rest)
                return
        logger.warning(
            "Stored message %s for unknown local session %s",
            message.message_id,
            message.session_id,
        )

    def delete_session(self, session_id: str) -> None:
        """Remove a session and every message that belongs to it."""
        sessions = self._load_sessions()
        messages = self._load_messages()
        # sessions slot first: a failed second write leaves unreachable messages,
        # never a listed session with its history missing
        if not self._save_sessions([s for s in sessions if s.session_id != session_id]):
            return
        self._save_messages([m for m in messages if m.session_id != session_id])

    def get_or_create_identity(self) -> str:
        """Stable anonymous id for this device, generated on first use."""
        if self._identity:
            return self._identity
        try:
            existing = self.storage.get_item(IDENTITY_KEY)
        except StorageUnavailable as e:
            logger.warning("Local storage read failed for %s: %s", IDENTITY_KEY, e)
            existing = None
        if existing:
            self._identity = existing
            return existing
        identity = f"{ANONYMOUS_ID_PREFIX}{uuid.uuid4()}"
        self._identity = identity
        try:
            self.storage.set_item(IDENTITY_KEY, identity)
        except StorageUnavailable as e:
            logger.warning("Anonymous id not persisted: %s", e)
        return identity
