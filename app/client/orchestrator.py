"""
Client-side driver for one conversation.

Owns the state of the turn in flight, talks to POST /chat through a
ChatConnection, and commits the finished turn to whichever store matches the
caller's identity: local storage for anonymous users, nothing for signed-in
users (the server already persisted the turn, so the view is refreshed).
"""

from __future__ import annotations

import asyncio
import re
import uuid
from contextlib import aclosing
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Iterable, List, Optional

import httpx

from app.client.api import SessionsApiClient
from app.client.connection import ChatConnection, ChatHttpError
from app.client.local_store import LocalSessionStore
from app.client.merge_view import DisplayMessage, IdentityMode, LiveTurn, merge_messages
from app.core.session_title import build_session_title
from app.exceptions import ChatSyncError, QuotaExceeded, TurnInProgress, UpstreamFailure
from app.infra.logging_config import get_logger
from app.schemas.session import LocalMessage, MessageRead
from app.utils.time_utils import now_ms

logger = get_logger("orchestrator")

_RATE_LIMIT_TEXT = re.compile(r"rate.?limit|limit reached|too many requests", re.I)


class TurnPhase(str, Enum):
    IDLE = "idle"
    SENDING = "sending"
    STREAMING = "streaming"
    FINALIZING = "finalizing"
    ERRORED = "errored"


_IN_FLIGHT = {TurnPhase.SENDING, TurnPhase.STREAMING, TurnPhase.FINALIZING}


@dataclass
class _TurnState:
    user_message_id: str
    user_text: str
    assistant_message_id: Optional[str] = None
    assistant_text: str = ""
    metadata_seen: bool = False
    created_session_id: Optional[str] = None


def _new_id() -> str:
    return str(uuid.uuid4())


def _quota_from_payload(payload: dict[str, Any], fallback: str = "") -> QuotaExceeded:
    return QuotaExceeded(
        limit=payload.get("limit"),
        remaining=payload.get("remaining", 0),
        reset_at=payload.get("resetAt"),
        message=payload.get("error") or fallback or "Daily message limit reached",
    )


def _classify_http_error(exc: ChatHttpError) -> ChatSyncError:
    payload = exc.payload
    if (
        exc.status_code == 429
        or "limit" in payload
        or "resetAt" in payload
        or _RATE_LIMIT_TEXT.search(exc.text or "")
    ):
        return _quota_from_payload(payload, exc.text)
    return UpstreamFailure(payload.get("error") or f"Chat request failed ({exc.status_code})")


class ChatOrchestrator:
    """
    One conversation, at most one turn in flight.

    Phases run IDLE -> SENDING -> STREAMING -> FINALIZING -> IDLE; a failure in
    SENDING or STREAMING ends in ERRORED, from which the next submit starts over.
    """

    def __init__(
        self,
        connection: ChatConnection,
        local_store: LocalSessionStore,
        token_provider: Callable[[], Awaitable[Optional[str]]],
        session_id: Optional[str] = None,
        on_navigate: Optional[Callable[[str], None]] = None,
        on_refresh: Optional[Callable[[str], None]] = None,
        id_factory: Callable[[], str] = _new_id,
        clock: Callable[[], int] = now_ms,
        api_client: Optional[SessionsApiClient] = None,
    ) -> None:
        self.connection = connection
        self.local_store = local_store
        self.api_client = api_client
        self._token_provider = token_provider
        self._on_navigate = on_navigate
        self._on_refresh = on_refresh
        self._new_id = id_factory
        self._clock = clock

        self.session_id = session_id
        self.identity_mode: IdentityMode = "anonymous"
        self.phase = TurnPhase.IDLE
        self.last_error: Optional[ChatSyncError] = None
        self._turn: Optional[_TurnState] = None
        self._navigated = False

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    @property
    def store(self):
        """The session store for the current identity mode."""
        if self.identity_mode == "authenticated":
            return self.api_client
        return self.local_store

    @property
    def live_turn(self) -> Optional[LiveTurn]:
        if self._turn is None:
            return None
        return LiveTurn(
            user_message_id=self._turn.user_message_id,
            user_text=self._turn.user_text,
            assistant_message_id=self._turn.assistant_message_id,
            assistant_text=self._turn.assistant_text,
        )

    def merged_messages(self, persisted: Iterable[MessageRead]) -> List[DisplayMessage]:
        return merge_messages(persisted, self.live_turn, self.identity_mode)

    # ------------------------------------------------------------------
    # Turn lifecycle
    # ------------------------------------------------------------------

    async def submit(self, text: str) -> None:
        """
        Send one user message and stream the reply.

        Raises:
            ValueError: text is blank.
            TurnInProgress: another turn has not finished yet.
            QuotaExceeded: the daily quota is used up. Nothing is stored.
            UpstreamFailure: transport, HTTP or in-band stream error. Nothing is stored.
        """
        if self.phase in _IN_FLIGHT:
            raise TurnInProgress("A message is already being sent")
        if not text or not text.strip():
            raise ValueError("Message text must not be empty")

        self.phase = TurnPhase.SENDING
        self.last_error = None
        self._turn = _TurnState(user_message_id=self._new_id(), user_text=text)

        try:
            token = await self._token_provider()
            self.identity_mode = "authenticated" if token else "anonymous"
            headers, body = self._build_request(token, text)

            async with aclosing(self.connection.stream(headers, body)) as events:
                async for event in events:
                    if self.handle_chunk(event):
                        break
            if self.phase is TurnPhase.SENDING:
                raise UpstreamFailure("Stream ended before metadata")
            self._finalize()
        except asyncio.CancelledError:
            logger.info("Turn %s cancelled", self._turn.user_message_id)
            self._discard_created_session()
            self._reset(TurnPhase.IDLE)
            raise
        except ChatHttpError as e:
            self._fail(_classify_http_error(e))
        except httpx.HTTPError as e:
            self._fail(UpstreamFailure(f"Connection failed: {e}"))
        except ChatSyncError as e:
            self._fail(e)
        except Exception as e:
            logger.exception("Unexpected error while handling chat turn")
            self._fail(UpstreamFailure(f"Unexpected chat stream failure: {e}"))

    def _build_request(
        self, token: Optional[str], text: str
    ) -> tuple[dict[str, str], dict[str, Any]]:
        headers = {"Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"

        body: dict[str, Any] = {
            "messages": [{"role": "user", "content": text}],
            "userMessageId": self._turn.user_message_id,
            "isAnonymous": self.identity_mode == "anonymous",
        }
        if self.session_id:
            body["sessionId"] = self.session_id
        if self.identity_mode == "anonymous":
            body["anonymousId"] = self.local_store.get_or_create_identity()
            history = (
                self.local_store.get_messages(self.session_id) if self.session_id else []
            )
            body["messageHistory"] = [
                {"role": m.role, "content": m.content} for m in history
            ]
        return headers, body

    def handle_chunk(self, event: dict[str, Any]) -> bool:
        """
        Apply one stream event to the live turn. Returns True on `done`.

        Raises:
            UpstreamFailure: the stream did not open with metadata, or reported an error.
            QuotaExceeded: the in-band error is a rate-limit message.
        """
        if self._turn is None:
            return False
        kind = event.get("type")

        if kind == "metadata":
            metadata = event.get("metadata") or {}
            if not isinstance(metadata, dict):
                raise UpstreamFailure("Malformed metadata event")
            self._apply_metadata(metadata)
            return False
        if not self._turn.metadata_seen:
            raise UpstreamFailure("Stream did not start with metadata")

        if kind == "content":
            if "content" in event:
                self._turn.assistant_text = event["content"] or ""
            else:
                self._turn.assistant_text += event.get("delta") or ""
        elif kind == "done":
            return True
        elif kind == "error":
            error = event.get("error")
            if isinstance(error, dict):
                message = error.get("message")
            else:
                message = error if isinstance(error, str) else None
            message = message or "An error occurred"
            if _RATE_LIMIT_TEXT.search(message):
                raise QuotaExceeded(message=message)
            raise UpstreamFailure(message)
        return False

    def _apply_metadata(self, metadata: dict[str, Any]) -> None:
        turn = self._turn
        if turn.metadata_seen:
            return
        turn.metadata_seen = True
        turn.user_message_id = metadata.get("userMessageId") or turn.user_message_id
        turn.assistant_message_id = metadata.get("assistantMessageId")
        self.phase = TurnPhase.STREAMING

        new_session_id = metadata.get("sessionId")
        if new_session_id and not self.session_id:
            self.session_id = new_session_id
            if self.identity_mode == "anonymous":
                self.local_store.create_session(
                    new_session_id, build_session_title(turn.user_text)
                )
                turn.created_session_id = new_session_id
            if self._on_navigate is not None and not self._navigated:
                self._navigated = True
                self._on_navigate(new_session_id)

    def _finalize(self) -> None:
        self.phase = TurnPhase.FINALIZING
        turn = self._turn
        if self.identity_mode == "anonymous" and self.session_id:
            if self.local_store.get_session(self.session_id) is None:
                self.local_store.create_session(
                    self.session_id, build_session_title(turn.user_text)
                )
            now = self._clock()
            stored = self.local_store.get_messages(self.session_id)
            if stored:
                # keep the new turn after everything already stored
                now = max(now, stored[-1].created_at + 1)
            self.local_store.append_message(
                LocalMessage(
                    message_id=turn.user_message_id,
                    session_id=self.session_id,
                    role="user",
                    content=turn.user_text,
                    created_at=now,
                )
            )
            if turn.assistant_message_id and turn.assistant_text:
                self.local_store.append_message(
                    LocalMessage(
                        message_id=turn.assistant_message_id,
                        session_id=self.session_id,
                        role="assistant",
                        content=turn.assistant_text,
                        created_at=now + 1,
                    )
                )
        elif self.identity_mode == "authenticated" and self._on_refresh is not None:
            self._on_refresh(self.session_id)
        self._reset(TurnPhase.IDLE)

    def _fail(self, error: ChatSyncError) -> None:
        logger.warning("Chat turn failed: %s", error)
        self.last_error = error
        self._discard_created_session()
        self._reset(TurnPhase.ERRORED)
        raise error

    def _discard_created_session(self) -> None:
        # a session opened by an unfinished turn must not outlive it
        if self._turn is not None and self._turn.created_session_id:
            self.local_store.delete_session(self._turn.created_session_id)

    def _reset(self, phase: TurnPhase) -> None:
        self._turn = None
        self.phase = phase
