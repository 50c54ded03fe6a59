"""
Command to run one chat turn as a server-sent event stream.

Resolves the caller's identity, enforces the daily quota, persists the user
message (authenticated callers only), streams the model reply and persists the
assistant message once the stream completes.
"""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable, List, Optional

from app.config import Settings, get_settings
from app.core.session_title import build_session_title
from app.exceptions import Forbidden, IdentityRequired, QuotaExceeded
from app.schemas.chat import ChatRequest, StreamMetadata
from app.schemas.session import HistoryItem, MessageCreate
from app.services.remote_session_store import TrustedSessionWriter
from app.utils.db.db_session_helper import SessionFactory
from app.utils.rate_limit import IdentifierType, RateLimiter
from app.workers.llm import CompletionStreamer

logger = logging.getLogger(__name__)

DONE_EVENT = "data: [DONE]\n\n"


def _sse(payload: dict[str, Any]) -> str:
    return f"data: {json.dumps(payload)}\n\n"


def _new_id() -> str:
    return str(uuid.uuid4())


@dataclass
class ChatTurnPlan:
    """Everything decided before the first byte is streamed."""

    session_id: str
    is_new_session: bool
    user_message_id: str
    assistant_message_id: str
    owner_id: str
    persist_remote: bool
    identifier: str
    identifier_type: IdentifierType
    history: List[HistoryItem] = field(default_factory=list)

    @property
    def metadata(self) -> StreamMetadata:
        return StreamMetadata(
            session_id=self.session_id if self.is_new_session else None,
            user_message_id=self.user_message_id,
            assistant_message_id=self.assistant_message_id,
        )


class StreamChatCommand:
    """
    Run a chat turn for POST /chat.

    Remote persistence happens only for a verified principal that did not ask
    for anonymous mode; anonymous callers ship their own history and persist
    locally.
    """

    def __init__(
        self,
        session_factory: SessionFactory,
        llm: CompletionStreamer,
        rate_limiter: RateLimiter,
        settings: Optional[Settings] = None,
        id_factory: Callable[[], str] = _new_id,
    ) -> None:
        self._session_factory = session_factory
        self._llm = llm
        self._rate_limiter = rate_limiter
        self.settings = settings or get_settings()
        self._new_id = id_factory

    async def execute(
        self,
        body: ChatRequest,
        principal: Optional[str],
        ip: Optional[str] = None,
    ) -> AsyncIterator[str]:
        """
        Validate and prepare the turn, then return the SSE event iterator.

        Args:
            body: Parsed POST /chat body.
            principal: Verified user id from the bearer token, or None.
            ip: Client address used as the quota key for anonymous callers.

        Returns:
            AsyncIterator[str]: Encoded `data:` events, metadata first.

        Raises:
            IdentityRequired: 400 when there is neither a principal nor an anonymous id.
            QuotaExceeded: 429 when today's quota is used up. Nothing is written.
            Forbidden: 403 when the session belongs to another principal.
        """
        plan = self._plan(body, principal, ip)

        status = self._rate_limiter.check(plan.identifier, plan.identifier_type)
        if not status.allowed:
            logger.info(
                "Quota exceeded for %s %s (limit %d)",
                plan.identifier_type,
                plan.identifier,
                status.limit,
            )
            raise QuotaExceeded(
                limit=status.limit,
                remaining=status.remaining,
                reset_at=status.reset_at,
            )

        user_text = body.latest_user_text()
        if plan.persist_remote:
            plan.history = self._persist_user_turn(plan, user_text)
        else:
            plan.history = list(body.message_history or []) + [
                HistoryItem(role="user", content=user_text)
            ]
        return self._events(plan)

    def _plan(
        self, body: ChatRequest, principal: Optional[str], ip: Optional[str]
    ) -> ChatTurnPlan:
        owner_id = principal or body.anonymous_id
        if not owner_id:
            raise IdentityRequired()
        if principal is not None:
            identifier, identifier_type = principal, "user"
        else:
            identifier, identifier_type = ip or body.anonymous_id, "ip"
        return ChatTurnPlan(
            session_id=body.session_id or self._new_id(),
            is_new_session=not body.session_id,
            user_message_id=body.user_message_id or self._new_id(),
            assistant_message_id=self._new_id(),
            owner_id=owner_id,
            persist_remote=principal is not None and not body.is_anonymous,
            identifier=identifier,
            identifier_type=identifier_type,
        )

    def _persist_user_turn(self, plan: ChatTurnPlan, user_text: str) -> List[HistoryItem]:
        """Create the session if new, store the user message, return the full history."""
        with self._session_factory() as db:
            writer = TrustedSessionWriter(db)
            if plan.is_new_session:
                writer.create_session(
                    plan.session_id,
                    plan.owner_id,
                    build_session_title(user_text, self.settings.title_max_length),
                )
            else:
                existing = writer.get_session(plan.session_id)
                if existing is not None and existing.owner_id != plan.owner_id:
                    raise Forbidden()
            if user_text:
                writer.append_message(
                    plan.session_id,
                    MessageCreate(
                        message_id=plan.user_message_id,
                        role="user",
                        content=user_text,
                    ),
                )
            return writer.get_full_history(plan.session_id)

    async def _events(self, plan: ChatTurnPlan) -> AsyncIterator[str]:
        yield _sse(
            {
                "type": "metadata",
                "metadata": plan.metadata.model_dump(by_alias=True, exclude_none=True),
            }
        )

        full_response = ""
        try:
            async for delta in self._llm.stream(plan.history):
                full_response += delta
                yield _sse(
                    {
                        "type": "content",
                        "id": plan.assistant_message_id,
                        "role": "assistant",
                        "delta": delta,
                        "content": full_response,
                    }
                )
        except Exception:
            logger.exception("Model stream failed for session %s", plan.session_id)
            yield _sse({"type": "error", "error": {"message": "An error occurred"}})
            return

        if plan.persist_remote and full_response:
            try:
                with self._session_factory() as db:
                    TrustedSessionWriter(db).append_message(
                        plan.session_id,
                        MessageCreate(
                            message_id=plan.assistant_message_id,
                            role="assistant",
                            content=full_response,
                        ),
                    )
            except Exception:
                logger.exception(
                    "Failed to store assistant message %s", plan.assistant_message_id
                )
                yield _sse(
                    {"type": "error", "error": {"message": "Failed to save response"}}
                )
                return

        self._rate_limiter.increment(plan.identifier, plan.identifier_type)

        yield _sse(
            {
                "type": "done",
                "id": plan.assistant_message_id,
                "finishReason": "stop",
                "content": full_response,
            }
        )
        yield DONE_EVENT
