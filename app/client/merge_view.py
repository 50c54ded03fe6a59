"""
Merge persisted history with the turn that is currently streaming.

Pure functions only: the same inputs always produce the same list.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Literal, Optional

from app.schemas.session import MessageRead

IdentityMode = Literal["anonymous", "authenticated"]
MessageSource = Literal["local", "remote", "live"]


@dataclass(frozen=True)
class LiveTurn:
    """The in-flight turn as tracked by the orchestrator."""

    user_message_id: str
    user_text: str
    assistant_message_id: Optional[str] = None
    assistant_text: str = ""


@dataclass(frozen=True)
class DisplayMessage:
    id: str
    role: str
    content: str
    created_at: int
    is_streaming: bool = False
    source: MessageSource = "live"


def _persisted_source(identity_mode: IdentityMode) -> MessageSource:
    return "local" if identity_mode == "anonymous" else "remote"


def merge_messages(
    persisted: Iterable[MessageRead],
    live_turn: Optional[LiveTurn],
    identity_mode: IdentityMode,
) -> List[DisplayMessage]:
    """
    Build the display list for a conversation.

    Persisted messages come first, oldest first. While a turn is live, its user
    line and (once the assistant id is known) its assistant line are appended
    after the newest persisted message, unless a message with the same id has
    already been persisted.
    """
    source = _persisted_source(identity_mode)
    ordered = sorted(persisted, key=lambda m: m.created_at)
    merged = [
        DisplayMessage(
            id=m.message_id,
            role=m.role,
            content=m.content,
            created_at=m.created_at,
            source=source,
        )
        for m in ordered
    ]
    if live_turn is None:
        return merged

    known_ids = {m.message_id for m in ordered}
    last_created = ordered[-1].created_at if ordered else 0

    if live_turn.user_message_id not in known_ids:
        last_created += 1
        merged.append(
            DisplayMessage(
                id=live_turn.user_message_id,
                role="user",
                content=live_turn.user_text,
                created_at=last_created,
            )
        )

    assistant_id = live_turn.assistant_message_id
    if assistant_id and assistant_id not in known_ids:
        merged.append(
            DisplayMessage(
                id=assistant_id,
                role="assistant",
                content=live_turn.assistant_text,
                created_at=last_created + 1,
                is_streaming=True,
            )
        )
    return merged
