"""
Wire contracts for the streaming chat endpoint.

The request body and stream events use camelCase on the wire; models accept
both spellings.
"""

from __future__ import annotations

from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from app.schemas.session import HistoryItem

IdentifierType = Literal["user", "ip"]


class ChatTurn(BaseModel):
    """One chat message as sent by the client (plain content or text parts)."""

    model_config = ConfigDict(extra="ignore")

    role: str
    content: Optional[str] = None
    parts: Optional[list[dict[str, Any]]] = None

    def text(self) -> str:
        if self.parts:
            for part in self.parts:
                if part.get("type") == "text" and part.get("content") is not None:
                    return str(part["content"])
        return self.content or ""


class ChatRequest(BaseModel):
    """Body of POST /chat."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    messages: list[ChatTurn] = Field(default_factory=list)
    session_id: Optional[str] = Field(default=None, alias="sessionId")
    anonymous_id: Optional[str] = Field(default=None, alias="anonymousId")
    user_message_id: Optional[str] = Field(default=None, alias="userMessageId")
    is_anonymous: bool = Field(default=False, alias="isAnonymous")
    message_history: Optional[list[HistoryItem]] = Field(
        default=None, alias="messageHistory"
    )

    def latest_user_text(self) -> str:
        """Text of the last message when it is a user turn, else empty."""
        if not self.messages:
            return ""
        latest = self.messages[-1]
        if latest.role != "user":
            return ""
        return latest.text()


class StreamMetadata(BaseModel):
    """Identifiers announced in the first stream event."""

    model_config = ConfigDict(populate_by_name=True)

    session_id: Optional[str] = Field(default=None, alias="sessionId")
    user_message_id: str = Field(alias="userMessageId")
    assistant_message_id: str = Field(alias="assistantMessageId")


class RateLimitStatus(BaseModel):
    """Result of a quota check."""

    allowed: bool
    limit: int
    remaining: int
    reset_at: str


class RateLimitUsage(BaseModel):
    """Quota usage for display."""

    limit: int
    used: int
    remaining: int
    is_limited: bool
