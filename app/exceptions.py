"""
Error taxonomy for chat persistence and streaming.

Authorization and quota errors are user-visible; storage errors from the
local store never leave it; everything else is logged and surfaced generically.
"""

from __future__ import annotations

from typing import Any, Optional


class ChatSyncError(Exception):
    """Base class for domain errors. status_code is the HTTP mapping."""

    status_code: int = 500

    def __init__(self, message: str = "") -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.message}


class Unauthorized(ChatSyncError):
    """No verified identity where one is required."""

    status_code = 401

    def __init__(self, message: str = "Authentication required") -> None:
        super().__init__(message)


class Forbidden(Unauthorized):
    """Verified identity does not own the record."""

    status_code = 403

    def __init__(self, message: str = "Not allowed to access this session") -> None:
        super().__init__(message)


class IdentityRequired(ChatSyncError):
    """Neither a verified principal nor an anonymous id was supplied."""

    status_code = 400

    def __init__(self, message: str = "User identification required") -> None:
        super().__init__(message)


class NotFound(ChatSyncError):
    status_code = 404

    def __init__(self, message: str = "Session not found") -> None:
        super().__init__(message)


class QuotaExceeded(ChatSyncError):
    """Daily message quota reached. Carries what the client needs to show a reset time."""

    status_code = 429

    def __init__(
        self,
        limit: Optional[int] = None,
        remaining: Optional[int] = 0,
        reset_at: Optional[str] = None,
        message: str = "Daily message limit reached",
    ) -> None:
        super().__init__(message)
        self.limit = limit
        self.remaining = remaining
        self.reset_at = reset_at

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": self.message,
            "limit": self.limit,
            "remaining": self.remaining,
            "resetAt": self.reset_at,
        }

    def headers(self) -> dict[str, str]:
        headers: dict[str, str] = {}
        if self.limit is not None:
            headers["X-RateLimit-Limit"] = str(self.limit)
        if self.remaining is not None:
            headers["X-RateLimit-Remaining"] = str(self.remaining)
        if self.reset_at is not None:
            headers["X-RateLimit-Reset"] = self.reset_at
        return headers


class StorageUnavailable(ChatSyncError):
    """Local key-value storage failed. Never propagated past the local store."""


class UpstreamFailure(ChatSyncError):
    """Provider, network or configuration failure."""

    def __init__(self, message: str = "An error occurred") -> None:
        super().__init__(message)


class InvalidCursor(ValueError):
    """Continuation token could not be decoded."""


class TurnInProgress(RuntimeError):
    """A turn is already streaming for this conversation."""
