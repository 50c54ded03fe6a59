"""Session title derivation from the first user message."""

from __future__ import annotations

DEFAULT_TITLE = "New Chat"


def build_session_title(text: str | None, max_length: int = 50) -> str:
    """
    First max_length characters of the submitted text, or DEFAULT_TITLE
    when the text is empty.
    """
    title = (text or "")[:max_length]
    return title or DEFAULT_TITLE
