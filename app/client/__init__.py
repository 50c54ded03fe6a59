"""Client-side pieces: local storage, the turn orchestrator and the merge view."""

from app.client.api import SessionsApiClient
from app.client.connection import ChatConnection, ChatHttpError
from app.client.local_store import LocalSessionStore
from app.client.merge_view import DisplayMessage, LiveTurn, merge_messages
from app.client.orchestrator import ChatOrchestrator, TurnPhase
from app.client.storage import FileStorage, KeyValueStorage, MemoryStorage

__all__ = [
    "ChatConnection",
    "ChatHttpError",
    "ChatOrchestrator",
    "DisplayMessage",
    "FileStorage",
    "KeyValueStorage",
    "LiveTurn",
    "LocalSessionStore",
    "MemoryStorage",
    "SessionsApiClient",
    "TurnPhase",
    "merge_messages",
]
