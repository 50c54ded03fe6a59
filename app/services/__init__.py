from app.services.remote_session_store import RemoteSessionStore, TrustedSessionWriter

__all__ = [
    "RemoteSessionStore",
    "TrustedSessionWriter",
]
