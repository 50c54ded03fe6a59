"""Context-managed database sessions for code running outside a request scope."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Callable, ContextManager, Iterator

from sqlalchemy.orm import Session

from app.db import SessionLocal

SessionFactory = Callable[[], ContextManager[Session]]


@contextmanager
def db_session() -> Iterator[Session]:
    """Open a session, roll back on error, always close."""
    db = SessionLocal()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
