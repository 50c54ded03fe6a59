from typing import Optional

from fastapi import Depends
from sqlalchemy.orm import Session

from app.config import get_settings
from app.core.auth import get_verified_principal
from app.db import get_db
from app.exceptions import UpstreamFailure
from app.services.remote_session_store import RemoteSessionStore
from app.utils.db.db_session_helper import SessionFactory, db_session
from app.utils.rate_limit import RateLimiter, build_rate_limiter
from app.workers.llm import CompletionStreamer, build_llm_runner_from_env


def get_session_factory() -> SessionFactory:
    """FastAPI dependency: session factory for work that outlives the request scope."""
    return db_session


def get_rate_limiter(
    session_factory: SessionFactory = Depends(get_session_factory),
) -> RateLimiter:
    """FastAPI dependency: rate limiter for the configured backend."""
    return build_rate_limiter(get_settings(), session_factory)


def get_llm() -> CompletionStreamer:
    """FastAPI dependency: LLM runner. 500 when no API key is configured."""
    if not get_settings().litellm_api_key:
        raise UpstreamFailure("LITELLM_API_KEY not configured")
    return build_llm_runner_from_env()


def get_remote_store(
    principal: Optional[str] = Depends(get_verified_principal),
    db: Session = Depends(get_db),
) -> RemoteSessionStore:
    """FastAPI dependency: remote store scoped to the caller's verified principal."""
    return RemoteSessionStore(db, principal)
