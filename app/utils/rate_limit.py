"""
Daily message quota per verified user or per client IP.

check() and increment() are separate calls: callers check before doing
provider work and increment only after the work succeeded. Two concurrent
requests from one identity can both pass check() before either increments,
so the quota can be exceeded by the number of requests in flight at once.
This over-admission window is accepted.

The limiter is fail-open: if the backend is unreachable, check() allows the
request and increment() is skipped, both with a warning.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Optional, Protocol

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from app.config import Settings
from app.models.rate_limit import RateLimitRecord
from app.schemas.chat import IdentifierType, RateLimitStatus, RateLimitUsage
from app.utils.db.db_session_helper import SessionFactory
from app.utils.time_utils import (
    end_of_utc_day,
    end_of_utc_day_timestamp,
    utc_date_string,
    utc_now,
)

logger = logging.getLogger(__name__)

AUTHENTICATED_USER_LIMIT = 10
ANONYMOUS_USER_LIMIT = 5


class RateLimitBackend(Protocol):
    def get_count(self, identifier: str, moment: datetime) -> int: ...

    def increment(
        self, identifier: str, identifier_type: IdentifierType, moment: datetime
    ) -> int: ...


class DatabaseRateLimitBackend:
    """One row per (identifier, UTC date); increments are a single upsert statement."""

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    def get_count(self, identifier: str, moment: datetime) -> int:
        with self._session_factory() as db:
            record = (
                db.query(RateLimitRecord)
                .filter(
                    RateLimitRecord.identifier == identifier,
                    RateLimitRecord.date == utc_date_string(moment),
                )
                .first()
            )
            return record.message_count if record else 0

    def increment(
        self, identifier: str, identifier_type: IdentifierType, moment: datetime
    ) -> int:
        day = utc_date_string(moment)
        now = int(moment.timestamp() * 1000)
        table = RateLimitRecord.__table__
        with self._session_factory() as db:
            dialect = db.get_bind().dialect.name
            insert = pg_insert if dialect == "postgresql" else sqlite_insert
            stmt = insert(table).values(
                identifier=identifier,
                identifier_type=identifier_type,
                date=day,
                message_count=1,
                updated_at=now,
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=[table.c.identifier, table.c.date],
                set_={
                    "message_count": table.c.message_count + 1,
                    "updated_at": now,
                },
            )
            db.execute(stmt)
            db.commit()
            count = (
                db.query(RateLimitRecord.message_count)
                .filter(
                    RateLimitRecord.identifier == identifier,
                    RateLimitRecord.date == day,
                )
                .scalar()
            )
            return int(count or 0)


class RedisRateLimitBackend:
    """One counter key per (identifier, UTC date), expiring at the next UTC midnight."""

    def __init__(self, redis_client: object, namespace: str = "chatsync") -> None:
        self._redis = redis_client
        self._namespace = namespace

    def _key(self, identifier: str, moment: datetime) -> str:
        return f"{self._namespace}:ratelimit:{identifier}:{utc_date_string(moment)}"

    def get_count(self, identifier: str, moment: datetime) -> int:
        value = self._redis.get(self._key(identifier, moment))
        return int(value) if value else 0

    def increment(
        self, identifier: str, identifier_type: IdentifierType, moment: datetime
    ) -> int:
        key = self._key(identifier, moment)
        pipe = self._redis.pipeline()
        pipe.incr(key)
        pipe.expireat(key, end_of_utc_day_timestamp(moment))
        results = pipe.execute()
        return int(results[0]) if results else 0


class RateLimiter:
    def __init__(
        self,
        backend: RateLimitBackend,
        user_limit: int = AUTHENTICATED_USER_LIMIT,
        ip_limit: int = ANONYMOUS_USER_LIMIT,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._backend = backend
        self._limits = {"user": user_limit, "ip": ip_limit}
        self._clock = clock or utc_now

    def limit_for(self, identifier_type: IdentifierType) -> int:
        return self._limits["user" if identifier_type == "user" else "ip"]

    def check(
        self, identifier: str, identifier_type: IdentifierType
    ) -> RateLimitStatus:
        """Whether one more message is allowed today. Does not consume quota."""
        moment = self._clock()
        limit = self.limit_for(identifier_type)
        reset_at = end_of_utc_day(moment)
        try:
            count = self._backend.get_count(identifier, moment)
        except Exception as e:
            logger.warning("Rate limit check failed, allowing request: %s", e)
            return RateLimitStatus(
                allowed=True, limit=limit, remaining=limit, reset_at=reset_at
            )
        return RateLimitStatus(
            allowed=count < limit,
            limit=limit,
            remaining=max(0, limit - count),
            reset_at=reset_at,
        )

    def increment(
        self, identifier: str, identifier_type: IdentifierType
    ) -> Optional[int]:
        """Count one message against today's quota. Returns the new count, or None on failure."""
        try:
            return self._backend.increment(identifier, identifier_type, self._clock())
        except Exception as e:
            logger.warning("Rate limit increment failed for %s: %s", identifier, e)
            return None

    def status(
        self, identifier: str, identifier_type: IdentifierType
    ) -> RateLimitUsage:
        moment = self._clock()
        limit = self.limit_for(identifier_type)
        try:
            used = self._backend.get_count(identifier, moment)
        except Exception as e:
            logger.warning("Rate limit status failed: %s", e)
            used = 0
        remaining = max(0, limit - used)
        return RateLimitUsage(
            limit=limit, used=used, remaining=remaining, is_limited=remaining == 0
        )


def build_rate_limiter(
    settings: Settings, session_factory: SessionFactory
) -> RateLimiter:
    """Rate limiter for the configured backend (database or redis)."""
    if settings.rate_limit_backend.lower() == "redis":
        import redis

        client = redis.Redis(host=settings.redis_host, port=settings.redis_port)
        backend: RateLimitBackend = RedisRateLimitBackend(
            client, namespace=settings.redis_namespace
        )
    else:
        backend = DatabaseRateLimitBackend(session_factory)
    return RateLimiter(
        backend,
        user_limit=settings.rate_limit_user_per_day,
        ip_limit=settings.rate_limit_ip_per_day,
    )
