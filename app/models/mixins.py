"""Shared column mixins."""

from __future__ import annotations

from sqlalchemy import BigInteger, Column

from app.utils.time_utils import now_ms


class TimestampMixin:
    """created_at / updated_at as UTC epoch milliseconds."""

    created_at = Column(BigInteger, nullable=False, default=now_ms)
    updated_at = Column(BigInteger, nullable=False, default=now_ms)
