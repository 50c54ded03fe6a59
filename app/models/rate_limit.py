"""RateLimitRecord model: per-identity, per-UTC-day message counter."""

from __future__ import annotations

from sqlalchemy import BigInteger, Column, Integer, String, UniqueConstraint

from app.db import Base
from app.utils.time_utils import now_ms


class RateLimitRecord(Base):
    __tablename__ = "rate_limits"

    __table_args__ = (
        UniqueConstraint("identifier", "date", name="uq_rate_limits_identifier_date"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    identifier = Column(String(256), nullable=False)
    identifier_type = Column(String(8), nullable=False)  # 'user' | 'ip'
    date = Column(String(10), nullable=False)  # YYYY-MM-DD (UTC)
    message_count = Column(Integer, nullable=False, default=0)
    updated_at = Column(BigInteger, nullable=False, default=now_ms)
