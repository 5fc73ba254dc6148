# syncbridge/models/rate_limit.py
from sqlalchemy import Boolean, Column, DateTime, Integer, JSON, String, UniqueConstraint

from syncbridge.core.utils import utcnow
from syncbridge.database import Base


class RateLimitState(Base):
    """Rolling request counters and throttle state per (user, platform)."""
    __tablename__ = "rate_limit_states"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), nullable=False, index=True)
    platform = Column(String(32), nullable=False)

    requests_this_minute = Column(Integer, nullable=False, default=0)
    requests_this_hour = Column(Integer, nullable=False, default=0)
    last_request_time = Column(DateTime(timezone=True), nullable=True)
    consecutive_errors = Column(Integer, nullable=False, default=0)
    is_throttled = Column(Boolean, nullable=False, default=False)
    throttle_until = Column(DateTime(timezone=True), nullable=True)

    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint('user_id', 'platform', name='uq_rate_limit_user_platform'),
    )

    def __repr__(self):
        return (f"<RateLimitState(user_id='{self.user_id}', platform='{self.platform}', "
                f"minute={self.requests_this_minute}, hour={self.requests_this_hour}, "
                f"errors={self.consecutive_errors}, throttled={bool(self.is_throttled)})>")


class SyncConfiguration(Base):
    """Key/value configuration store; rate limit overrides live here."""
    __tablename__ = "sync_configurations"

    id = Column(Integer, primary_key=True, index=True)
    config_key = Column(String(128), nullable=False, unique=True)
    config_value = Column(JSON, nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f"<SyncConfiguration(key='{self.config_key}')>"
