from datetime import datetime
from typing import Optional

from pydantic import Field

from syncbridge.schemas.base import CamelSchema


class RateLimitConfigSchema(CamelSchema):
    max_requests_per_minute: int
    max_requests_per_hour: int
    burst_limit: int
    backoff_multiplier: float
    max_backoff_seconds: float


class RateLimitConfigUpdate(CamelSchema):
    max_requests_per_minute: Optional[int] = Field(default=None, gt=0)
    max_requests_per_hour: Optional[int] = Field(default=None, gt=0)
    burst_limit: Optional[int] = Field(default=None, gt=0)
    backoff_multiplier: Optional[float] = Field(default=None, ge=1.0)
    max_backoff_seconds: Optional[float] = Field(default=None, gt=0)


class RateLimitStatus(CamelSchema):
    platform: str
    config: RateLimitConfigSchema
    requests_this_minute: int
    requests_this_hour: int
    consecutive_errors: int
    is_throttled: bool
    throttle_until: Optional[datetime] = None
    can_proceed: bool
    wait_seconds: float
