# syncbridge/services/rate_gate.py
"""
Per-user, per-platform admission control for outbound API calls.

Counters and throttle state live in ``rate_limit_states`` so every worker sees
the same picture; the in-memory copy is only a short-lived read cache.
Rate-limit failures are retried here and nowhere else.
"""
import asyncio
import logging
from dataclasses import asdict, dataclass, fields
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from syncbridge.core.config import Settings
from syncbridge.core.enums import AlertSeverity, AlertType, PlatformName
from syncbridge.core.exceptions import (
    RateLimitExceededError,
    ValidationError,
    extract_retry_after,
    is_rate_limit_error,
)
from syncbridge.core.utils import ensure_utc, utcnow
from syncbridge.database import insert_or_get
from syncbridge.models.rate_limit import RateLimitState, SyncConfiguration

logger = logging.getLogger(__name__)

MINUTE_WINDOW_SECONDS = 60
HOUR_WINDOW_SECONDS = 3600


@dataclass
class RateLimitConfig:
    max_requests_per_minute: int
    max_requests_per_hour: int
    burst_limit: int
    backoff_multiplier: float
    max_backoff_seconds: float

    @classmethod
    def defaults_for(cls, platform: PlatformName, settings: Settings) -> "RateLimitConfig":
        prefix = PlatformName(platform).value.upper()
        return cls(
            max_requests_per_minute=getattr(settings, f"{prefix}_MAX_REQUESTS_PER_MINUTE"),
            max_requests_per_hour=getattr(settings, f"{prefix}_MAX_REQUESTS_PER_HOUR"),
            burst_limit=getattr(settings, f"{prefix}_BURST_LIMIT"),
            backoff_multiplier=getattr(settings, f"{prefix}_BACKOFF_MULTIPLIER"),
            max_backoff_seconds=getattr(settings, f"{prefix}_MAX_BACKOFF_SECONDS"),
        )

    def merged(self, overrides: Dict[str, Any]) -> "RateLimitConfig":
        known = {f.name for f in fields(self)}
        unknown = set(overrides) - known
        if unknown:
            raise ValidationError(f"Unknown rate limit settings: {', '.join(sorted(unknown))}")
        data = asdict(self)
        data.update(overrides)
        return RateLimitConfig(**data)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class RateLimitDecision:
    allowed: bool
    wait_seconds: float = 0.0
    reason: Optional[str] = None


@dataclass
class RateLimitFailure:
    wait_seconds: float
    should_retry: bool
    consecutive_errors: int
    throttle_until: Optional[datetime] = None


@dataclass
class _CachedState:
    requests_this_minute: int = 0
    requests_this_hour: int = 0
    last_request_time: Optional[datetime] = None
    consecutive_errors: int = 0
    is_throttled: bool = False
    throttle_until: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: RateLimitState) -> "_CachedState":
        return cls(
            requests_this_minute=row.requests_this_minute or 0,
            requests_this_hour=row.requests_this_hour or 0,
            last_request_time=ensure_utc(row.last_request_time),
            consecutive_errors=row.consecutive_errors or 0,
            is_throttled=bool(row.is_throttled),
            throttle_until=ensure_utc(row.throttle_until),
        )


def config_key(platform: PlatformName) -> str:
    return f"{PlatformName(platform).value}_rate_limit_config"


class RateGate:
    def __init__(
        self,
        session_factory: async_sessionmaker,
        settings: Settings,
        alert_service=None,
        event_publisher: Optional[Callable[..., Awaitable[Any]]] = None,
        clock: Callable[[], datetime] = utcnow,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.session_factory = session_factory
        self.settings = settings
        self.alert_service = alert_service
        self.event_publisher = event_publisher
        self.clock = clock
        self.sleep = sleep
        self.cache_ttl = timedelta(seconds=settings.RATE_LIMIT_CACHE_TTL_SECONDS)
        self._state_cache: Dict[Tuple[str, str], Tuple[_CachedState, datetime]] = {}
        self._config_cache: Dict[str, Tuple[RateLimitConfig, datetime]] = {}
        self._locks: Dict[Tuple[str, str], asyncio.Lock] = {}

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    async def get_config(self, platform: PlatformName) -> RateLimitConfig:
        """Settings defaults merged with any override stored in sync_configurations."""
        platform = PlatformName(platform)
        cached = self._config_cache.get(platform.value)
        if cached and self.clock() - cached[1] < self.cache_ttl:
            return cached[0]

        config = RateLimitConfig.defaults_for(platform, self.settings)
        async with self.session_factory() as session:
            result = await session.execute(
                select(SyncConfiguration).where(SyncConfiguration.config_key == config_key(platform))
            )
            stored = result.scalar_one_or_none()
        if stored and stored.config_value:
            config = config.merged(stored.config_value)

        self._config_cache[platform.value] = (config, self.clock())
        return config

    async def update_config(self, platform: PlatformName, overrides: Dict[str, Any]) -> RateLimitConfig:
        """Persist overrides for a platform. Takes effect on the next check without a restart."""
        platform = PlatformName(platform)
        defaults = RateLimitConfig.defaults_for(platform, self.settings)
        defaults.merged(overrides)  # validate keys before storing

        async with self.session_factory() as session:
            row = await insert_or_get(
                session,
                SyncConfiguration,
                {"config_key": config_key(platform), "config_value": {}},
                ["config_key"],
            )
            row.config_value = {**(row.config_value or {}), **overrides}
            await session.commit()
            merged = defaults.merged(row.config_value)

        self._config_cache.pop(platform.value, None)
        logger.info(f"Updated {platform.value} rate limit config: {row.config_value}")
        return merged

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    def _lock_for(self, key: Tuple[str, str]) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    async def _load_row(self, session: AsyncSession, user_id: str, platform: PlatformName) -> RateLimitState:
        return await insert_or_get(
            session,
            RateLimitState,
            {"user_id": user_id, "platform": platform.value},
            ["user_id", "platform"],
        )

    async def _get_state(self, user_id: str, platform: PlatformName) -> _CachedState:
        key = (user_id, platform.value)
        cached = self._state_cache.get(key)
        if cached and self.clock() - cached[1] < self.cache_ttl:
            return cached[0]

        async with self.session_factory() as session:
            result = await session.execute(
                select(RateLimitState).where(
                    RateLimitState.user_id == user_id,
                    RateLimitState.platform == platform.value,
                )
            )
            row = result.scalar_one_or_none()
        state = _CachedState.from_row(row) if row else _CachedState()
        self._state_cache[key] = (state, self.clock())
        return state

    def invalidate(self, user_id: Optional[str] = None):
        """Drop cached state so the next read goes to the store."""
        if user_id is None:
            self._state_cache.clear()
            self._config_cache.clear()
            return
        for key in [k for k in self._state_cache if k[0] == user_id]:
            del self._state_cache[key]

    @staticmethod
    def _elapsed_seconds(now: datetime, last: Optional[datetime]) -> float:
        if last is None:
            return float("inf")
        return (now - last).total_seconds()

    # ------------------------------------------------------------------
    # Admission
    # ------------------------------------------------------------------

    async def can_proceed(self, user_id: str, platform: PlatformName) -> RateLimitDecision:
        """
        Decide whether a call may go out now.

        Returns:
            RateLimitDecision with allowed=False and the seconds to wait when
            the platform is throttled or a window limit has been reached.
        """
        platform = PlatformName(platform)
        state = await self._get_state(user_id, platform)
        config = await self.get_config(platform)
        return self._decide(platform, state, config, self.clock())

    def _decide(
        self,
        platform: PlatformName,
        state: _CachedState,
        config: RateLimitConfig,
        now: datetime,
    ) -> RateLimitDecision:
        if state.is_throttled and state.throttle_until and now < state.throttle_until:
            wait = (state.throttle_until - now).total_seconds()
            return RateLimitDecision(False, wait, f"{platform.value} throttled for {wait:.1f}s")

        elapsed = self._elapsed_seconds(now, state.last_request_time)
        minute_count = 0 if elapsed >= MINUTE_WINDOW_SECONDS else state.requests_this_minute
        hour_count = 0 if elapsed >= HOUR_WINDOW_SECONDS else state.requests_this_hour

        if minute_count >= config.max_requests_per_minute:
            wait = max(1.0, MINUTE_WINDOW_SECONDS - elapsed)
            return RateLimitDecision(False, wait, "per-minute limit reached")
        if hour_count >= config.max_requests_per_hour:
            wait = max(1.0, HOUR_WINDOW_SECONDS - elapsed)
            return RateLimitDecision(False, wait, "per-hour limit reached")

        return RateLimitDecision(True)

    @staticmethod
    def _count_request(row: RateLimitState, now: datetime):
        elapsed = RateGate._elapsed_seconds(now, ensure_utc(row.last_request_time))
        if elapsed >= MINUTE_WINDOW_SECONDS:
            row.requests_this_minute = 0
        if elapsed >= HOUR_WINDOW_SECONDS:
            row.requests_this_hour = 0
        row.requests_this_minute = (row.requests_this_minute or 0) + 1
        row.requests_this_hour = (row.requests_this_hour or 0) + 1
        row.last_request_time = now

    async def reserve(self, user_id: str, platform: PlatformName) -> RateLimitDecision:
        """
        Admit one call and count it in the same step.

        The persisted row is re-read under the per-key lock, so concurrent
        callers cannot all pass the same check and overshoot a window limit.
        """
        platform = PlatformName(platform)
        key = (user_id, platform.value)
        config = await self.get_config(platform)

        async with self._lock_for(key):
            async with self.session_factory() as session:
                row = await self._load_row(session, user_id, platform)
                now = self.clock()
                decision = self._decide(platform, _CachedState.from_row(row), config, now)
                if decision.allowed:
                    self._count_request(row, now)
                await session.commit()
                self._state_cache[key] = (_CachedState.from_row(row), now)
        return decision

    async def record_success(self, user_id: str, platform: PlatformName, reserved: bool = False):
        """
        Register a successful call. ``reserved`` means the call was already
        counted by ``reserve`` and only the error state needs clearing.
        """
        platform = PlatformName(platform)
        key = (user_id, platform.value)
        async with self._lock_for(key):
            async with self.session_factory() as session:
                row = await self._load_row(session, user_id, platform)
                now = self.clock()
                if not reserved:
                    self._count_request(row, now)
                row.consecutive_errors = 0

                throttle_until = ensure_utc(row.throttle_until)
                if row.is_throttled and (throttle_until is None or throttle_until <= now):
                    row.is_throttled = False
                    row.throttle_until = None

                await session.commit()
                self._state_cache[key] = (_CachedState.from_row(row), now)

    async def record_failure(
        self,
        user_id: str,
        platform: PlatformName,
        retry_after: Optional[float] = None,
        status_code: Optional[int] = None,
        message: Optional[str] = None,
    ) -> RateLimitFailure:
        """
        Register a rate-limit response and throttle the platform for this user.

        The throttle window never moves backwards: a short server retry-after
        cannot shorten a longer throttle that is already in force.
        """
        platform = PlatformName(platform)
        key = (user_id, platform.value)
        config = await self.get_config(platform)

        async with self._lock_for(key):
            async with self.session_factory() as session:
                row = await self._load_row(session, user_id, platform)
                now = self.clock()

                row.consecutive_errors = (row.consecutive_errors or 0) + 1
                errors = row.consecutive_errors

                if retry_after is not None:
                    wait = float(retry_after)
                else:
                    wait = min(
                        self.settings.RATE_LIMIT_BASE_BACKOFF_SECONDS * config.backoff_multiplier ** errors,
                        config.max_backoff_seconds,
                    )

                candidate = now + timedelta(seconds=wait)
                existing = ensure_utc(row.throttle_until)
                throttle_until = max(existing, candidate) if existing else candidate
                row.is_throttled = True
                row.throttle_until = throttle_until

                await session.commit()
                self._state_cache[key] = (_CachedState.from_row(row), now)

        should_retry = errors < self.settings.RATE_LIMIT_MAX_CONSECUTIVE_ERRORS
        failure = RateLimitFailure(
            wait_seconds=(throttle_until - now).total_seconds(),
            should_retry=should_retry,
            consecutive_errors=errors,
            throttle_until=throttle_until,
        )
        logger.warning(
            f"Rate limited by {platform.value} for user {user_id} "
            f"(status={status_code}, errors={errors}, wait={failure.wait_seconds:.1f}s)"
        )

        if errors > self.settings.RATE_LIMIT_ALERT_THRESHOLD and self.alert_service:
            await self.alert_service.create_alert(
                AlertType.RATE_LIMIT,
                AlertSeverity.HIGH if should_retry else AlertSeverity.CRITICAL,
                f"{platform.display_name} rate limit exceeded",
                message or f"{errors} consecutive rate-limit responses; throttled for {failure.wait_seconds:.0f}s",
                user_id=user_id,
                source="rate_gate",
                metadata={
                    "platform": platform.value,
                    "consecutive_errors": errors,
                    "status_code": status_code,
                    "throttle_until": throttle_until.isoformat(),
                },
            )

        if self.event_publisher:
            await self._publish_rate_limited(user_id, platform, failure)

        return failure

    async def _publish_rate_limited(self, user_id: str, platform: PlatformName, failure: RateLimitFailure):
        try:
            await self.event_publisher(
                user_id=user_id,
                platform=platform,
                wait_seconds=failure.wait_seconds,
                consecutive_errors=failure.consecutive_errors,
            )
        except Exception as e:
            # The throttle itself is already persisted; a lost notification must not fail the call path
            logger.error(f"Failed to publish api_rate_limited event for {platform.value}: {e}", exc_info=True)

    async def get_status(self, user_id: str, platform: PlatformName) -> Dict[str, Any]:
        platform = PlatformName(platform)
        self._state_cache.pop((user_id, platform.value), None)
        state = await self._get_state(user_id, platform)
        config = await self.get_config(platform)
        decision = await self.can_proceed(user_id, platform)
        return {
            "platform": platform.value,
            "config": config.to_dict(),
            "requests_this_minute": state.requests_this_minute,
            "requests_this_hour": state.requests_this_hour,
            "consecutive_errors": state.consecutive_errors,
            "is_throttled": state.is_throttled,
            "throttle_until": state.throttle_until,
            "can_proceed": decision.allowed,
            "wait_seconds": decision.wait_seconds,
        }

    # ------------------------------------------------------------------
    # Guarded call
    # ------------------------------------------------------------------

    async def call(
        self,
        user_id: str,
        platform: PlatformName,
        operation: Callable[[], Awaitable[Any]],
        description: str = "",
    ):
        """
        Run ``operation`` under the gate: wait for admission, call, then record
        the outcome. Rate-limited failures are retried here until the gate
        stops allowing retries; any other error propagates untouched.
        """
        platform = PlatformName(platform)
        label = description or getattr(operation, "__name__", "call")

        while True:
            decision = await self.reserve(user_id, platform)
            if not decision.allowed:
                logger.info(f"{platform.value} {label}: waiting {decision.wait_seconds:.1f}s ({decision.reason})")
                await self.sleep(decision.wait_seconds)
                continue

            try:
                result = await operation()
            except Exception as exc:
                if not is_rate_limit_error(exc):
                    raise
                failure = await self.record_failure(
                    user_id,
                    platform,
                    retry_after=extract_retry_after(exc),
                    status_code=getattr(exc, "status_code", None),
                    message=str(exc),
                )
                if not failure.should_retry:
                    raise RateLimitExceededError(
                        f"{platform.display_name} {label} still rate limited after "
                        f"{failure.consecutive_errors} attempts",
                        platform=platform.value,
                        wait_seconds=failure.wait_seconds,
                    ) from exc
                await self.sleep(failure.wait_seconds)
                continue

            await self.record_success(user_id, platform, reserved=True)
            return result
