import asyncio
import re
from typing import Any, Dict, Optional

import httpx

from syncbridge.core.enums import ErrorCategory


class BaseServiceError(Exception):
    """Base exception for all service-related errors."""
    pass

class PlatformServiceError(BaseServiceError):
    """Base exception for platform service errors."""
    pass

class PlatformAPIError(PlatformServiceError):
    """Raised when a storefront or ERP API call fails."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        retry_after: Optional[float] = None,
        platform: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.retry_after = retry_after
        self.platform = platform
        self.headers = headers or {}

class RateLimitExceededError(PlatformServiceError):
    """Raised when the rate gate gives up on a throttled platform call."""

    def __init__(self, message: str, platform: Optional[str] = None, wait_seconds: float = 0.0):
        super().__init__(message)
        self.platform = platform
        self.wait_seconds = wait_seconds

class SyncError(PlatformServiceError):
    """Raised when platform synchronization fails."""
    pass

class SyncInProgressError(SyncError):
    """Raised when a sync is already running for the user."""

    def __init__(self, user_id: str, sync_log_id: Optional[int] = None):
        super().__init__(f"A sync is already in progress for user {user_id}")
        self.user_id = user_id
        self.sync_log_id = sync_log_id

class ValidationError(BaseServiceError):
    """Raised when data validation fails."""
    pass

class MappingError(BaseServiceError):
    """Raised when an entity mapping is missing or would be rebound."""
    pass

class SnapshotNotFoundError(BaseServiceError):
    """Raised when a snapshot does not exist."""
    pass

class SnapshotIntegrityError(BaseServiceError):
    """Raised when a snapshot's checksum no longer matches its payload."""

    def __init__(self, snapshot_id: int, expected: str, actual: str):
        super().__init__(
            f"Snapshot {snapshot_id} failed integrity check (expected {expected[:12]}, got {actual[:12]})"
        )
        self.snapshot_id = snapshot_id
        self.expected = expected
        self.actual = actual

class RestorePointNotFoundError(BaseServiceError):
    """Raised when a restore point is not found."""
    pass

class EventHandlerTimeoutError(BaseServiceError):
    """Raised when an event handler exceeds its timeout."""
    pass

class DatabaseError(Exception):
    """Exception raised for database-related errors."""
    pass


_RATE_LIMIT_STATUSES = {420, 429}
_TRANSIENT_STATUSES = {408, 429, 500, 502, 503, 504}
_RATE_LIMIT_PHRASES = ("rate limit", "too many requests", "throttle", "quota")
_TRANSIENT_PHRASES = ("timeout", "timed out", "connection reset", "econnreset", "connection refused", "temporarily unavailable")
_RETRY_AFTER_PATTERN = re.compile(r"retry after (\d+(?:\.\d+)?) seconds?", re.IGNORECASE)


def _status_of(exc: BaseException) -> Optional[int]:
    if isinstance(exc, PlatformAPIError):
        return exc.status_code
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code
    return getattr(exc, "status_code", None)


def is_rate_limit_error(exc: BaseException, status_code: Optional[int] = None, message: Optional[str] = None) -> bool:
    """True for 429/420 responses or errors whose text reads like throttling."""
    status = status_code if status_code is not None else _status_of(exc)
    if status in _RATE_LIMIT_STATUSES:
        return True
    text = (message if message is not None else str(exc)).lower()
    return any(phrase in text for phrase in _RATE_LIMIT_PHRASES)


def is_transient_error(exc: BaseException) -> bool:
    """
    Errors worth retrying with backoff: timeouts, dropped connections and
    502/503/504 style responses. A raw 429 counts here too, but once the rate
    gate has given up (RateLimitExceededError) the call is not retried again.
    """
    if isinstance(exc, RateLimitExceededError):
        return False
    if isinstance(exc, (asyncio.TimeoutError, EventHandlerTimeoutError, httpx.TimeoutException, httpx.NetworkError)):
        return True
    if isinstance(exc, (ConnectionError, TimeoutError)):
        return True
    status = _status_of(exc)
    if status is not None:
        return status in _TRANSIENT_STATUSES
    text = str(exc).lower()
    return any(phrase in text for phrase in _TRANSIENT_PHRASES)


def classify_error(exc: BaseException) -> ErrorCategory:
    if isinstance(exc, SnapshotIntegrityError):
        return ErrorCategory.INTEGRITY
    if isinstance(exc, RateLimitExceededError) or is_rate_limit_error(exc):
        return ErrorCategory.RATE_LIMITED
    if is_transient_error(exc):
        return ErrorCategory.TRANSIENT
    return ErrorCategory.PERMANENT


def extract_retry_after(exc: BaseException) -> Optional[float]:
    """Server-provided retry delay in seconds, if the error carries one."""
    retry_after = getattr(exc, "retry_after", None)
    if retry_after is not None:
        return float(retry_after)

    headers: Any = getattr(exc, "headers", None)
    if headers is None and isinstance(exc, httpx.HTTPStatusError):
        headers = exc.response.headers
    if headers:
        value = headers.get("Retry-After") or headers.get("retry-after")
        if value is not None:
            try:
                return float(value)
            except (TypeError, ValueError):
                pass

    match = _RETRY_AFTER_PATTERN.search(str(exc))
    if match:
        return float(match.group(1))
    return None
