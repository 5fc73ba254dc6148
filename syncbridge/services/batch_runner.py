# syncbridge/services/batch_runner.py
import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, List, Optional, Sequence

from syncbridge.core.exceptions import is_transient_error

logger = logging.getLogger(__name__)


@dataclass
class BatchItemResult:
    index: int
    item: Any
    success: bool
    value: Any = None
    error: Optional[BaseException] = None

    @property
    def error_message(self) -> Optional[str]:
        return str(self.error) if self.error is not None else None


async def with_retry(
    operation: Callable[[], Awaitable[Any]],
    max_retries: int = 3,
    base_delay: float = 1.0,
    backoff_factor: float = 2.0,
    jitter_ms: int = 1000,
    retry_if: Callable[[BaseException], bool] = is_transient_error,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
):
    """
    Call ``operation`` and retry transient failures with exponential backoff.

    Args:
        operation: Zero-argument coroutine factory
        max_retries: Retries after the first attempt
        base_delay: Seconds before the first retry
        backoff_factor: Multiplier applied per attempt
        jitter_ms: Upper bound of random extra delay in milliseconds
        retry_if: Predicate deciding whether an error is worth retrying

    Returns:
        Whatever ``operation`` returns. The last error is re-raised once
        retries are exhausted or the error is not retryable.
    """
    attempt = 0
    while True:
        try:
            return await operation()
        except Exception as exc:
            if attempt >= max_retries or not retry_if(exc):
                raise
            delay = base_delay * backoff_factor ** attempt + random.uniform(0, jitter_ms) / 1000
            attempt += 1
            logger.warning(f"Transient failure ({exc}); retry {attempt}/{max_retries} in {delay:.2f}s")
            await sleep(delay)


async def run_batched(
    items: Sequence[Any],
    operation: Callable[[Any], Awaitable[Any]],
    concurrency_limit: int = 5,
) -> List[BatchItemResult]:
    """
    Apply ``operation`` to every item, ``concurrency_limit`` at a time.

    Each chunk settles completely before the next one starts, and one item's
    failure never cancels its siblings. Results come back in input order, one
    per item.
    """
    if concurrency_limit < 1:
        raise ValueError("concurrency_limit must be at least 1")

    results: List[BatchItemResult] = []
    for start in range(0, len(items), concurrency_limit):
        chunk = items[start:start + concurrency_limit]
        outcomes = await asyncio.gather(*(operation(item) for item in chunk), return_exceptions=True)

        for offset, (item, outcome) in enumerate(zip(chunk, outcomes)):
            index = start + offset
            if isinstance(outcome, BaseException):
                if isinstance(outcome, asyncio.CancelledError):
                    raise outcome
                logger.debug(f"Batch item {index} failed: {outcome}")
                results.append(BatchItemResult(index=index, item=item, success=False, error=outcome))
            else:
                results.append(BatchItemResult(index=index, item=item, success=True, value=outcome))

    return results
