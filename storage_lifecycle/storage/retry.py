"""
Retry with exponential backoff for transient storage failures.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

from storage_lifecycle.metrics import record_retry
from .errors import StorageErrorKind, StorageProviderError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """
    Retry policy configuration

    Delay before retry ``n`` (1-based) is ``base_delay * multiplier ** (n - 1)``:
    1s, 2s, 4s, ... with the defaults.
    """
    max_attempts: int = 3
    base_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: Optional[float] = None

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

    def delay_for(self, attempt: int) -> float:
        delay = self.base_delay * (self.multiplier ** (attempt - 1))
        if self.max_delay is not None:
            delay = min(delay, self.max_delay)
        return delay

    def override(self, max_attempts: Optional[int] = None, base_delay: Optional[float] = None) -> "RetryPolicy":
        """Return a copy with per-call overrides applied; at least one attempt is always made."""
        return RetryPolicy(
            max_attempts=max(1, max_attempts) if max_attempts is not None else self.max_attempts,
            base_delay=base_delay if base_delay is not None else self.base_delay,
            multiplier=self.multiplier,
            max_delay=self.max_delay,
        )


NO_RETRY = RetryPolicy(max_attempts=1)


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    operation_name: str,
    key: str = "",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Run an async storage operation, retrying transient failures.

    Terminal and not-found errors propagate immediately. When every attempt
    fails transiently the last error is wrapped in a terminal error.

    Args:
        operation: Zero-argument coroutine factory, called once per attempt
        policy: Retry policy
        operation_name: Name used in logs and metrics
        key: Object key for error reporting
        sleep: Sleep function (injectable for tests)

    Returns:
        The operation's result
    """
    last_error: Optional[StorageProviderError] = None

    for attempt in range(1, policy.max_attempts + 1):
        try:
            return await operation()
        except StorageProviderError as e:
            if not e.is_transient:
                raise
            last_error = e

            if attempt >= policy.max_attempts:
                break

            delay = policy.delay_for(attempt)
            logger.warning(
                f"{operation_name} failed for '{key}' "
                f"(attempt {attempt}/{policy.max_attempts}): {e.message}; retrying in {delay:.2f}s"
            )
            record_retry(operation_name)
            await sleep(delay)

    raise StorageProviderError(
        f"{operation_name} failed after {policy.max_attempts} attempts: {last_error.message}",
        key=key,
        cause=last_error,
        kind=StorageErrorKind.TERMINAL,
    )
