"""
retry.py

Exponential-backoff wrapper for flaky RPC reads.

Usage:
    policy = RetryPolicy(max_attempts=5, initial_delay=0.5)
    get_block = retrying(policy, lambda: gateway.make_rpc_call("eth_blockNumber", []))
    block = get_block()

Only idempotent reads go through here. Inserts into the sink are never
retried by this module: the table's primary key makes a re-run of the whole
iteration harmless instead.
"""

import time
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

from transfer_export.config import ConfigurationError, ETL_CONFIG

T = TypeVar("T")


def is_retryable_error(error: Exception) -> bool:
    """Retry everything except configuration mistakes."""
    return not isinstance(error, ConfigurationError)


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    initial_delay: float = 1.0          # seconds before the 2nd attempt
    backoff_coefficient: float = 2.0
    max_delay: Optional[float] = None   # None = no upper bound
    retry_on: Callable[[Exception], bool] = is_retryable_error

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")

    def delay_for(self, attempt: int) -> float:
        """
        Delay to wait after failed attempt number `attempt` (1-indexed).

        attempt 1 -> initial_delay, attempt 2 -> initial_delay * coefficient, ...
        capped at max_delay when one is set.
        """
        delay = self.initial_delay * (self.backoff_coefficient ** (attempt - 1))
        if self.max_delay is not None:
            delay = min(delay, self.max_delay)
        return delay


DEFAULT_RETRY_POLICY = RetryPolicy(
    max_attempts=ETL_CONFIG["max_retries"],
    initial_delay=ETL_CONFIG["retry_initial_delay"],
    backoff_coefficient=ETL_CONFIG["retry_backoff_coefficient"],
    max_delay=ETL_CONFIG["retry_max_delay"],
)


def print_retry(attempt: int, max_attempts: int, error: Exception, delay: float) -> None:
    print(f"  ⚠ Attempt {attempt}/{max_attempts} failed, retrying in {delay:.1f}s: {error}")


def retrying(
    policy: RetryPolicy,
    op: Callable[[], T],
    on_retry: Optional[Callable[[int, int, Exception, float], None]] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> Callable[[], T]:
    """
    Wrap a zero-argument callable with retry logic.

    How it works:
    1. Call op(); return its value on the first success
    2. On failure, give up immediately if policy.retry_on(error) is False
    3. Give up after policy.max_attempts failures (last error is re-raised)
    4. Otherwise notify on_retry, sleep policy.delay_for(attempt), try again

    Args:
        policy: Shared RetryPolicy
        op: The operation to protect
        on_retry: Callback(attempt, max_attempts, error, delay), prints by default
        sleep: Injected so tests don't actually wait

    Returns:
        A new zero-argument callable
    """
    notify = on_retry or print_retry

    def wrapped() -> T:
        for attempt in range(1, policy.max_attempts + 1):
            try:
                return op()
            except Exception as e:
                if not policy.retry_on(e) or attempt == policy.max_attempts:
                    raise
                delay = policy.delay_for(attempt)
                notify(attempt, policy.max_attempts, e, delay)
                sleep(delay)

    return wrapped


def call_with_retry(
    policy: RetryPolicy,
    op: Callable[[], T],
    on_retry: Optional[Callable[[int, int, Exception, float], None]] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Shortcut for retrying(policy, op, ...)()."""
    return retrying(policy, op, on_retry=on_retry, sleep=sleep)()
