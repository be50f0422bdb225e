"""Backoff helpers.

Two policies live here: the short in-request retry used by the HTTP client
for idempotent reads, and the per-action outbox backoff that decides when a
rescheduled action becomes eligible again.
"""

import logging
import random
import time
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

__all__ = [
    "RetryConfig",
    "RetryExhausted",
    "calculate_delay",
    "calculate_backoff_ms",
    "retry_with_backoff",
]

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RetryConfig:
    """In-request retry settings."""

    max_retries: int = 3
    base_delay: float = 1.0  # seconds
    max_delay: float = 60.0  # seconds
    exponential_base: float = 2.0
    jitter: bool = True


class RetryExhausted(Exception):
    """Every attempt failed with a retryable error."""

    def __init__(self, attempts: int, last_error: Optional[Exception] = None):
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"Gave up after {attempts} attempts: {last_error}")


def calculate_delay(
    attempt: int,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    exponential_base: float = 2.0,
    jitter: bool = True,
) -> float:
    """Exponential delay in seconds for a 0-indexed attempt, capped at ``max_delay``.

    With ``jitter`` the result is spread by +/- 25%.
    """
    delay = min(base_delay * (exponential_base ** attempt), max_delay)
    if jitter:
        spread = delay * 0.25
        delay += random.uniform(-spread, spread)
    return max(0.0, delay)


def calculate_backoff_ms(
    retry_count: int, base_seconds: float = 30.0, max_seconds: float = 1800.0
) -> int:
    """Delay before the next outbox attempt, in milliseconds.

    No jitter, so successive ``next_attempt_at`` values for one action only
    grow until the cap.
    """
    delay = calculate_delay(retry_count, base_seconds, max_seconds, 2.0, jitter=False)
    return int(delay * 1000)


def retry_with_backoff(
    func: Callable[[], T],
    config: Optional[RetryConfig] = None,
    retryable_exceptions: tuple = (Exception,),
    description: str = "request",
) -> T:
    """Call ``func`` until it succeeds or the retry budget runs out.

    Args:
        func: Zero-argument callable to execute
        config: Retry settings (defaults to ``RetryConfig()``)
        retryable_exceptions: Exceptions that trigger another attempt;
            anything else propagates immediately
        description: Label used in log lines

    Raises:
        RetryExhausted: Carrying the last retryable error
    """
    config = config or RetryConfig()
    last_error: Optional[Exception] = None
    attempts = config.max_retries + 1

    for attempt in range(attempts):
        try:
            return func()
        except retryable_exceptions as e:
            last_error = e
            if attempt == attempts - 1:
                break
            delay = calculate_delay(
                attempt,
                config.base_delay,
                config.max_delay,
                config.exponential_base,
                config.jitter,
            )
            logger.warning(
                f"{description} attempt {attempt + 1}/{attempts} failed: {e}. "
                f"Retrying in {delay:.1f}s"
            )
            time.sleep(delay)

    raise RetryExhausted(attempts, last_error)
