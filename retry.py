"""
Retry helpers with exponential backoff for outbound HTTP calls.
"""
import asyncio
import random
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional

import httpx

from logger import log


@dataclass
class RetryStats:
    """Tracks retry statistics for a single operation."""
    attempts: int = 0
    total_delay_seconds: float = 0.0
    last_error: Optional[str] = None
    errors: List[str] = field(default_factory=list)
    success: bool = False

    def record_attempt(self, error: Optional[Exception] = None, delay: float = 0.0):
        self.attempts += 1
        self.total_delay_seconds += delay
        if error:
            error_str = f"{type(error).__name__}: {str(error)}"
            self.last_error = error_str
            self.errors.append(error_str)


def calculate_backoff(
    attempt: int,
    base_delay: float = 0.5,
    max_delay: float = 10.0,
    exponential_base: float = 2.0,
    jitter: bool = True,
) -> float:
    """
    Delay before the next attempt.

    Args:
        attempt: Current attempt number (1-indexed)
        base_delay: Initial delay in seconds
        max_delay: Maximum delay cap
        exponential_base: Base for exponential calculation
        jitter: Add up to 25% randomness
    """
    delay = min(base_delay * (exponential_base ** (attempt - 1)), max_delay)
    if jitter:
        delay += delay * random.uniform(0, 0.25)
    return delay


def is_retryable_error(error: Exception) -> bool:
    """Transport failures and 5xx responses are worth one more try."""
    if isinstance(error, httpx.TransportError):
        return True
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code >= 500
    return False


class RetryContext:
    """
    Runs an async callable, retrying retryable failures.

    Usage:
        ctx = RetryContext(max_attempts=2)
        result = await ctx.execute(client.post, url, json=payload)
        ctx.stats.attempts
    """

    def __init__(self, max_attempts: int = 2, base_delay: float = 0.5, max_delay: float = 10.0):
        self.max_attempts = max(1, max_attempts)
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.stats = RetryStats()

    async def execute(self, func: Callable[..., Awaitable], *args, **kwargs):
        for attempt in range(1, self.max_attempts + 1):
            try:
                result = await func(*args, **kwargs)
                self.stats.record_attempt()
                self.stats.success = True
                if attempt > 1:
                    log.info(f"{getattr(func, '__name__', 'call')} succeeded on attempt {attempt}")
                return result
            except Exception as e:
                if attempt >= self.max_attempts or not is_retryable_error(e):
                    self.stats.record_attempt(error=e)
                    raise

                delay = calculate_backoff(attempt, self.base_delay, self.max_delay) if self.base_delay else 0.0
                self.stats.record_attempt(error=e, delay=delay)
                log.warning(f"Attempt {attempt} failed: {e}. Retrying in {delay:.1f}s...")
                await asyncio.sleep(delay)
