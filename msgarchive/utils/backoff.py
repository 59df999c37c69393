"""Backoff strategies for retry logic.

Provides exponential backoff for transient failures such as SQLite
reporting 'database is locked' while Messages.app writes to chat.db.
"""

from __future__ import annotations

import functools
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)


@dataclass
class BackoffConfig:
    """Configuration for backoff behavior.

    Attributes:
        base_delay: Initial delay between retries (seconds).
        max_delay: Maximum delay cap (seconds).
        backoff_factor: Multiplier for exponential backoff.
    """

    base_delay: float = 1.0
    max_delay: float = 30.0
    backoff_factor: float = 2.0


class ConsecutiveErrorTracker:
    """Track consecutive errors and provide backoff delays.

    Resets when an operation succeeds.

    Example:
        tracker = ConsecutiveErrorTracker(base_delay=0.1, max_delay=2.0)

        while True:
            try:
                do_work()
                tracker.reset()
                break
            except TransientError:
                time.sleep(tracker.on_error())
    """

    def __init__(
        self,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        backoff_factor: float = 2.0,
        name: str = "",
    ) -> None:
        """Initialize error tracker.

        Args:
            base_delay: Delay for the first backoff (seconds).
            max_delay: Maximum delay cap (seconds).
            backoff_factor: Exponential growth multiplier.
            name: Optional name for logging.
        """
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.backoff_factor = backoff_factor
        self.name = name or "tracker"

        self._consecutive = 0

    @property
    def consecutive_errors(self) -> int:
        """Current count of consecutive errors."""
        return self._consecutive

    def reset(self) -> None:
        """Reset consecutive error count. Call on success."""
        if self._consecutive > 0:
            logger.debug("%s: Reset after %d consecutive errors", self.name, self._consecutive)
        self._consecutive = 0

    def on_error(self) -> float:
        """Record an error and return the recommended delay in seconds."""
        self._consecutive += 1
        delay = min(
            self.base_delay * (self.backoff_factor ** (self._consecutive - 1)),
            self.max_delay,
        )
        logger.debug(
            "%s: Consecutive error %d, backing off for %.2fs",
            self.name,
            self._consecutive,
            delay,
        )
        return delay


def with_retry(
    max_attempts: int = 3,
    exceptions: tuple[type[Exception], ...] = (Exception,),
    config: BackoffConfig | None = None,
    on_retry: Callable[[int, Exception], None] | None = None,
    predicate: Callable[[Exception], bool] | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """Decorator for retrying operations with exponential backoff.

    Args:
        max_attempts: Maximum number of attempts.
        exceptions: Exception types to retry on.
        config: Backoff configuration.
        on_retry: Callback(attempt_number, exception) called on each retry.
        predicate: Optional function returning True if the exception should be retried.
        sleep: Sleep function, replaceable in tests.

    Example:
        @with_retry(max_attempts=3, exceptions=(sqlite3.OperationalError,))
        def open_db():
            ...
    """
    cfg = config or BackoffConfig()

    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            tracker = ConsecutiveErrorTracker(
                base_delay=cfg.base_delay,
                max_delay=cfg.max_delay,
                backoff_factor=cfg.backoff_factor,
                name=func.__qualname__,
            )

            for attempt in range(1, max_attempts + 1):
                try:
                    return func(*args, **kwargs)
                except exceptions as e:
                    if predicate and not predicate(e):
                        raise
                    if attempt >= max_attempts:
                        raise
                    if on_retry:
                        on_retry(attempt, e)
                    sleep(tracker.on_error())

            # max_attempts < 1: run once without retry
            return func(*args, **kwargs)

        return wrapper

    return decorator
