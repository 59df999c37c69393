"""Retry chat.db operations that fail because the database is locked.

Messages.app holds write locks on chat.db while it syncs, so opening the
archive can briefly fail with 'database is locked' or SQLITE_BUSY.
"""

from __future__ import annotations

import functools
import logging
import sqlite3
import time
from collections.abc import Callable
from typing import Any, TypeVar, cast

from msgarchive.config import get_config

from .backoff import BackoffConfig, with_retry

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])


def is_lock_error(e: Exception) -> bool:
    """Return True if the SQLite error is a transient lock/busy condition."""
    error_str = str(e).lower()
    return "database is locked" in error_str or "busy" in error_str


def sqlite_retry(
    max_attempts: int | None = None,
    base_delay: float | None = None,
    max_delay: float | None = None,
    backoff_factor: float = 2.0,
) -> Callable[[F], F]:
    """Decorator to retry functions on SQLite lock errors.

    Settings left as None come from ``config.retry`` and are read on every
    call, so config changes after import apply to functions decorated at
    import time.

    Args:
        max_attempts: Maximum number of attempts.
        base_delay: Initial delay between retries in seconds.
        max_delay: Maximum delay between retries in seconds.
        backoff_factor: Multiplier for delay after each failure.

    Returns:
        Decorated function.
    """

    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            retry = get_config().retry
            attempts = retry.sqlite_max_attempts if max_attempts is None else max_attempts
            backoff = BackoffConfig(
                base_delay=retry.sqlite_base_delay if base_delay is None else base_delay,
                max_delay=retry.sqlite_max_delay if max_delay is None else max_delay,
                backoff_factor=backoff_factor,
            )

            def on_retry(attempt: int, e: Exception) -> None:
                logger.debug(
                    "%s: SQLite locked/busy (attempt %d/%d), retrying",
                    func.__qualname__,
                    attempt,
                    attempts,
                )

            retrying = with_retry(
                max_attempts=attempts,
                exceptions=(sqlite3.OperationalError,),
                config=backoff,
                on_retry=on_retry,
                predicate=is_lock_error,
                sleep=time.sleep,
            )(func)
            return retrying(*args, **kwargs)

        return cast(F, wrapper)

    return decorator
