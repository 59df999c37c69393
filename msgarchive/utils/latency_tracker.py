"""Latency tracking for archive queries.

Tracks operation timings and flags operations that exceed their budget,
which usually means a missing index or an N+1 query pattern.
"""

import logging
import time
from collections import deque
from contextlib import contextmanager
from dataclasses import asdict, dataclass, field

logger = logging.getLogger(__name__)


# Operation -> budget in milliseconds
OPERATION_BUDGETS: dict[str, int] = {
    "chats_fetch": 200,
    "chat_fetch": 100,
    "messages_fetch": 200,
    "message_fetch": 50,
    "messages_search": 500,
    "attachments_fetch": 100,
    "contact_chat_resolve": 100,
    "contact_resolve": 2000,
}


@dataclass
class LatencyRecord:
    """Single operation latency measurement."""

    operation: str
    elapsed_ms: float
    timestamp: float
    threshold_ms: float | None = None
    exceeded: bool = False
    metadata: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        """Convert to dict for JSON serialization."""
        return asdict(self)


class LatencyTracker:
    """Track operation latencies and flag slow operations."""

    def __init__(self, maxlen: int = 1000):
        self._records: deque[LatencyRecord] = deque(maxlen=maxlen)
        self._thresholds = dict(OPERATION_BUDGETS)

    @contextmanager
    def track(self, operation: str, threshold_ms: float | None = None, **metadata):
        """Context manager for tracking operation latency.

        Usage:
            with tracker.track("chats_fetch", limit=50):
                chats = reader.list_chats(50)
        """
        threshold = threshold_ms or self._thresholds.get(operation)
        start = time.perf_counter()

        try:
            yield
        finally:
            elapsed_ms = (time.perf_counter() - start) * 1000
            exceeded = bool(threshold and elapsed_ms > threshold)

            self._records.append(
                LatencyRecord(
                    operation=operation,
                    elapsed_ms=elapsed_ms,
                    timestamp=time.time(),
                    threshold_ms=threshold,
                    exceeded=exceeded,
                    metadata=metadata,
                )
            )

            if exceeded:
                logger.warning(
                    "[LATENCY] %s took %.1fms (threshold: %sms). Metadata: %s",
                    operation,
                    elapsed_ms,
                    threshold,
                    metadata,
                )
            else:
                logger.debug("[LATENCY] %s took %.1fms (ok)", operation, elapsed_ms)

    def get_records(self) -> list[LatencyRecord]:
        """Get all recorded latencies, oldest first."""
        return list(self._records)

    def get_slow_operations(self) -> list[LatencyRecord]:
        """Get operations that exceeded their budget."""
        return [r for r in self._records if r.exceeded]

    def clear(self) -> None:
        """Drop all recorded latencies."""
        self._records.clear()


# Global tracker instance
_tracker = LatencyTracker()


def get_tracker() -> LatencyTracker:
    """Get global latency tracker."""
    return _tracker


@contextmanager
def track_latency(operation: str, **metadata):
    """Convenience function for tracking latency on the global tracker.

    Usage:
        with track_latency("messages_fetch", limit=50):
            rows = conn.execute(...)
    """
    with _tracker.track(operation, **metadata):
        yield
