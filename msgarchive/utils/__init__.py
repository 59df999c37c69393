"""Utility modules for msgarchive."""

from msgarchive.utils.backoff import BackoffConfig, ConsecutiveErrorTracker, with_retry
from msgarchive.utils.latency_tracker import LatencyTracker, get_tracker, track_latency
from msgarchive.utils.sqlite_retry import sqlite_retry

__all__ = [
    "BackoffConfig",
    "ConsecutiveErrorTracker",
    "LatencyTracker",
    "get_tracker",
    "sqlite_retry",
    "track_latency",
    "with_retry",
]
