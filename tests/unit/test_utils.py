"""Unit tests for retry, backoff and latency utilities."""

import logging
import sqlite3
from unittest.mock import MagicMock

import pytest

from msgarchive.config import MsgArchiveConfig, reset_config, save_config
from msgarchive.utils.backoff import BackoffConfig, ConsecutiveErrorTracker, with_retry
from msgarchive.utils.latency_tracker import OPERATION_BUDGETS, LatencyTracker
from msgarchive.utils.sqlite_retry import is_lock_error, sqlite_retry


class TestConsecutiveErrorTracker:
    """Tests for exponential backoff delays."""

    def test_delays_grow_and_cap(self):
        tracker = ConsecutiveErrorTracker(base_delay=0.1, max_delay=0.3, backoff_factor=2.0)
        delays = [tracker.on_error() for _ in range(4)]
        assert delays == pytest.approx([0.1, 0.2, 0.3, 0.3])
        assert tracker.consecutive_errors == 4

    def test_reset(self):
        tracker = ConsecutiveErrorTracker(base_delay=1.0)
        tracker.on_error()
        tracker.on_error()
        tracker.reset()
        assert tracker.consecutive_errors == 0
        assert tracker.on_error() == 1.0


class TestWithRetry:
    """Tests for the with_retry decorator."""

    def test_retries_until_success(self):
        sleep = MagicMock()
        calls = MagicMock(side_effect=[ValueError("1"), ValueError("2"), "ok"])

        @with_retry(max_attempts=3, exceptions=(ValueError,), sleep=sleep)
        def flaky():
            return calls()

        assert flaky() == "ok"
        assert calls.call_count == 3
        assert [c.args[0] for c in sleep.call_args_list] == [1.0, 2.0]

    def test_gives_up_after_max_attempts(self):
        sleep = MagicMock()
        on_retry = MagicMock()

        @with_retry(
            max_attempts=2,
            exceptions=(ValueError,),
            config=BackoffConfig(base_delay=0.5),
            on_retry=on_retry,
            sleep=sleep,
        )
        def always_fails():
            raise ValueError("nope")

        with pytest.raises(ValueError, match="nope"):
            always_fails()
        on_retry.assert_called_once()
        sleep.assert_called_once_with(0.5)

    def test_predicate_stops_retry(self):
        sleep = MagicMock()
        calls = MagicMock(side_effect=ValueError("permanent"))

        @with_retry(
            max_attempts=5,
            exceptions=(ValueError,),
            predicate=lambda e: "transient" in str(e),
            sleep=sleep,
        )
        def fails():
            return calls()

        with pytest.raises(ValueError):
            fails()
        assert calls.call_count == 1
        sleep.assert_not_called()

    def test_other_exceptions_propagate(self):
        @with_retry(max_attempts=3, exceptions=(ValueError,), sleep=MagicMock())
        def fails():
            raise KeyError("x")

        with pytest.raises(KeyError):
            fails()


class TestSqliteRetry:
    """Tests for SQLite lock retry."""

    @pytest.mark.parametrize(
        ("message", "expected"),
        [
            ("database is locked", True),
            ("Database Is Locked", True),
            ("database table is busy", True),
            ("no such table: message", False),
        ],
    )
    def test_is_lock_error(self, message, expected):
        assert is_lock_error(sqlite3.OperationalError(message)) is expected

    def test_retries_lock_errors(self):
        calls = MagicMock(side_effect=[sqlite3.OperationalError("database is locked"), 42])

        @sqlite_retry(max_attempts=3, base_delay=0, max_delay=0)
        def query():
            return calls()

        assert query() == 42
        assert calls.call_count == 2

    def test_does_not_retry_other_errors(self):
        calls = MagicMock(side_effect=sqlite3.OperationalError("no such table: chat"))

        @sqlite_retry(max_attempts=3, base_delay=0, max_delay=0)
        def query():
            return calls()

        with pytest.raises(sqlite3.OperationalError):
            query()
        assert calls.call_count == 1

    def test_reads_config_at_call_time(self, isolated_config):
        """Retry settings changed after decoration are honored."""
        calls = MagicMock(side_effect=sqlite3.OperationalError("database is locked"))

        @sqlite_retry()
        def query():
            return calls()

        config = MsgArchiveConfig()
        config.retry.sqlite_max_attempts = 4
        config.retry.sqlite_base_delay = 0
        config.retry.sqlite_max_delay = 0
        save_config(config, isolated_config)
        reset_config()

        with pytest.raises(sqlite3.OperationalError):
            query()
        assert calls.call_count == 4

        config.retry.sqlite_max_attempts = 1
        save_config(config, isolated_config)
        reset_config()
        calls.reset_mock()

        with pytest.raises(sqlite3.OperationalError):
            query()
        assert calls.call_count == 1

    def test_explicit_arguments_override_config(self, isolated_config):
        config = MsgArchiveConfig()
        config.retry.sqlite_max_attempts = 5
        save_config(config, isolated_config)
        reset_config()
        calls = MagicMock(side_effect=sqlite3.OperationalError("database is locked"))

        @sqlite_retry(max_attempts=2, base_delay=0, max_delay=0)
        def query():
            return calls()

        with pytest.raises(sqlite3.OperationalError):
            query()
        assert calls.call_count == 2


class TestLatencyTracker:
    """Tests for latency tracking."""

    def test_records_operation(self):
        tracker = LatencyTracker()
        with tracker.track("messages_fetch", limit=10):
            pass

        records = tracker.get_records()
        assert len(records) == 1
        assert records[0].operation == "messages_fetch"
        assert records[0].threshold_ms == OPERATION_BUDGETS["messages_fetch"]
        assert records[0].metadata == {"limit": 10}
        assert records[0].exceeded is False

    def test_slow_operation_warns(self, caplog):
        tracker = LatencyTracker()
        with caplog.at_level(logging.WARNING):
            with tracker.track("custom", threshold_ms=0.000001):
                sum(range(10000))

        assert len(tracker.get_slow_operations()) == 1
        assert "[LATENCY] custom" in caplog.text

    def test_records_even_when_block_raises(self):
        tracker = LatencyTracker()
        with pytest.raises(RuntimeError):
            with tracker.track("chat_fetch"):
                raise RuntimeError("boom")
        assert tracker.get_records()[0].operation == "chat_fetch"

    def test_bounded_history(self):
        tracker = LatencyTracker(maxlen=2)
        for name in ("a", "b", "c"):
            with tracker.track(name):
                pass
        assert [r.operation for r in tracker.get_records()] == ["b", "c"]

    def test_clear(self):
        tracker = LatencyTracker()
        with tracker.track("a"):
            pass
        tracker.clear()
        assert tracker.get_records() == []

    def test_to_dict(self):
        tracker = LatencyTracker()
        with tracker.track("a", rows=3):
            pass
        record = tracker.get_records()[0].to_dict()
        assert record["operation"] == "a"
        assert record["metadata"] == {"rows": 3}
