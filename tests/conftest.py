"""Pytest configuration for msgarchive tests.

Every test runs against an isolated config file so a developer's
~/.msgarchive/config.json never leaks into results.
"""

from pathlib import Path

import pytest

from integrations.imessage.reader import ChatDBReader
from msgarchive.config import CONFIG_ENV_VAR, reset_config
from msgarchive.utils.latency_tracker import get_tracker
from tests.fixtures.chat_db import build_chat_db


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    """Point the config loader at a per-test file and reset the singleton."""
    config_path = tmp_path / "config" / "config.json"
    monkeypatch.setenv(CONFIG_ENV_VAR, str(config_path))
    reset_config()
    get_tracker().clear()
    yield config_path
    reset_config()


@pytest.fixture
def chat_db_path(tmp_path) -> Path:
    """A populated chat.db file."""
    return build_chat_db(tmp_path / "chat.db")


@pytest.fixture
def reader(chat_db_path):
    """ChatDBReader over the populated chat.db without a contact resolver."""
    with ChatDBReader(chat_db_path) as r:
        yield r
