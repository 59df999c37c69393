"""msgarchive Configuration System.

Loads and validates configuration from ~/.msgarchive/config.json.
Uses Pydantic for schema validation with sensible defaults.

The config path can be overridden with the MSGARCHIVE_CONFIG environment
variable.

Usage:
    from msgarchive.config import get_config, save_config

    config = get_config()
    print(config.archive.default_limit)

    config.contacts.bridge_path = "/usr/local/bin/macos-mcp-bridge"
    save_config(config)
"""

from __future__ import annotations

import json
import logging
import os
import threading
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)

CONFIG_DIR = Path.home() / ".msgarchive"
CONFIG_PATH = CONFIG_DIR / "config.json"
CONFIG_ENV_VAR = "MSGARCHIVE_CONFIG"

# Current config schema version
CONFIG_VERSION = 1

DEFAULT_CHAT_DB_PATH = Path.home() / "Library" / "Messages" / "chat.db"


class ArchiveConfig(BaseModel):
    """Message archive (chat.db) settings.

    Attributes:
        db_path: Path to chat.db. None means ~/Library/Messages/chat.db.
        default_limit: Default number of records returned by list/search calls.
        timeout_seconds: SQLite busy timeout when the Messages app holds a lock.
    """

    db_path: str | None = None
    default_limit: int = Field(default=50, ge=1, le=1000)
    timeout_seconds: float = Field(default=5.0, gt=0)

    def resolved_db_path(self) -> Path:
        """Return the configured archive path with ~ expanded."""
        if self.db_path:
            return Path(self.db_path).expanduser()
        return DEFAULT_CHAT_DB_PATH


class ContactsConfig(BaseModel):
    """Contact bridge settings.

    Attributes:
        bridge_path: Path to the native bridge executable. None means search
            the default install locations.
        timeout_seconds: Maximum time to wait for one bridge invocation.
    """

    bridge_path: str | None = None
    timeout_seconds: float | None = Field(default=30.0, gt=0)


class RetryConfig(BaseModel):
    """Retry settings for 'database is locked' errors while opening chat.db."""

    sqlite_max_attempts: int = Field(default=3, ge=1, le=10)
    sqlite_base_delay: float = Field(default=0.1, ge=0)
    sqlite_max_delay: float = Field(default=2.0, ge=0)


class MsgArchiveConfig(BaseModel):
    """msgarchive configuration schema.

    Attributes:
        config_version: Schema version of the file on disk.
        archive: chat.db location and query defaults.
        contacts: Contact bridge location and timeout.
        retry: SQLite lock retry behavior.
    """

    config_version: int = CONFIG_VERSION
    archive: ArchiveConfig = Field(default_factory=ArchiveConfig)
    contacts: ContactsConfig = Field(default_factory=ContactsConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)


# Module-level singleton with thread safety
_config: MsgArchiveConfig | None = None
_config_lock = threading.Lock()


def get_config_path() -> Path:
    """Return the config file path, honoring the MSGARCHIVE_CONFIG override."""
    override = os.environ.get(CONFIG_ENV_VAR)
    if override:
        return Path(override).expanduser()
    return CONFIG_PATH


def load_config(config_path: Path | None = None) -> MsgArchiveConfig:
    """Load configuration from file, return defaults if missing/invalid.

    Args:
        config_path: Optional path to config file. Defaults to get_config_path().

    Returns:
        MsgArchiveConfig instance with loaded or default values.
    """
    path = config_path or get_config_path()

    if not path.exists():
        logger.debug("Config file not found at %s, using defaults", path)
        return MsgArchiveConfig()

    try:
        with path.open() as f:
            data: dict[str, Any] = json.load(f)
    except json.JSONDecodeError as e:
        logger.warning("Invalid JSON in config file %s: %s, using defaults", path, e)
        return MsgArchiveConfig()
    except OSError as e:
        logger.warning("Cannot read config file %s: %s, using defaults", path, e)
        return MsgArchiveConfig()

    if not isinstance(data, dict):
        logger.warning("Config file %s does not contain an object, using defaults", path)
        return MsgArchiveConfig()

    try:
        return MsgArchiveConfig.model_validate(data)
    except ValidationError as e:
        logger.warning("Config validation failed: %s, using defaults", e)
        return MsgArchiveConfig()


def save_config(config: MsgArchiveConfig, config_path: Path | None = None) -> bool:
    """Save configuration to file.

    Args:
        config: Configuration to save.
        config_path: Optional path to config file. Defaults to get_config_path().

    Returns:
        True if saved successfully, False otherwise.
    """
    path = config_path or get_config_path()

    try:
        path.parent.mkdir(parents=True, exist_ok=True)

        with path.open("w") as f:
            json.dump(config.model_dump(), f, indent=2)

        os.chmod(path, 0o600)

        logger.debug("Configuration saved to %s", path)
        return True

    except OSError as e:
        logger.error("Failed to save config to %s: %s", path, e)
        return False


def get_config() -> MsgArchiveConfig:
    """Get singleton configuration instance.

    Uses double-check locking for thread safety.

    Returns:
        Shared MsgArchiveConfig instance.
    """
    global _config
    if _config is None:
        with _config_lock:
            if _config is None:
                _config = load_config()
    return _config


def reset_config() -> None:
    """Reset singleton configuration for testing."""
    global _config
    with _config_lock:
        _config = None
