"""msgarchive - read-only access to the macOS Messages archive.

Provides a CLI and the shared configuration, error and utility layers used
by the chat.db reader in integrations.imessage.
"""

__version__ = "1.0.0"
