"""Entry point for python -m msgarchive execution.

This module allows running msgarchive as a module:
    python -m msgarchive chats
    python -m msgarchive search "dinner"
    python -m msgarchive --help
"""

from msgarchive.cli import run

if __name__ == "__main__":
    run()
