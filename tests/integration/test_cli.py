"""Integration tests for the msgarchive CLI.

Commands run end to end against a populated chat.db; only the console
and the contact bridge are replaced.
"""

import io
import json
import sqlite3
from unittest.mock import MagicMock, patch

import pytest
from rich.console import Console

from contracts.imessage import Contact, ContactEmail
from msgarchive import __version__, cli
from msgarchive.cli import create_parser, main, run
from msgarchive.errors import ContactResolutionError
from tests.fixtures.chat_db import BLOB_ONLY_TEXT


@pytest.fixture
def output(monkeypatch):
    """Capture everything the CLI prints to its console."""
    buffer = io.StringIO()
    monkeypatch.setattr(cli, "console", Console(file=buffer, width=200))
    return buffer


def _json(output):
    return json.loads(output.getvalue())


def _execute(db_path, sql, *params):
    """Modify the fixture archive in place."""
    conn = sqlite3.connect(db_path)
    try:
        conn.execute(sql, params)
        conn.commit()
    finally:
        conn.close()


class TestCreateParser:
    """Tests for argument parser creation."""

    def test_parser_creates_successfully(self):
        parser = create_parser()
        assert parser.prog == "msgarchive"

    def test_global_flags(self):
        args = create_parser().parse_args(["-v", "--json", "--db", "/tmp/chat.db", "chats"])
        assert args.verbose is True
        assert args.json is True
        assert args.db == "/tmp/chat.db"
        assert args.command == "chats"

    def test_defaults(self):
        args = create_parser().parse_args(["chats"])
        assert args.verbose is False
        assert args.json is False
        assert args.db is None
        assert args.limit is None

    def test_messages_filters(self):
        args = create_parser().parse_args(
            [
                "messages",
                "--chat",
                "12",
                "--contact",
                "Jane",
                "--after",
                "2024-01-01",
                "--before",
                "2024-02-01",
                "--sender",
                "+15551234567",
                "--not-from-me",
                "--has-attachments",
                "-q",
                "dinner",
                "-l",
                "5",
            ]
        )
        assert args.chat == "12"
        assert args.contact == "Jane"
        assert args.after == "2024-01-01"
        assert args.before == "2024-02-01"
        assert args.sender == "+15551234567"
        assert args.from_me is False
        assert args.has_attachments is True
        assert args.query == "dinner"
        assert args.limit == 5

    def test_tri_state_flags_default_to_none(self):
        args = create_parser().parse_args(["search", "dinner"])
        assert args.from_me is None
        assert args.has_attachments is None

    def test_from_me_flags_are_exclusive(self):
        with pytest.raises(SystemExit):
            create_parser().parse_args(["messages", "--from-me", "--not-from-me"])

    @pytest.mark.parametrize("limit", ["0", "-3", "ten"])
    def test_invalid_limit(self, limit):
        with pytest.raises(SystemExit):
            create_parser().parse_args(["chats", "--limit", limit])

    def test_search_requires_query(self):
        with pytest.raises(SystemExit):
            create_parser().parse_args(["search"])

    def test_version(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            create_parser().parse_args(["--version"])
        assert exc_info.value.code == 0
        assert __version__ in capsys.readouterr().out


class TestMain:
    """Tests for command dispatch."""

    def test_no_command_prints_help(self, capsys):
        assert main([]) == 0
        assert "usage: msgarchive" in capsys.readouterr().out

    def test_check(self, chat_db_path, output):
        assert main(["--db", str(chat_db_path), "check"]) == 0
        assert "OK" in output.getvalue()

    def test_check_json(self, chat_db_path, output):
        assert main(["--json", "--db", str(chat_db_path), "check"]) == 0
        assert _json(output) == {"ok": True, "db_path": str(chat_db_path)}

    def test_missing_database(self, tmp_path, output):
        assert main(["--db", str(tmp_path / "missing.db"), "chats"]) == 1
        assert "Error: Messages database not found" in output.getvalue()

    def test_missing_database_json(self, tmp_path, output):
        assert main(["--json", "--db", str(tmp_path / "missing.db"), "check"]) == 1
        payload = _json(output)
        assert payload["error"] == "iMessageAccessError"
        assert payload["code"] == "MSG_DB_NOT_FOUND"

    def test_permission_instructions(self, chat_db_path, output):
        with patch(
            "integrations.imessage.reader.sqlite3.connect",
            side_effect=sqlite3.OperationalError("authorization denied"),
        ):
            assert main(["--db", str(chat_db_path), "check"]) == 1

        text = output.getvalue()
        assert "To fix this:" in text
        assert "Full Disk Access" in text

    def test_chats_table(self, chat_db_path, output):
        assert main(["--db", str(chat_db_path), "chats"]) == 0
        text = output.getvalue()
        assert "Family" in text
        assert "+15559876543" in text

    def test_chats_json(self, chat_db_path, output):
        assert main(["--json", "--db", str(chat_db_path), "chats", "-l", "2"]) == 0
        payload = _json(output)
        assert [c["id"] for c in payload] == ["3", "2"]
        assert payload[1]["is_group"] is True
        assert payload[1]["last_message_date"] == "2024-01-13T08:00:00.000Z"

    def test_chat(self, chat_db_path, output):
        assert main(["--db", str(chat_db_path), "chat", "2"]) == 0
        text = output.getvalue()
        assert "Family" in text
        assert "jane@example.com" in text

    def test_chat_not_found(self, chat_db_path, output):
        assert main(["--db", str(chat_db_path), "chat", "999"]) == 1
        assert "Chat 999 not found" in output.getvalue()

    def test_chat_not_found_json(self, chat_db_path, output):
        assert main(["--json", "--db", str(chat_db_path), "chat", "999"]) == 1
        assert _json(output) is None

    def test_messages_json(self, chat_db_path, output):
        argv = ["--json", "--db", str(chat_db_path), "messages", "--chat", "1", "--from-me"]
        assert main(argv) == 0
        assert [m["id"] for m in _json(output)] == ["2", "7"]

    def test_messages_date_filter(self, chat_db_path, output):
        argv = ["--json", "--db", str(chat_db_path), "messages", "--after", "2024-01-12"]
        assert main(argv) == 0
        assert [m["id"] for m in _json(output)] == ["6", "5", "4"]

    def test_messages_table(self, chat_db_path, output):
        assert main(["--db", str(chat_db_path), "messages", "--chat", "1"]) == 0
        text = output.getvalue()
        assert "Hello there" in text
        assert "Me" in text

    def test_empty_result(self, chat_db_path, output):
        assert main(["--db", str(chat_db_path), "messages", "--chat", "999"]) == 0
        assert "No messages found." in output.getvalue()

    def test_message(self, chat_db_path, output):
        assert main(["--json", "--db", str(chat_db_path), "message", "3"]) == 0
        payload = _json(output)
        assert payload["text"] == BLOB_ONLY_TEXT
        assert payload["sender_handle"] == "+15551234567"

    def test_search(self, chat_db_path, output):
        assert main(["--json", "--db", str(chat_db_path), "search", "DINNER"]) == 0
        assert [m["id"] for m in _json(output)] == ["4", "2"]

    def test_blank_search(self, chat_db_path, output):
        assert main(["--db", str(chat_db_path), "search", "   "]) == 1
        assert "Missing required field: query" in output.getvalue()

    def test_invalid_date(self, chat_db_path, output):
        assert main(["--db", str(chat_db_path), "messages", "--before", "soon"]) == 1
        text = output.getvalue()
        assert "Invalid value for 'before'" in text
        assert "Expected: ISO-8601 timestamp" in text

    def test_contact_filter(self, chat_db_path, output):
        resolver = MagicMock()
        resolver.resolve_contact.return_value = [
            Contact(full_name="Jane", email_addresses=[ContactEmail("jane@example.com")])
        ]
        argv = ["--json", "--db", str(chat_db_path), "search", "dinner", "--contact", "Jane"]
        with patch("msgarchive.cli.BridgeContactResolver", return_value=resolver):
            assert main(argv) == 0

        assert [m["id"] for m in _json(output)] == ["4"]
        resolver.resolve_contact.assert_called_once_with(name="Jane")

    def test_contact_bridge_failure(self, chat_db_path, output):
        resolver = MagicMock()
        resolver.resolve_contact.side_effect = ContactResolutionError(
            "Contact bridge not found", bridge_path="/missing/bridge"
        )
        argv = ["--db", str(chat_db_path), "messages", "--contact", "Jane"]
        with patch("msgarchive.cli.BridgeContactResolver", return_value=resolver):
            assert main(argv) == 1

        text = output.getvalue()
        assert "Error: Contact bridge not found" in text
        assert "/missing/bridge" in text

    def test_attachments(self, chat_db_path, output):
        argv = ["--json", "--db", str(chat_db_path), "attachments", "--message", "4"]
        assert main(argv) == 0
        payload = _json(output)
        assert [a["id"] for a in payload] == ["2", "1"]
        assert payload[1]["transfer_name"] == "IMG_1.heic"

    def test_attachments_table(self, chat_db_path, output):
        assert main(["--db", str(chat_db_path), "attachments", "--chat", "2"]) == 0
        text = output.getvalue()
        assert "menu.pdf" in text
        assert "2,048" in text

    def test_attachment(self, chat_db_path, output):
        assert main(["--json", "--db", str(chat_db_path), "attachment", "3"]) == 0
        assert _json(output)["message_id"] is None

    def test_attachment_not_found(self, chat_db_path, output):
        assert main(["--db", str(chat_db_path), "attachment", "999"]) == 1
        assert "Attachment 999 not found" in output.getvalue()

    def test_bracketed_message_text_is_literal(self, chat_db_path, output):
        """Square brackets in message text are printed, not read as markup."""
        _execute(
            chat_db_path,
            "UPDATE message SET text = ? WHERE ROWID = 6",
            "see [/x] here [bold]loud[/bold]",
        )
        assert main(["--db", str(chat_db_path), "messages", "--chat", "3"]) == 0
        assert "see [/x] here [bold]loud[/bold]" in output.getvalue()

    def test_bracketed_search_query_is_literal(self, chat_db_path, output):
        _execute(chat_db_path, "UPDATE message SET text = ? WHERE ROWID = 6", "a [/x] b")
        assert main(["--db", str(chat_db_path), "search", "[/x]"]) == 0
        text = output.getvalue()
        assert "Search Results for '[/x]'" in text
        assert "a [/x] b" in text

    def test_bracketed_chat_name_is_literal(self, chat_db_path, output):
        _execute(chat_db_path, "UPDATE chat SET display_name = ? WHERE ROWID = 2", "[red]Fam[/]")
        assert main(["--db", str(chat_db_path), "chats"]) == 0
        assert main(["--db", str(chat_db_path), "chat", "2"]) == 0
        assert output.getvalue().count("[red]Fam[/]") == 2

    def test_bracketed_attachment_name_is_literal(self, chat_db_path, output):
        _execute(
            chat_db_path,
            "UPDATE attachment SET transfer_name = ? WHERE ROWID = 2",
            "[/menu].pdf",
        )
        assert main(["--db", str(chat_db_path), "attachments", "--message", "4"]) == 0
        assert "[/menu].pdf" in output.getvalue()

    def test_negative_attachment_size(self, chat_db_path, output):
        _execute(chat_db_path, "UPDATE attachment SET total_bytes = -1 WHERE ROWID = 1")
        argv = ["--json", "--db", str(chat_db_path), "attachments", "--message", "4"]
        assert main(argv) == 0
        payload = _json(output)
        assert [a["total_bytes"] for a in payload] == [1000, None]


class TestRun:
    """Tests for the process entry point."""

    def test_exit_code(self):
        with patch("msgarchive.cli.main", return_value=1):
            with pytest.raises(SystemExit) as exc_info:
                run()
        assert exc_info.value.code == 1

    def test_keyboard_interrupt(self, output):
        with patch("msgarchive.cli.main", side_effect=KeyboardInterrupt):
            with pytest.raises(SystemExit) as exc_info:
                run()
        assert exc_info.value.code == 130
