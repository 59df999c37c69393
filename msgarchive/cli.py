"""msgarchive CLI - read the macOS Messages archive from the command line.

Usage:
    msgarchive chats                        List recent chats
    msgarchive chat 12                      Show one chat with participants
    msgarchive messages --chat 12           List messages in a chat
    msgarchive messages --contact "Jane"    List messages with a contact
    msgarchive message 1042                 Show one message
    msgarchive search "dinner"              Search message text
    msgarchive attachments --chat 12        List attachments in a chat
    msgarchive attachment 77                Show one attachment
    msgarchive check                        Check Full Disk Access

Add --json before the command to print machine-readable output.
"""

import argparse
import logging
import sys
from typing import Any, NoReturn

from pydantic import BaseModel
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from integrations.imessage.contacts import BridgeContactResolver
from integrations.imessage.parser import format_iso
from integrations.imessage.reader import ChatDBReader
from msgarchive import __version__
from msgarchive.errors import (
    ConfigurationError,
    ContactResolutionError,
    MsgArchiveError,
    ValidationError,
    iMessageAccessError,
    iMessageError,
)
from msgarchive.schemas import (
    AttachmentResponse,
    ChatResponse,
    MessageResponse,
)

console = Console()
logger = logging.getLogger(__name__)

MESSAGE_PREVIEW_LENGTH = 80


def _format_error(error: MsgArchiveError) -> None:
    """Display an msgarchive error with remediation steps when available.

    Args:
        error: The error to display.
    """
    console.print(f"[red]Error: {escape(error.message)}[/red]")

    instructions = error.details.get("permission_instructions", [])
    if instructions:
        console.print("\n[yellow]To fix this:[/yellow]")
        for i, instruction in enumerate(instructions, 1):
            console.print(f"  {i}. {escape(str(instruction))}")
    elif isinstance(error, iMessageAccessError):
        console.print("[yellow]Check the database path or pass --db.[/yellow]")
    elif isinstance(error, iMessageError):
        console.print(
            "[yellow]Check that the Messages database is readable and try again.[/yellow]"
        )
    elif isinstance(error, ContactResolutionError):
        if error.details.get("bridge_path"):
            console.print(f"[yellow]Bridge: {escape(str(error.details['bridge_path']))}[/yellow]")
        console.print("[yellow]Set contacts.bridge_path in ~/.msgarchive/config.json.[/yellow]")
    elif isinstance(error, ConfigurationError):
        config_key = error.details.get("config_key")
        if config_key:
            console.print(f"[yellow]Config key: {escape(str(config_key))}[/yellow]")
    elif isinstance(error, ValidationError):
        if error.details.get("expected"):
            console.print(f"[yellow]Expected: {escape(str(error.details['expected']))}[/yellow]")

    logger.debug(
        "MsgArchiveError details - code=%s, details=%s, cause=%s",
        error.code.value,
        error.details,
        error.cause,
    )


def setup_logging(verbose: bool = False) -> None:
    """Configure logging based on verbosity level.

    Args:
        verbose: If True, set DEBUG level; otherwise WARNING.
    """
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler()],
    )


def _open_reader(args: argparse.Namespace) -> ChatDBReader:
    return ChatDBReader(args.db, contact_resolver=BridgeContactResolver())


def _print_json(payload: Any) -> None:
    if isinstance(payload, BaseModel):
        payload = payload.model_dump(mode="json")
    elif isinstance(payload, list):
        payload = [
            item.model_dump(mode="json") if isinstance(item, BaseModel) else item
            for item in payload
        ]
    console.print_json(data=payload)


def _preview(text: str | None) -> str:
    if not text:
        return ""
    text = " ".join(text.split())
    if len(text) > MESSAGE_PREVIEW_LENGTH:
        return text[:MESSAGE_PREVIEW_LENGTH] + "..."
    return text


def _date_str(value: Any) -> str:
    return value.strftime("%Y-%m-%d %H:%M") if value else "Unknown"


def _not_found(args: argparse.Namespace, kind: str, record_id: str) -> int:
    if args.json:
        console.print_json(data=None)
    else:
        console.print(f"[yellow]{kind} {escape(str(record_id))} not found.[/yellow]")
    return 1


# Commands


def cmd_check(args: argparse.Namespace) -> int:
    """Verify that the archive can be opened.

    Returns:
        Exit code.
    """
    with _open_reader(args) as reader:
        reader.require_access()
        db_path = str(reader.db_path)

    if args.json:
        console.print_json(data={"ok": True, "db_path": db_path})
    else:
        console.print(f"[green]OK[/green] Messages database is readable: {escape(db_path)}")
    return 0


def cmd_chats(args: argparse.Namespace) -> int:
    """List chats, most recent first."""
    with _open_reader(args) as reader:
        chats = reader.list_chats(limit=args.limit)

    if args.json:
        _print_json([ChatResponse.model_validate(chat) for chat in chats])
        return 0

    if not chats:
        console.print("[yellow]No chats found.[/yellow]")
        return 0

    table = Table(title=f"Chats ({len(chats)})")
    table.add_column("ID", style="dim")
    table.add_column("Name")
    table.add_column("Group")
    table.add_column("Last Message", style="dim")
    table.add_column("Preview")

    for chat in chats:
        name = chat.display_name or chat.chat_identifier
        table.add_row(
            chat.id,
            escape(name),
            "yes" if chat.is_group else "",
            _date_str(chat.last_message_date),
            escape(_preview(chat.last_message_text)),
        )

    console.print(table)
    return 0


def cmd_chat(args: argparse.Namespace) -> int:
    """Show a single chat."""
    with _open_reader(args) as reader:
        chat = reader.get_chat(args.id)

    if chat is None:
        return _not_found(args, "Chat", args.id)

    if args.json:
        _print_json(ChatResponse.model_validate(chat))
        return 0

    name = escape(chat.display_name or chat.chat_identifier)
    console.print(f"[bold]{name}[/bold] (id {chat.id})")
    console.print(f"[dim]guid:[/dim] {escape(chat.guid)}")
    console.print(f"[dim]group:[/dim] {'yes' if chat.is_group else 'no'}")
    console.print(f"[dim]last message:[/dim] {format_iso(chat.last_message_date) or 'none'}")
    if chat.last_message_text:
        console.print(f"[dim]preview:[/dim] {escape(_preview(chat.last_message_text))}")

    table = Table(title="Participants")
    table.add_column("ID", style="dim")
    table.add_column("Identifier")
    table.add_column("Service")
    for handle in chat.participants:
        table.add_row(handle.id, escape(handle.identifier), escape(handle.service))
    console.print(table)
    return 0


def _message_filters(args: argparse.Namespace) -> dict[str, Any]:
    return {
        "chat_id": args.chat,
        "contact_name": args.contact,
        "before": args.before,
        "after": args.after,
        "from_me": args.from_me,
        "sender": args.sender,
        "has_attachments": args.has_attachments,
        "limit": args.limit,
    }


def _print_messages(args: argparse.Namespace, messages: list[Any], title: str) -> int:
    if args.json:
        _print_json([MessageResponse.model_validate(m) for m in messages])
        return 0

    if not messages:
        console.print("[yellow]No messages found.[/yellow]")
        return 0

    table = Table(title=f"{title} ({len(messages)} messages)")
    table.add_column("ID", style="dim")
    table.add_column("Date", style="dim")
    table.add_column("Chat", style="dim")
    table.add_column("Sender")
    table.add_column("Message")

    for msg in messages:
        sender = escape("Me" if msg.is_from_me else (msg.sender_handle or "Unknown"))
        text = escape(_preview(msg.text))
        if msg.has_attachments:
            text = f"{text} [dim](attachment)[/dim]" if text else "[dim](attachment)[/dim]"
        table.add_row(msg.id, _date_str(msg.date), msg.chat_id or "", sender, text)

    console.print(table)
    return 0


def cmd_messages(args: argparse.Namespace) -> int:
    """List messages matching the given filters."""
    with _open_reader(args) as reader:
        messages = reader.list_messages(query=args.query, **_message_filters(args))
    return _print_messages(args, messages, "Messages")


def cmd_search(args: argparse.Namespace) -> int:
    """Search message text."""
    with _open_reader(args) as reader:
        messages = reader.search_messages(args.query, **_message_filters(args))
    return _print_messages(args, messages, f"Search Results for {escape(repr(args.query))}")


def cmd_message(args: argparse.Namespace) -> int:
    """Show a single message."""
    with _open_reader(args) as reader:
        message = reader.get_message(args.id)

    if message is None:
        return _not_found(args, "Message", args.id)

    if args.json:
        _print_json(MessageResponse.model_validate(message))
        return 0

    sender = "Me" if message.is_from_me else (message.sender_handle or "Unknown")
    console.print(f"[bold]Message {message.id}[/bold] in chat {message.chat_id or '-'}")
    console.print(f"[dim]from:[/dim] {escape(sender)}")
    console.print(f"[dim]date:[/dim] {format_iso(message.date) or 'unknown'}")
    console.print(f"[dim]attachments:[/dim] {'yes' if message.has_attachments else 'no'}")
    console.print()
    console.print(message.text, markup=False)
    return 0


def _print_attachments(args: argparse.Namespace, attachments: list[Any]) -> int:
    if args.json:
        _print_json([AttachmentResponse.model_validate(a) for a in attachments])
        return 0

    if not attachments:
        console.print("[yellow]No attachments found.[/yellow]")
        return 0

    table = Table(title=f"Attachments ({len(attachments)})")
    table.add_column("ID", style="dim")
    table.add_column("Message", style="dim")
    table.add_column("Name")
    table.add_column("Type")
    table.add_column("Size", justify="right")
    table.add_column("Path", style="dim")

    for attachment in attachments:
        size = f"{attachment.total_bytes:,}" if attachment.total_bytes is not None else ""
        table.add_row(
            attachment.id,
            attachment.message_id or "",
            escape(attachment.transfer_name or ""),
            escape(attachment.mime_type or ""),
            size,
            escape(attachment.file_path),
        )

    console.print(table)
    return 0


def cmd_attachments(args: argparse.Namespace) -> int:
    """List attachments of a message or chat."""
    with _open_reader(args) as reader:
        attachments = reader.list_attachments(
            message_id=args.message, chat_id=args.chat, limit=args.limit
        )
    return _print_attachments(args, attachments)


def cmd_attachment(args: argparse.Namespace) -> int:
    """Show a single attachment."""
    with _open_reader(args) as reader:
        attachment = reader.get_attachment(args.id)

    if attachment is None:
        return _not_found(args, "Attachment", args.id)

    if args.json:
        _print_json(AttachmentResponse.model_validate(attachment))
        return 0
    return _print_attachments(args, [attachment])


# Parser


class HelpFormatter(argparse.RawDescriptionHelpFormatter):
    """Custom help formatter with improved argument formatting."""

    def __init__(self, prog: str) -> None:
        """Initialize formatter with wider help text."""
        super().__init__(prog, max_help_position=30, width=100)


def _positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid integer: {value!r}") from None
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be >= 1, got {number}")
    return number


def _add_limit(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-l",
        "--limit",
        type=_positive_int,
        default=None,
        metavar="<n>",
        help="maximum number of results (default: archive.default_limit, 50)",
    )


def _add_message_filters(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--chat", metavar="<id>", help="only messages in this chat")
    parser.add_argument(
        "--contact",
        metavar="<name>",
        help="only messages in chats with this contact (uses the contacts bridge)",
    )
    parser.add_argument(
        "--before", metavar="<date>", help="only messages before this ISO-8601 date"
    )
    parser.add_argument("--after", metavar="<date>", help="only messages after this ISO-8601 date")
    parser.add_argument("--sender", metavar="<handle>", help="only messages from this phone/email")

    from_me = parser.add_mutually_exclusive_group()
    from_me.add_argument(
        "--from-me",
        dest="from_me",
        action="store_const",
        const=True,
        default=None,
        help="only messages sent by me",
    )
    from_me.add_argument(
        "--not-from-me",
        dest="from_me",
        action="store_const",
        const=False,
        help="only messages received",
    )

    attachments = parser.add_mutually_exclusive_group()
    attachments.add_argument(
        "--has-attachments",
        dest="has_attachments",
        action="store_const",
        const=True,
        default=None,
        help="only messages with attachments",
    )
    attachments.add_argument(
        "--no-attachments",
        dest="has_attachments",
        action="store_const",
        const=False,
        help="only messages without attachments",
    )
    _add_limit(parser)


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser with all subcommands.

    Returns:
        Configured ArgumentParser.
    """
    parser = argparse.ArgumentParser(
        prog="msgarchive",
        description="msgarchive - read-only access to the macOS Messages archive",
        formatter_class=HelpFormatter,
        epilog="""
Examples:
  msgarchive chats -l 10
  msgarchive messages --chat 12 --after 2024-01-01T00:00:00Z
  msgarchive --json search "dinner" --contact "Jane"
  msgarchive attachments --message 1042

Permissions:
  Reading chat.db requires Full Disk Access.
  Grant in: System Settings > Privacy & Security > Full Disk Access
        """,
    )

    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="enable debug logging for troubleshooting",
    )
    parser.add_argument("--json", action="store_true", help="print JSON instead of tables")
    parser.add_argument(
        "--db",
        metavar="<path>",
        default=None,
        help="path to chat.db (default: archive.db_path or ~/Library/Messages/chat.db)",
    )
    parser.add_argument("--version", action="version", version=f"msgarchive {__version__}")

    subparsers = parser.add_subparsers(
        dest="command",
        title="commands",
        description="Use 'msgarchive <command> --help' for more information on a specific command.",
    )

    check_parser = subparsers.add_parser(
        "check", help="check access to the Messages database", formatter_class=HelpFormatter
    )
    check_parser.set_defaults(func=cmd_check)

    chats_parser = subparsers.add_parser(
        "chats", help="list chats, most recent first", formatter_class=HelpFormatter
    )
    _add_limit(chats_parser)
    chats_parser.set_defaults(func=cmd_chats)

    chat_parser = subparsers.add_parser(
        "chat", help="show one chat", formatter_class=HelpFormatter
    )
    chat_parser.add_argument("id", help="chat id")
    chat_parser.set_defaults(func=cmd_chat)

    messages_parser = subparsers.add_parser(
        "messages", help="list messages matching filters", formatter_class=HelpFormatter
    )
    messages_parser.add_argument(
        "-q", "--query", metavar="<text>", default=None, help="only messages containing this text"
    )
    _add_message_filters(messages_parser)
    messages_parser.set_defaults(func=cmd_messages)

    message_parser = subparsers.add_parser(
        "message", help="show one message", formatter_class=HelpFormatter
    )
    message_parser.add_argument("id", help="message id")
    message_parser.set_defaults(func=cmd_message)

    search_parser = subparsers.add_parser(
        "search",
        help="search message text",
        formatter_class=HelpFormatter,
        description=(
            "Search message text, including text recovered from attributedBody.\n"
            "Matching is case-insensitive for ASCII letters only."
        ),
    )
    search_parser.add_argument("query", help="text to search for")
    _add_message_filters(search_parser)
    search_parser.set_defaults(func=cmd_search)

    attachments_parser = subparsers.add_parser(
        "attachments", help="list attachments", formatter_class=HelpFormatter
    )
    attachments_parser.add_argument("--message", metavar="<id>", help="only this message")
    attachments_parser.add_argument("--chat", metavar="<id>", help="only this chat")
    _add_limit(attachments_parser)
    attachments_parser.set_defaults(func=cmd_attachments)

    attachment_parser = subparsers.add_parser(
        "attachment", help="show one attachment", formatter_class=HelpFormatter
    )
    attachment_parser.add_argument("id", help="attachment id")
    attachment_parser.set_defaults(func=cmd_attachment)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the CLI.

    Args:
        argv: Command-line arguments. Uses sys.argv if None.

    Returns:
        Exit code.
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    setup_logging(args.verbose)

    if args.command is None:
        parser.print_help()
        return 0

    try:
        result: int = args.func(args)
    except MsgArchiveError as e:
        if args.json:
            console.print_json(data=e.to_dict())
        else:
            _format_error(e)
        return 1
    return result


def run() -> NoReturn:
    """Entry point that handles interrupts and exit codes."""
    try:
        exit_code = main()
    except KeyboardInterrupt:
        console.print("\n[dim]Interrupted.[/dim]")
        exit_code = 130
    sys.exit(exit_code)
