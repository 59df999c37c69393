"""Unified exception hierarchy for msgarchive.

All msgarchive-specific exceptions inherit from MsgArchiveError, so the CLI
and library callers can handle them uniformly.

Exception Hierarchy:
    MsgArchiveError (base)
    ├── ConfigurationError - Configuration and settings issues
    ├── iMessageError - Archive access and query issues
    │   ├── iMessageAccessError - Permission/access denied, store missing
    │   └── iMessageQueryError - Database query failure
    ├── ValidationError - Bad caller input (ids, dates, limits)
    └── ContactResolutionError - Contact bridge failures
        └── ContactPermissionError - Contacts permission not granted

Usage:
    from msgarchive.errors import iMessageAccessError

    try:
        chats = reader.list_chats()
    except iMessageAccessError as e:
        logger.error("Archive unavailable: %s (code: %s)", e.message, e.code)
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Standard error codes for msgarchive errors.

    Codes are grouped by category prefix and included in serialized errors.
    """

    # Configuration errors (CFG_*)
    CFG_INVALID = "CFG_INVALID"
    CFG_MISSING = "CFG_MISSING"

    # Archive errors (MSG_*)
    MSG_ACCESS_DENIED = "MSG_ACCESS_DENIED"
    MSG_DB_NOT_FOUND = "MSG_DB_NOT_FOUND"
    MSG_QUERY_FAILED = "MSG_QUERY_FAILED"
    MSG_IO_ERROR = "MSG_IO_ERROR"

    # Validation errors (VAL_*)
    VAL_INVALID_INPUT = "VAL_INVALID_INPUT"
    VAL_MISSING_REQUIRED = "VAL_MISSING_REQUIRED"
    VAL_TYPE_ERROR = "VAL_TYPE_ERROR"

    # Contact bridge errors (CNT_*)
    CNT_RESOLUTION_FAILED = "CNT_RESOLUTION_FAILED"
    CNT_BRIDGE_NOT_FOUND = "CNT_BRIDGE_NOT_FOUND"
    CNT_INVALID_OUTPUT = "CNT_INVALID_OUTPUT"
    CNT_PERMISSION_DENIED = "CNT_PERMISSION_DENIED"

    # Generic errors
    UNKNOWN = "UNKNOWN"


class MsgArchiveError(Exception):
    """Base exception for all msgarchive errors.

    Attributes:
        message: Human-readable error message.
        code: Machine-readable error code from ErrorCode enum.
        details: Optional additional context about the error.
        cause: Optional original exception that caused this error.
    """

    default_message: str = "An error occurred"
    default_code: ErrorCode = ErrorCode.UNKNOWN

    def __init__(
        self,
        message: str | None = None,
        *,
        code: ErrorCode | None = None,
        details: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ) -> None:
        """Initialize an msgarchive error.

        Args:
            message: Human-readable error message.
            code: Error code for programmatic handling.
            details: Additional context as key-value pairs.
            cause: Original exception that caused this error.
        """
        self.message = message or self.default_message
        self.code = code or self.default_code
        self.details = details or {}
        self.cause = cause

        super().__init__(self.message)

        if cause is not None:
            self.__cause__ = cause

    def __str__(self) -> str:
        """Return human-readable representation."""
        return self.message

    def __repr__(self) -> str:
        """Return detailed representation for debugging."""
        parts = [f"{self.__class__.__name__}({self.message!r}"]
        if self.code != self.default_code:
            parts.append(f", code={self.code.value!r}")
        if self.details:
            parts.append(f", details={self.details!r}")
        if self.cause:
            parts.append(f", cause={self.cause!r}")
        parts.append(")")
        return "".join(parts)

    def to_dict(self) -> dict[str, Any]:
        """Convert error to a dictionary for JSON output.

        Returns:
            Dictionary with error, code, and detail fields.
        """
        result: dict[str, Any] = {
            "error": self.__class__.__name__,
            "code": self.code.value,
            "detail": self.message,
        }
        if self.details:
            result["details"] = self.details
        return result


# Configuration Errors


class ConfigurationError(MsgArchiveError):
    """Raised for configuration and settings issues.

    Examples:
        - Invalid configuration values
        - A collaborator (contact resolver) needed but not configured
    """

    default_message = "Configuration error"
    default_code = ErrorCode.CFG_INVALID

    def __init__(
        self,
        message: str | None = None,
        *,
        config_key: str | None = None,
        config_path: str | None = None,
        code: ErrorCode | None = None,
        details: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ) -> None:
        """Initialize a configuration error.

        Args:
            message: Human-readable error message.
            config_key: The configuration key that caused the error.
            config_path: Path to the configuration file.
            code: Error code for programmatic handling.
            details: Additional context as key-value pairs.
            cause: Original exception that caused this error.
        """
        details = details or {}
        if config_key:
            details["config_key"] = config_key
        if config_path:
            details["config_path"] = config_path
        super().__init__(message, code=code, details=details, cause=cause)


# iMessage Errors


class iMessageError(MsgArchiveError):  # noqa: N801 - iMessage is a brand name
    """Base class for message archive errors."""

    default_message = "iMessage error"
    default_code = ErrorCode.MSG_QUERY_FAILED

    def __init__(
        self,
        message: str | None = None,
        *,
        db_path: str | None = None,
        code: ErrorCode | None = None,
        details: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ) -> None:
        """Initialize an iMessage error.

        Args:
            message: Human-readable error message.
            db_path: Path to the chat.db file.
            code: Error code for programmatic handling.
            details: Additional context as key-value pairs.
            cause: Original exception that caused this error.
        """
        details = details or {}
        if db_path:
            details["db_path"] = db_path
        super().__init__(message, code=code, details=details, cause=cause)


class iMessageAccessError(iMessageError):  # noqa: N801 - iMessage is a brand name
    """Raised when the archive cannot be opened.

    Examples:
        - Full Disk Access not granted
        - Database file not found
        - Disk I/O failure while opening
    """

    default_message = "Cannot access iMessage database"
    default_code = ErrorCode.MSG_ACCESS_DENIED

    def __init__(
        self,
        message: str | None = None,
        *,
        db_path: str | None = None,
        requires_permission: bool = False,
        code: ErrorCode | None = None,
        details: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ) -> None:
        """Initialize an iMessage access error.

        Args:
            message: Human-readable error message.
            db_path: Path to the chat.db file.
            requires_permission: Whether Full Disk Access is needed.
            code: Error code for programmatic handling.
            details: Additional context as key-value pairs.
            cause: Original exception that caused this error.
        """
        details = details or {}
        if requires_permission:
            details["requires_permission"] = True
            details["permission_instructions"] = [
                "Open System Settings",
                "Go to Privacy & Security > Full Disk Access",
                "Add and enable your terminal application",
                "Restart the terminal and run the command again",
            ]
        super().__init__(message, db_path=db_path, code=code, details=details, cause=cause)


class iMessageQueryError(iMessageError):  # noqa: N801 - iMessage is a brand name
    """Raised when an archive query fails after the store was opened."""

    default_message = "iMessage query failed"
    default_code = ErrorCode.MSG_QUERY_FAILED

    def __init__(
        self,
        message: str | None = None,
        *,
        query: str | None = None,
        db_path: str | None = None,
        code: ErrorCode | None = None,
        details: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ) -> None:
        """Initialize an iMessage query error.

        Args:
            message: Human-readable error message.
            query: The SQL query that failed (may be truncated).
            db_path: Path to the chat.db file.
            code: Error code for programmatic handling.
            details: Additional context as key-value pairs.
            cause: Original exception that caused this error.
        """
        details = details or {}
        if query is not None:
            query = " ".join(query.split())
            details["query_preview"] = query[:200] + "..." if len(query) > 200 else query
        super().__init__(message, db_path=db_path, code=code, details=details, cause=cause)


# Validation Errors


class ValidationError(MsgArchiveError):
    """Raised for caller input that cannot be turned into a query.

    Examples:
        - Unparseable date bounds
        - Non-numeric chat id filters
        - Empty search query
    """

    default_message = "Validation error"
    default_code = ErrorCode.VAL_INVALID_INPUT

    def __init__(
        self,
        message: str | None = None,
        *,
        field: str | None = None,
        value: Any = None,
        expected: str | None = None,
        code: ErrorCode | None = None,
        details: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ) -> None:
        """Initialize a validation error.

        Args:
            message: Human-readable error message.
            field: Name of the field that failed validation.
            value: The invalid value (will be converted to string).
            expected: Description of expected value/format.
            code: Error code for programmatic handling.
            details: Additional context as key-value pairs.
            cause: Original exception that caused this error.
        """
        details = details or {}
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)
        if expected:
            details["expected"] = expected
        super().__init__(message, code=code, details=details, cause=cause)


# Contact Errors


class ContactResolutionError(MsgArchiveError):
    """Raised when the contact bridge cannot answer a lookup.

    An empty contact list is a valid answer; this error means the lookup
    itself failed and its result is unknown.
    """

    default_message = "Contact resolution failed"
    default_code = ErrorCode.CNT_RESOLUTION_FAILED

    def __init__(
        self,
        message: str | None = None,
        *,
        bridge_path: str | None = None,
        code: ErrorCode | None = None,
        details: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ) -> None:
        """Initialize a contact resolution error.

        Args:
            message: Human-readable error message.
            bridge_path: Path to the bridge executable.
            code: Error code for programmatic handling.
            details: Additional context as key-value pairs.
            cause: Original exception that caused this error.
        """
        details = details or {}
        if bridge_path:
            details["bridge_path"] = bridge_path
        super().__init__(message, code=code, details=details, cause=cause)


class ContactPermissionError(ContactResolutionError):
    """Raised when the bridge reports that Contacts access was not granted."""

    default_message = "Contacts access is required"
    default_code = ErrorCode.CNT_PERMISSION_DENIED

    def __init__(
        self,
        message: str | None = None,
        *,
        bridge_path: str | None = None,
        code: ErrorCode | None = None,
        details: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ) -> None:
        """Initialize a contacts permission error.

        Args:
            message: Human-readable error message.
            bridge_path: Path to the bridge executable.
            code: Error code for programmatic handling.
            details: Additional context as key-value pairs.
            cause: Original exception that caused this error.
        """
        details = details or {}
        details["permission_instructions"] = [
            "Open System Settings",
            "Go to Privacy & Security > Contacts",
            "Enable access for your terminal application",
        ]
        super().__init__(
            message, bridge_path=bridge_path, code=code, details=details, cause=cause
        )


# Convenience functions for common error scenarios


def imessage_permission_denied(db_path: str | None = None) -> iMessageAccessError:
    """Create an iMessageAccessError for the Full Disk Access requirement.

    Args:
        db_path: Path to the chat.db file.

    Returns:
        iMessageAccessError with permission instructions.
    """
    return iMessageAccessError(
        "Cannot open Messages database. Full Disk Access is required.",
        db_path=db_path,
        requires_permission=True,
    )


def imessage_db_not_found(db_path: str) -> iMessageAccessError:
    """Create an iMessageAccessError for a missing database.

    Args:
        db_path: Path where the database was expected.

    Returns:
        iMessageAccessError with appropriate code.
    """
    return iMessageAccessError(
        f"Messages database not found at: {db_path}. "
        "Ensure Messages.app has been used on this Mac.",
        db_path=db_path,
        code=ErrorCode.MSG_DB_NOT_FOUND,
    )


def validation_required(field: str) -> ValidationError:
    """Create a ValidationError for a missing required field.

    Args:
        field: Name of the missing field.

    Returns:
        ValidationError with appropriate details.
    """
    return ValidationError(
        f"Missing required field: {field}",
        field=field,
        code=ErrorCode.VAL_MISSING_REQUIRED,
    )


def validation_type_error(field: str, value: Any, expected: str) -> ValidationError:
    """Create a ValidationError for an incorrect type or format.

    Args:
        field: Name of the field.
        value: The invalid value.
        expected: Description of expected type.

    Returns:
        ValidationError with type details.
    """
    return ValidationError(
        f"Invalid value for '{field}': expected {expected}, got {value!r}",
        field=field,
        value=value,
        expected=expected,
        code=ErrorCode.VAL_TYPE_ERROR,
    )


__all__ = [
    # Error codes
    "ErrorCode",
    # Base exception
    "MsgArchiveError",
    # Configuration errors
    "ConfigurationError",
    # iMessage errors
    "iMessageError",
    "iMessageAccessError",
    "iMessageQueryError",
    # Validation errors
    "ValidationError",
    # Contact errors
    "ContactResolutionError",
    "ContactPermissionError",
    # Convenience functions
    "imessage_permission_denied",
    "imessage_db_not_found",
    "validation_required",
    "validation_type_error",
]
