"""Contact resolution through the native macOS bridge executable.

The bridge wraps the Contacts framework and is invoked once per lookup:

    macos-mcp-bridge --action resolve-contact --name "Jane Doe"

It prints a JSON envelope on stdout, either
{"status": "success", "result": {"contacts": [...]}} or
{"status": "error", "message": "..."}.

Usage:
    from integrations.imessage.contacts import BridgeContactResolver

    resolver = BridgeContactResolver()
    contacts = resolver.resolve_contact(name="Jane")
"""

from __future__ import annotations

import logging
import shutil
import subprocess
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from contracts.imessage import Contact, ContactEmail, ContactPhoneNumber
from msgarchive.config import CONFIG_DIR, get_config
from msgarchive.errors import (
    ContactPermissionError,
    ContactResolutionError,
    ErrorCode,
    ValidationError,
    validation_required,
)
from msgarchive.utils.latency_tracker import track_latency

logger = logging.getLogger(__name__)

BRIDGE_BINARY_NAME = "macos-mcp-bridge"

# Searched in order when no bridge path is configured
DEFAULT_BRIDGE_PATHS = (
    CONFIG_DIR / "bin" / BRIDGE_BINARY_NAME,
    Path("/usr/local/bin") / BRIDGE_BINARY_NAME,
    Path("/opt/homebrew/bin") / BRIDGE_BINARY_NAME,
)

PERMISSION_KEYWORDS = ("permission", "authoriz")

_SELECTORS = ("name", "phone", "email")


class BridgePhoneNumber(BaseModel):
    """Phone number entry in bridge output."""

    label: str | None = None
    number: str


class BridgeEmail(BaseModel):
    """Email entry in bridge output."""

    label: str | None = None
    email: str


class BridgeContact(BaseModel):
    """Contact as serialized by the bridge (camelCase keys)."""

    model_config = ConfigDict(populate_by_name=True)

    id: str | None = None
    full_name: str = Field(alias="fullName")
    given_name: str | None = Field(default=None, alias="givenName")
    family_name: str | None = Field(default=None, alias="familyName")
    phone_numbers: list[BridgePhoneNumber] = Field(default_factory=list, alias="phoneNumbers")
    email_addresses: list[BridgeEmail] = Field(default_factory=list, alias="emailAddresses")

    def to_contact(self) -> Contact:
        """Convert to the contract Contact record."""
        return Contact(
            full_name=self.full_name,
            phone_numbers=[
                ContactPhoneNumber(number=p.number, label=p.label) for p in self.phone_numbers
            ],
            email_addresses=[
                ContactEmail(email=e.email, label=e.label) for e in self.email_addresses
            ],
            id=self.id,
            given_name=self.given_name,
            family_name=self.family_name,
        )


class ResolveContactResult(BaseModel):
    """Result payload of the resolve-contact action."""

    contacts: list[BridgeContact] = Field(default_factory=list)


class BridgeResponse(BaseModel):
    """JSON envelope printed by the bridge."""

    status: Literal["success", "error"]
    result: Any = None
    message: str | None = None


def mentions_permission(message: str) -> bool:
    """Check whether a bridge error message is about a missing permission."""
    lower = message.lower()
    return any(keyword in lower for keyword in PERMISSION_KEYWORDS)


class BridgeContactResolver:
    """ContactResolver backed by the native bridge executable.

    Each lookup is a blocking subprocess call. Failures raise
    ContactResolutionError (or ContactPermissionError) instead of
    returning an empty list, since an empty list means "no such contact".
    """

    def __init__(
        self,
        bridge_path: Path | str | None = None,
        timeout: float | None = None,
    ) -> None:
        """Initialize the resolver.

        Args:
            bridge_path: Path to the bridge executable. Defaults to config, then
                the default install locations and PATH.
            timeout: Seconds to wait for one invocation. Defaults to config.
        """
        config = get_config().contacts
        configured = bridge_path or config.bridge_path
        self.bridge_path = Path(configured).expanduser() if configured else None
        self.timeout = timeout if timeout is not None else config.timeout_seconds

    def find_bridge(self) -> Path:
        """Locate the bridge executable.

        Raises:
            ContactResolutionError: If no executable is found.
        """
        if self.bridge_path is not None:
            if self.bridge_path.is_file():
                return self.bridge_path
            raise ContactResolutionError(
                f"Contact bridge not found at {self.bridge_path}",
                bridge_path=str(self.bridge_path),
                code=ErrorCode.CNT_BRIDGE_NOT_FOUND,
            )

        for candidate in DEFAULT_BRIDGE_PATHS:
            if candidate.is_file():
                return candidate

        on_path = shutil.which(BRIDGE_BINARY_NAME)
        if on_path:
            return Path(on_path)

        searched = ", ".join(str(p) for p in DEFAULT_BRIDGE_PATHS)
        raise ContactResolutionError(
            f"Contact bridge '{BRIDGE_BINARY_NAME}' not found. Searched: {searched} and PATH",
            code=ErrorCode.CNT_BRIDGE_NOT_FOUND,
        )

    def resolve_contact(
        self,
        *,
        name: str | None = None,
        phone: str | None = None,
        email: str | None = None,
    ) -> list[Contact]:
        """Look up contacts by exactly one of name, phone or email.

        Returns:
            Matching contacts, possibly empty.

        Raises:
            ValidationError: If not exactly one non-blank selector is given.
            ContactResolutionError: If the bridge is missing, fails or prints invalid output.
            ContactPermissionError: If Contacts access has not been granted.
        """
        given = {
            key: value
            for key, value in zip(_SELECTORS, (name, phone, email), strict=True)
            if value is not None
        }
        if not given:
            raise validation_required("name, phone or email")
        if len(given) > 1:
            raise ValidationError(
                "Provide exactly one of name, phone or email",
                field="selector",
                value=", ".join(given),
            )

        key, value = next(iter(given.items()))
        if not value.strip():
            raise validation_required(key)

        result = self._run(["--action", "resolve-contact", f"--{key}", value])

        try:
            parsed = ResolveContactResult.model_validate(result or {})
        except PydanticValidationError as e:
            raise ContactResolutionError(
                "Contact bridge returned contacts in an unexpected format",
                bridge_path=str(self.bridge_path) if self.bridge_path else None,
                code=ErrorCode.CNT_INVALID_OUTPUT,
                cause=e,
            ) from e

        contacts = [c.to_contact() for c in parsed.contacts]
        logger.debug("Resolved %s=%r to %d contact(s)", key, value, len(contacts))
        return contacts

    def _run(self, args: list[str]) -> Any:
        """Invoke the bridge and return the result payload of a success envelope."""
        binary = self.find_bridge()
        bridge = str(binary)

        with track_latency("contact_resolve", action=args[1]):
            try:
                completed = subprocess.run(
                    [bridge, *args],
                    capture_output=True,
                    check=False,
                    text=True,
                    timeout=self.timeout,
                )
            except subprocess.TimeoutExpired as e:
                raise ContactResolutionError(
                    f"Contact bridge timed out after {self.timeout}s",
                    bridge_path=bridge,
                    cause=e,
                ) from e
            except OSError as e:
                raise ContactResolutionError(
                    f"Failed to run contact bridge: {e}",
                    bridge_path=bridge,
                    cause=e,
                ) from e

        stdout = (completed.stdout or "").strip()
        if not stdout:
            if completed.returncode != 0:
                stderr = (completed.stderr or "").strip()
                raise ContactResolutionError(
                    f"Contact bridge exited with status {completed.returncode}: {stderr}",
                    bridge_path=bridge,
                )
            raise ContactResolutionError(
                "Contact bridge returned empty output",
                bridge_path=bridge,
                code=ErrorCode.CNT_INVALID_OUTPUT,
            )

        # A failing exit status still carries a parseable envelope
        return self._parse_output(stdout, bridge)

    @staticmethod
    def _parse_output(stdout: str, bridge: str) -> Any:
        try:
            envelope = BridgeResponse.model_validate_json(stdout)
        except PydanticValidationError as e:
            raise ContactResolutionError(
                "Contact bridge returned invalid output",
                bridge_path=bridge,
                code=ErrorCode.CNT_INVALID_OUTPUT,
                cause=e,
            ) from e

        if envelope.status == "success":
            return envelope.result

        message = envelope.message or "Contact bridge reported an error"
        if mentions_permission(message):
            raise ContactPermissionError(message, bridge_path=bridge)
        raise ContactResolutionError(message, bridge_path=bridge)
