"""
External contact directory contract.

A directory is the device-local address book. It is enumerated in bulk for
sync and written to one contact at a time when a new contact is mirrored.
Access is gated by the platform's permission state.
"""

import abc
import re
from dataclasses import dataclass, field
from enum import Enum

from rolodex.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

_NON_PHONE_CHARS = re.compile(r"[^0-9]")


class DirectoryAuthorization(str, Enum):
    NOT_DETERMINED = "not_determined"
    AUTHORIZED = "authorized"
    DENIED = "denied"
    RESTRICTED = "restricted"


class DirectoryError(Exception):
    """Base error for directory access."""


class DirectoryPermissionError(DirectoryError):
    """Raised when access to the directory is denied or restricted."""

    def __init__(self, message: str, status: DirectoryAuthorization):
        super().__init__(message)
        self.status = status


@dataclass(slots=True)
class DirectoryEntry:
    """One address-book record as read from the directory."""

    identifier: str
    given_name: str = ""
    family_name: str = ""
    phone_numbers: list[str] = field(default_factory=list)
    email_addresses: list[str] = field(default_factory=list)

    @property
    def display_name(self) -> str:
        return " ".join(part for part in (self.given_name, self.family_name) if part)


def normalize_phone(raw: str) -> str:
    """Keep digits, plus a leading '+' when the number starts with one."""
    stripped = raw.strip()
    digits = _NON_PHONE_CHARS.sub("", stripped)
    if stripped.startswith("+") and digits:
        return f"+{digits}"
    return digits


def split_name(name: str) -> tuple[str, str]:
    """Split a display name into (given, family) on the first space."""
    parts = name.split(" ")
    if len(parts) > 1:
        return parts[0], " ".join(parts[1:])
    return name, ""


class ContactDirectory(abc.ABC):
    """Provider contract for an external address book."""

    @property
    @abc.abstractmethod
    def name(self) -> str:
        """Short provider name used in logs."""

    @abc.abstractmethod
    def authorization_status(self) -> DirectoryAuthorization:
        """Current permission state, without prompting."""

    @abc.abstractmethod
    async def request_access(self) -> bool:
        """Prompt for access; True when granted."""

    @abc.abstractmethod
    async def fetch_entries(self) -> list[DirectoryEntry]:
        """Enumerate every entry in the directory."""

    @abc.abstractmethod
    async def create_contact(
        self,
        *,
        given_name: str,
        family_name: str,
        phone_number: str,
        email: str | None = None,
    ) -> str | None:
        """Write one contact; returns its native identifier."""


async def resolve_access(directory: ContactDirectory) -> DirectoryAuthorization:
    """
    Walk the permission state machine.

    NOT_DETERMINED prompts once and resolves to AUTHORIZED or DENIED; every
    other state is returned unchanged.
    """
    status = directory.authorization_status()
    if status != DirectoryAuthorization.NOT_DETERMINED:
        return status

    granted = await directory.request_access()
    logger.info("Directory access requested", directory=directory.name, granted=granted)
    return DirectoryAuthorization.AUTHORIZED if granted else DirectoryAuthorization.DENIED
