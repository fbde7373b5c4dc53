"""
Directory sync service.

Imports address-book entries as contacts. The phone number is the dedupe
key: for a given (owner, phone) at most one contact is ever inserted by
sync, however many times it runs.
"""

import asyncio
from dataclasses import dataclass

from rolodex.config import settings
from rolodex.infrastructure.observability.logging import get_logger
from rolodex.models.contact import NewContact
from rolodex.repositories.contact_repository import ContactRepository
from rolodex.repositories.preferences_repository import PreferencesRepository
from rolodex.services.directory import (
    ContactDirectory,
    DirectoryAuthorization,
    DirectoryEntry,
    DirectoryPermissionError,
    normalize_phone,
    resolve_access,
)

logger = get_logger(__name__)

IMPORTED_DESCRIPTION = "Imported from phone contacts"


@dataclass(slots=True)
class DirectorySyncSummary:
    """Counts for one reconcile run."""

    total: int = 0
    inserted: int = 0
    existing: int = 0
    skipped_no_phone: int = 0
    skipped_no_name: int = 0
    failed: int = 0


@dataclass(slots=True)
class _Candidate:
    entry: DirectoryEntry
    name: str
    phone_number: str


class DirectorySyncService:
    """Reconciles the external directory into the owner's stored contacts."""

    def __init__(
        self,
        directory: ContactDirectory,
        contact_repository=ContactRepository,
        preferences_repository=PreferencesRepository,
        *,
        batch_size: int | None = None,
    ):
        self.directory = directory
        self.contact_repository = contact_repository
        self.preferences_repository = preferences_repository
        self.batch_size = batch_size or settings.DIRECTORY_SYNC_BATCH_SIZE

    async def reconcile(self, user_id: str) -> DirectorySyncSummary:
        """
        Insert directory entries missing from the store and mark the owner synced.

        Raises:
            DirectoryPermissionError: Directory access is denied or restricted
            DatabaseError: The preference update failed
        """
        status = await resolve_access(self.directory)
        if status != DirectoryAuthorization.AUTHORIZED:
            logger.warning(
                "Directory sync blocked by permissions",
                user_id=user_id,
                directory=self.directory.name,
                status=status.value,
            )
            raise DirectoryPermissionError(
                "Permission to access contacts was denied", status=status
            )

        entries = await self.directory.fetch_entries()
        summary = DirectorySyncSummary(total=len(entries))

        logger.info(
            "Directory sync started",
            user_id=user_id,
            directory=self.directory.name,
            entries=len(entries),
            batch_size=self.batch_size,
        )

        for start in range(0, len(entries), self.batch_size):
            batch = entries[start : start + self.batch_size]
            await self._reconcile_batch(user_id, batch, summary)
            logger.debug(
                "Directory sync batch processed",
                user_id=user_id,
                batch_start=start,
                batch_size=len(batch),
                inserted_so_far=summary.inserted,
            )

        await self.preferences_repository.set_contacts_synced(user_id, True)

        logger.info(
            "Directory sync completed",
            user_id=user_id,
            total=summary.total,
            inserted=summary.inserted,
            existing=summary.existing,
            skipped_no_phone=summary.skipped_no_phone,
            skipped_no_name=summary.skipped_no_name,
            failed=summary.failed,
        )
        return summary

    def _candidates(
        self, batch: list[DirectoryEntry], summary: DirectorySyncSummary
    ) -> list[_Candidate]:
        """Apply skip rules and collapse entries sharing a phone to the first one."""
        candidates: dict[str, _Candidate] = {}

        for entry in batch:
            if not entry.phone_numbers:
                summary.skipped_no_phone += 1
                continue

            name = entry.display_name
            if not name:
                summary.skipped_no_name += 1
                continue

            phone_number = normalize_phone(entry.phone_numbers[0])
            if not phone_number:
                summary.skipped_no_phone += 1
                continue

            if phone_number in candidates:
                summary.existing += 1
                continue

            candidates[phone_number] = _Candidate(entry=entry, name=name, phone_number=phone_number)

        return list(candidates.values())

    async def _reconcile_batch(
        self, user_id: str, batch: list[DirectoryEntry], summary: DirectorySyncSummary
    ) -> None:
        candidates = self._candidates(batch, summary)
        outcomes = await asyncio.gather(
            *(self._reconcile_entry(user_id, candidate) for candidate in candidates)
        )

        for outcome in outcomes:
            if outcome == "inserted":
                summary.inserted += 1
            elif outcome == "existing":
                summary.existing += 1
            else:
                summary.failed += 1

    async def _reconcile_entry(self, user_id: str, candidate: _Candidate) -> str:
        entry = candidate.entry

        # One bad entry must not abort the rest of its batch
        try:
            new_contact = NewContact(
                user_id=user_id,
                name=candidate.name,
                phone_number=candidate.phone_number,
                email=entry.email_addresses[0] if entry.email_addresses else None,
                system_contact_id=entry.identifier,
                text_description=IMPORTED_DESCRIPTION,
            )
            created = await self.contact_repository.create_contact_if_phone_absent(new_contact)
        except Exception as e:
            logger.warning(
                "Directory entry sync failed",
                user_id=user_id,
                directory_id=entry.identifier,
                error=str(e),
                error_type=type(e).__name__,
            )
            return "failed"

        return "inserted" if created is not None else "existing"
