"""
Contact gateway.

Orchestrates ingestion, labeling, search and directory sync for one owner
session, and keeps the caller-visible contact and label lists current.

Ingestion runs strictly in order:
    extract -> insert -> suggest labels -> assign labels -> mirror -> refresh

Only extraction, name resolution and the insert can fail an ingest. The
later steps are best-effort: each is recorded as a SideEffectOutcome on the
IngestResult and logged, never raised.
"""

import itertools
from collections.abc import Callable
from dataclasses import dataclass, field

from rolodex.infrastructure.observability.logging import get_logger
from rolodex.models.contact import Contact, ContactLabel, Label, NewContact
from rolodex.repositories.contact_repository import ContactRepository, LabelRepository
from rolodex.services.directory import (
    ContactDirectory,
    DirectoryAuthorization,
    resolve_access,
    split_name,
)
from rolodex.services.directory_sync_service import DirectorySyncService, DirectorySyncSummary
from rolodex.services.extraction_service import ExtractionService
from rolodex.services.label_matcher import LabelMatcher
from rolodex.services.search_service import SearchService

logger = get_logger(__name__)

CONTACTS_EVENT = "contacts"
LABELS_EVENT = "labels"

Subscriber = Callable[[str], None]


class ContactValidationError(ValueError):
    """Raised when input cannot produce a valid record (e.g. no resolvable name)."""


@dataclass(slots=True)
class SideEffectOutcome:
    """Result of one best-effort step of an ingest."""

    name: str
    ok: bool
    error: str | None = None


@dataclass(slots=True)
class IngestResult:
    contact: Contact
    side_effects: list[SideEffectOutcome] = field(default_factory=list)

    @property
    def failed_side_effects(self) -> list[SideEffectOutcome]:
        return [outcome for outcome in self.side_effects if not outcome.ok]


def extract_name_from_description(description: str | None) -> str | None:
    """Two leading capitalized words, else one leading capitalized word."""
    if not description:
        return None

    words = description.split()
    if len(words) >= 2 and words[0][0].isupper() and words[1][0].isupper():
        return f"{words[0]} {words[1]}"
    if words and words[0][0].isupper():
        return words[0]
    return None


class ContactGateway:
    """
    Per-session facade over the contact store and the language-model adapters.

    The gateway is the only writer of `contacts` and `labels`; subscribers are
    called with CONTACTS_EVENT or LABELS_EVENT after each cache change.
    """

    def __init__(
        self,
        extraction_service: ExtractionService,
        label_matcher: LabelMatcher,
        *,
        contact_repository=ContactRepository,
        label_repository=LabelRepository,
        search_service: SearchService | None = None,
        directory: ContactDirectory | None = None,
        directory_sync_service: DirectorySyncService | None = None,
    ):
        self.extraction_service = extraction_service
        self.label_matcher = label_matcher
        self.contact_repository = contact_repository
        self.label_repository = label_repository
        self.search_service = search_service or SearchService(contact_repository)
        self.directory = directory
        self.directory_sync_service = directory_sync_service
        if self.directory_sync_service is None and directory is not None:
            self.directory_sync_service = DirectorySyncService(
                directory, contact_repository=contact_repository
            )

        self.contacts: list[Contact] = []
        self.labels: list[Label] = []

        self._subscribers: list[Subscriber] = []
        self._generation = itertools.count(1)
        self._contacts_generation = 0
        self._labels_generation = 0

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register a change callback; returns a function that unsubscribes it."""
        self._subscribers.append(callback)

        def _unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return _unsubscribe

    def _notify(self, event: str) -> None:
        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception as e:
                logger.error(
                    "Gateway subscriber failed",
                    event=event,
                    error=str(e),
                    error_type=type(e).__name__,
                )

    # ------------------------------------------------------------------
    # Cache refresh
    # ------------------------------------------------------------------

    async def refresh_contacts(self, user_id: str) -> list[Contact]:
        """Reload contacts from the store; a refresh older than the applied one is discarded."""
        generation = next(self._generation)
        contacts = await self.contact_repository.list_contacts(user_id)

        if generation < self._contacts_generation:
            logger.debug(
                "Discarding stale contact refresh",
                user_id=user_id,
                generation=generation,
                applied_generation=self._contacts_generation,
            )
            return self.contacts

        self._contacts_generation = generation
        self.contacts = contacts
        self._notify(CONTACTS_EVENT)
        return contacts

    async def refresh_labels(self, user_id: str) -> list[Label]:
        generation = next(self._generation)
        labels = await self.label_repository.list_labels(user_id)

        if generation < self._labels_generation:
            return self.labels

        self._labels_generation = generation
        self.labels = labels
        self._notify(LABELS_EVENT)
        return labels

    # ------------------------------------------------------------------
    # Labels
    # ------------------------------------------------------------------

    async def create_label(self, name: str, user_id: str) -> Label:
        name = name.strip()
        if not name:
            raise ContactValidationError("Label name must not be empty")

        label = await self.label_repository.create_label(user_id, name)

        # Ordinal name order is the canonical label order
        self.labels = sorted([*self.labels, label], key=lambda item: item.name)
        self._notify(LABELS_EVENT)
        return label

    async def assign_label(self, contact_id: str, label_id: str, user_id: str) -> ContactLabel:
        return await self.label_repository.assign_label(user_id, contact_id, label_id)

    async def remove_label(self, contact_id: str, label_id: str, user_id: str) -> None:
        await self.label_repository.remove_label(user_id, contact_id, label_id)
        logger.info(
            "Label removed from contact",
            user_id=user_id,
            contact_id=contact_id,
            label_id=label_id,
        )

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    async def ingest(self, raw_text: str, user_id: str) -> IngestResult:
        """
        Create a contact from a free-text note.

        Raises:
            ContactValidationError: No name could be resolved (nothing is written)
            ExtractionRequestError: Extraction failed with local fallback disabled
            DatabaseError: The contact insert failed
        """
        extracted = await self.extraction_service.extract(raw_text)

        name = extracted.name or extract_name_from_description(extracted.description)
        if not name:
            logger.warning("Contact ingest rejected: no resolvable name", user_id=user_id)
            raise ContactValidationError("Could not extract name from input")

        contact = await self.contact_repository.create_contact(
            NewContact(
                user_id=user_id,
                name=name,
                text_description=extracted.description or raw_text,
                phone_number=extracted.phone_number,
                email=extracted.email,
            )
        )

        result = IngestResult(contact=contact)

        if extracted.description:
            assigned = await self._apply_suggested_labels(
                contact, extracted.description, user_id, result
            )
            result.contact = contact.model_copy(update={"labels": assigned})

        if extracted.phone_number:
            await self._mirror_to_directory(result, name, extracted.phone_number, extracted.email)

        try:
            await self.refresh_contacts(user_id)
            result.side_effects.append(SideEffectOutcome("refresh_contacts", ok=True))
        except Exception as e:
            self._record_failure(result, "refresh_contacts", e, user_id=user_id)

        logger.info(
            "Contact ingested",
            user_id=user_id,
            contact_id=contact.id,
            extraction_source=extracted.source,
            labels_assigned=len(result.contact.labels),
            failed_side_effects=len(result.failed_side_effects),
        )
        return result

    async def _apply_suggested_labels(
        self, contact: Contact, description: str, user_id: str, result: IngestResult
    ) -> list[Label]:
        try:
            existing = await self.refresh_labels(user_id)
        except Exception as e:
            self._record_failure(result, "refresh_labels", e, user_id=user_id)
            return []

        suggested = await self.label_matcher.suggest_labels(description, existing)

        assigned: list[Label] = []
        for label in suggested:
            step = f"assign_label:{label.name}"
            try:
                await self.label_repository.assign_label(user_id, contact.id, label.id)
            except Exception as e:
                self._record_failure(result, step, e, user_id=user_id)
                continue
            assigned.append(label)
            result.side_effects.append(SideEffectOutcome(step, ok=True))

        return assigned

    async def _mirror_to_directory(
        self, result: IngestResult, name: str, phone_number: str, email: str | None
    ) -> None:
        if self.directory is None:
            return

        contact = result.contact
        try:
            status = await resolve_access(self.directory)
            if status != DirectoryAuthorization.AUTHORIZED:
                result.side_effects.append(
                    SideEffectOutcome("mirror_to_directory", ok=False, error=status.value)
                )
                return

            given_name, family_name = split_name(name)
            native_id = await self.directory.create_contact(
                given_name=given_name,
                family_name=family_name,
                phone_number=phone_number,
                email=email,
            )
            if native_id:
                await self.contact_repository.set_system_contact_id(contact.id, native_id)
                result.contact = contact.model_copy(update={"system_contact_id": native_id})
        except Exception as e:
            self._record_failure(result, "mirror_to_directory", e, user_id=contact.user_id)
            return

        result.side_effects.append(SideEffectOutcome("mirror_to_directory", ok=True))

    def _record_failure(
        self, result: IngestResult, step: str, error: Exception, *, user_id: str
    ) -> None:
        logger.warning(
            "Ingest side effect failed",
            user_id=user_id,
            contact_id=result.contact.id,
            step=step,
            error=str(error),
            error_type=type(error).__name__,
        )
        result.side_effects.append(SideEffectOutcome(step, ok=False, error=str(error)))

    # ------------------------------------------------------------------
    # Search and sync
    # ------------------------------------------------------------------

    async def search(self, query: str, user_id: str) -> list[Contact]:
        return await self.search_service.search(query, user_id)

    async def sync_directory(self, user_id: str) -> DirectorySyncSummary:
        """
        Import the external directory, then refresh the contact list.

        Raises:
            RuntimeError: No directory is configured for this gateway
            DirectoryPermissionError: Directory access is denied
        """
        if self.directory_sync_service is None:
            raise RuntimeError("No contact directory configured")

        summary = await self.directory_sync_service.reconcile(user_id)
        await self.refresh_contacts(user_id)
        return summary
