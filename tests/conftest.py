import itertools
import uuid
from datetime import UTC, datetime, timedelta

import pytest

from rolodex.auth.verify import auth_dependency
from rolodex.db.helpers import DatabaseError
from rolodex.models.contact import Contact, ContactLabel, Label, NewContact
from rolodex.repositories.contact_repository import LabelLinkExistsError, RecordNotFoundError
from rolodex.services.directory import ContactDirectory, DirectoryAuthorization
from rolodex.services.openai_service import OpenAIServiceError

_BASE_TIME = datetime(2024, 1, 1, tzinfo=UTC)
_clock = itertools.count()


def _next_timestamp() -> datetime:
    return _BASE_TIME + timedelta(seconds=next(_clock))


def make_label(name: str, user_id: str = "user-123", label_id: str | None = None) -> Label:
    now = _next_timestamp()
    return Label(
        id=label_id or str(uuid.uuid4()),
        user_id=user_id,
        name=name,
        created_at=now,
        updated_at=now,
    )


def make_contact(user_id: str = "user-123", **fields) -> Contact:
    now = _next_timestamp()
    fields.setdefault("id", str(uuid.uuid4()))
    fields.setdefault("created_at", now)
    fields.setdefault("updated_at", now)
    return Contact(user_id=user_id, **fields)


@pytest.fixture
def auth_override():
    def _override():
        return {"sub": "user-123"}

    return _override


@pytest.fixture
def apply_auth_override(auth_override):
    def _apply(app):
        app.dependency_overrides[auth_dependency] = auth_override

    return _apply


@pytest.fixture
def contact_factory():
    return make_contact


@pytest.fixture
def label_factory():
    return make_label


class FakeOpenAIService:
    """Returns canned replies in order; an Exception in the list is raised instead."""

    def __init__(self, *replies):
        self.replies = list(replies)
        self.prompts: list[str] = []

    async def complete(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if not self.replies:
            raise OpenAIServiceError("No canned reply left", recoverable=False)
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


class FakeContactRepository:
    """In-memory stand-in for ContactRepository."""

    def __init__(self, contacts: list[Contact] | None = None):
        self.contacts: list[Contact] = list(contacts or [])
        self.created: list[NewContact] = []
        self.search_results: list[Contact] | None = None
        self.search_error: Exception | None = None
        self.list_error: Exception | None = None
        self.fail_phones: set[str] = set()
        self.phone_errors: dict[str, Exception] = {}
        self.system_ids: dict[str, str] = {}

    def _owned(self, user_id: str) -> list[Contact]:
        owned = [c for c in self.contacts if c.user_id == user_id]
        return sorted(owned, key=lambda c: c.created_at, reverse=True)

    async def list_contacts(self, user_id: str) -> list[Contact]:
        if self.list_error:
            raise self.list_error
        return self._owned(user_id)

    async def search_contacts(self, user_id: str, text: str) -> list[Contact]:
        if self.search_error:
            raise self.search_error
        if self.search_results is not None:
            return self.search_results
        needle = text.lower()
        return [
            c
            for c in self._owned(user_id)
            if any(
                value and needle in value.lower()
                for value in (c.name, c.text_description, c.phone_number, c.email)
            )
        ]

    async def _with_phone(self, user_id: str, phone_number: str) -> list[Contact]:
        return [c for c in self._owned(user_id) if c.phone_number == phone_number]

    async def create_contact(self, contact: NewContact) -> Contact:
        self.created.append(contact)
        stored = make_contact(**contact.model_dump())
        self.contacts.append(stored)
        return stored

    async def create_contact_if_phone_absent(self, contact: NewContact) -> Contact | None:
        if contact.phone_number in self.phone_errors:
            raise self.phone_errors[contact.phone_number]
        if contact.phone_number in self.fail_phones:
            raise DatabaseError("insert failed", operation="create_contact_if_phone_absent")
        if await self._with_phone(contact.user_id, contact.phone_number):
            return None
        return await self.create_contact(contact)

    async def set_system_contact_id(self, contact_id: str, system_contact_id: str) -> None:
        self.system_ids[contact_id] = system_contact_id


class FakeLabelRepository:
    """In-memory stand-in for LabelRepository."""

    def __init__(
        self,
        labels: list[Label] | None = None,
        contact_repository: FakeContactRepository | None = None,
    ):
        self.labels: list[Label] = list(labels or [])
        self.contact_repository = contact_repository or FakeContactRepository()
        self.assignments: list[tuple[str, str]] = []
        self.fail_label_ids: set[str] = set()

    async def list_labels(self, user_id: str) -> list[Label]:
        return sorted(
            (label for label in self.labels if label.user_id == user_id),
            key=lambda label: label.name,
        )

    async def create_label(self, user_id: str, name: str) -> Label:
        label = make_label(name, user_id=user_id)
        self.labels.append(label)
        return label

    def _owns(self, user_id: str, contact_id: str, label_id: str) -> bool:
        return any(
            c.id == contact_id and c.user_id == user_id for c in self.contact_repository.contacts
        ) and any(label.id == label_id and label.user_id == user_id for label in self.labels)

    async def assign_label(self, user_id: str, contact_id: str, label_id: str) -> ContactLabel:
        if label_id in self.fail_label_ids:
            raise DatabaseError("assignment failed", operation="assign_label")
        if not self._owns(user_id, contact_id, label_id):
            raise RecordNotFoundError("Contact or label not found", operation="assign_label")
        if (contact_id, label_id) in self.assignments:
            raise LabelLinkExistsError("Label already attached", operation="assign_label")
        self.assignments.append((contact_id, label_id))
        return ContactLabel(
            id=str(uuid.uuid4()),
            contact_id=contact_id,
            label_id=label_id,
            created_at=_next_timestamp(),
        )

    async def remove_label(self, user_id: str, contact_id: str, label_id: str) -> None:
        if not self._owns(user_id, contact_id, label_id) or (
            (contact_id, label_id) not in self.assignments
        ):
            raise RecordNotFoundError("Label is not attached", operation="remove_label")
        self.assignments.remove((contact_id, label_id))


class FakePreferencesRepository:
    def __init__(self):
        self.synced: dict[str, bool] = {}

    async def set_contacts_synced(self, user_id: str, synced: bool = True):
        self.synced[user_id] = synced


class FakeDirectory(ContactDirectory):
    """Address book held in memory with a scripted permission state."""

    def __init__(
        self,
        entries=None,
        status: DirectoryAuthorization = DirectoryAuthorization.AUTHORIZED,
        grant: bool = True,
        create_error: Exception | None = None,
    ):
        self.entries = list(entries or [])
        self.status = status
        self.grant = grant
        self.create_error = create_error
        self.access_requests = 0
        self.created: list[dict] = []

    @property
    def name(self) -> str:
        return "fake_directory"

    def authorization_status(self) -> DirectoryAuthorization:
        return self.status

    async def request_access(self) -> bool:
        self.access_requests += 1
        self.status = (
            DirectoryAuthorization.AUTHORIZED if self.grant else DirectoryAuthorization.DENIED
        )
        return self.grant

    async def fetch_entries(self):
        return list(self.entries)

    async def create_contact(self, *, given_name, family_name, phone_number, email=None):
        if self.create_error:
            raise self.create_error
        self.created.append(
            {
                "given_name": given_name,
                "family_name": family_name,
                "phone_number": phone_number,
                "email": email,
            }
        )
        return f"native-{len(self.created)}"


@pytest.fixture
def fake_contact_repository():
    return FakeContactRepository()


@pytest.fixture
def fake_label_repository(fake_contact_repository):
    return FakeLabelRepository(contact_repository=fake_contact_repository)


@pytest.fixture
def fake_preferences_repository():
    return FakePreferencesRepository()


@pytest.fixture
def fake_openai():
    def _make(*replies) -> FakeOpenAIService:
        return FakeOpenAIService(*replies)

    return _make


@pytest.fixture
def fake_directory():
    def _make(entries=None, **kwargs) -> FakeDirectory:
        return FakeDirectory(entries, **kwargs)

    return _make
