"""
Tests for the macOS Contacts directory with the framework mocked out.
"""

import sys
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from rolodex.services.directory import DirectoryAuthorization, DirectoryError
from rolodex.services.directory import macos


def _labeled(value):
    return SimpleNamespace(value=lambda: value)


def _phone(number):
    return _labeled(SimpleNamespace(stringValue=lambda: number))


def _cn_contact(identifier, given, family, phones, emails):
    return SimpleNamespace(
        identifier=lambda: identifier,
        givenName=lambda: given,
        familyName=lambda: family,
        phoneNumbers=lambda: [_phone(number) for number in phones],
        emailAddresses=lambda: [_labeled(email) for email in emails],
    )


@pytest.fixture
def framework(monkeypatch):
    cn = MagicMock()
    cn.CNContactStore.authorizationStatusForEntityType_.return_value = 3
    store = cn.CNContactStore.alloc.return_value.init.return_value
    monkeypatch.setattr(macos, "_load_contacts_framework", lambda: cn)
    return cn, store


def test_missing_framework_raises_directory_error(monkeypatch):
    monkeypatch.setitem(sys.modules, "Contacts", None)

    with pytest.raises(DirectoryError):
        macos.MacOSContactDirectory()


@pytest.mark.parametrize(
    "raw, expected",
    [
        (0, DirectoryAuthorization.NOT_DETERMINED),
        (1, DirectoryAuthorization.RESTRICTED),
        (2, DirectoryAuthorization.DENIED),
        (3, DirectoryAuthorization.AUTHORIZED),
        (4, DirectoryAuthorization.AUTHORIZED),
    ],
)
def test_authorization_status_mapping(framework, raw, expected):
    cn, _ = framework
    cn.CNContactStore.authorizationStatusForEntityType_.return_value = raw

    assert macos.MacOSContactDirectory().authorization_status() == expected


@pytest.mark.asyncio
async def test_fetch_entries_reads_every_contact(framework):
    _, store = framework
    contacts = [
        _cn_contact("id-1", "Jane", "Doe", ["+1 555 123 4567", ""], ["jane@x.io"]),
        _cn_contact("id-2", "John", None, [], []),
    ]

    def enumerate_contacts(request, error, handler):
        for contact in contacts:
            handler(contact, None)
        return True, None

    store.enumerateContactsWithFetchRequest_error_usingBlock_.side_effect = enumerate_contacts

    entries = await macos.MacOSContactDirectory().fetch_entries()

    assert [entry.identifier for entry in entries] == ["id-1", "id-2"]
    assert entries[0].phone_numbers == ["+1 555 123 4567"]
    assert entries[0].email_addresses == ["jane@x.io"]
    assert entries[1].display_name == "John"


@pytest.mark.asyncio
async def test_fetch_entries_failure_raises(framework):
    _, store = framework
    store.enumerateContactsWithFetchRequest_error_usingBlock_.return_value = (False, "denied")

    with pytest.raises(DirectoryError):
        await macos.MacOSContactDirectory().fetch_entries()


@pytest.mark.asyncio
async def test_request_access_resolves_from_completion_handler(framework):
    _, store = framework

    def request_access(entity_type, completion):
        completion(True, None)

    store.requestAccessForEntityType_completionHandler_.side_effect = request_access

    assert await macos.MacOSContactDirectory().request_access() is True


@pytest.mark.asyncio
async def test_create_contact_returns_native_id(framework):
    cn, store = framework
    contact = cn.CNMutableContact.alloc.return_value.init.return_value
    contact.identifier.return_value = "native-9"
    store.executeSaveRequest_error_.return_value = (True, None)

    native_id = await macos.MacOSContactDirectory().create_contact(
        given_name="Jane", family_name="Doe", phone_number="+15551234567"
    )

    assert native_id == "native-9"
    contact.setGivenName_.assert_called_once_with("Jane")
    contact.setFamilyName_.assert_called_once_with("Doe")
    contact.setEmailAddresses_.assert_not_called()
