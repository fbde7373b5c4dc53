"""
macOS Contacts directory via pyobjc (Contacts.framework).

Requires macOS and the `macos` extra (pyobjc-framework-Contacts). The
framework calls block, so they run in a worker thread.
"""

import asyncio
import importlib

from rolodex.infrastructure.observability.logging import get_logger
from rolodex.services.directory.base import (
    ContactDirectory,
    DirectoryAuthorization,
    DirectoryEntry,
    DirectoryError,
)

logger = get_logger(__name__)

# CNAuthorizationStatus values; 4 (limited) is treated as authorized
_STATUS_MAP = {
    0: DirectoryAuthorization.NOT_DETERMINED,
    1: DirectoryAuthorization.RESTRICTED,
    2: DirectoryAuthorization.DENIED,
    3: DirectoryAuthorization.AUTHORIZED,
    4: DirectoryAuthorization.AUTHORIZED,
}


def _load_contacts_framework():
    try:
        return importlib.import_module("Contacts")
    except ImportError as e:
        raise DirectoryError(
            "macOS Contacts requires pyobjc-framework-Contacts. "
            "Install with: pip install 'rolodex[macos]'"
        ) from e


class MacOSContactDirectory(ContactDirectory):
    """Reads and writes the user's macOS address book."""

    def __init__(self):
        self._cn = _load_contacts_framework()
        self._store = self._cn.CNContactStore.alloc().init()

    @property
    def name(self) -> str:
        return "macos_contacts"

    def authorization_status(self) -> DirectoryAuthorization:
        raw = self._cn.CNContactStore.authorizationStatusForEntityType_(
            self._cn.CNEntityTypeContacts
        )
        return _STATUS_MAP.get(int(raw), DirectoryAuthorization.RESTRICTED)

    async def request_access(self) -> bool:
        loop = asyncio.get_running_loop()
        future: asyncio.Future[bool] = loop.create_future()

        def _completion(granted, error):
            if error is not None:
                logger.warning("Contacts access request returned error", error=str(error))
            loop.call_soon_threadsafe(future.set_result, bool(granted))

        self._store.requestAccessForEntityType_completionHandler_(
            self._cn.CNEntityTypeContacts, _completion
        )
        return await future

    async def fetch_entries(self) -> list[DirectoryEntry]:
        return await asyncio.to_thread(self._fetch_entries_sync)

    def _fetch_entries_sync(self) -> list[DirectoryEntry]:
        cn = self._cn
        keys_to_fetch = [
            cn.CNContactGivenNameKey,
            cn.CNContactFamilyNameKey,
            cn.CNContactPhoneNumbersKey,
            cn.CNContactEmailAddressesKey,
            cn.CNContactIdentifierKey,
        ]
        request = cn.CNContactFetchRequest.alloc().initWithKeysToFetch_(keys_to_fetch)
        entries: list[DirectoryEntry] = []

        def _handle_contact(contact, stop):
            phones = [
                str(value.value().stringValue())
                for value in contact.phoneNumbers()
                if value.value().stringValue()
            ]
            emails = [str(value.value()) for value in contact.emailAddresses() if value.value()]
            entries.append(
                DirectoryEntry(
                    identifier=str(contact.identifier()),
                    given_name=str(contact.givenName() or ""),
                    family_name=str(contact.familyName() or ""),
                    phone_numbers=phones,
                    email_addresses=emails,
                )
            )

        success, error = self._store.enumerateContactsWithFetchRequest_error_usingBlock_(
            request, None, _handle_contact
        )
        if not success:
            raise DirectoryError(f"Failed to enumerate contacts: {error or 'unknown error'}")

        logger.info("Fetched directory entries", directory=self.name, count=len(entries))
        return entries

    async def create_contact(
        self,
        *,
        given_name: str,
        family_name: str,
        phone_number: str,
        email: str | None = None,
    ) -> str | None:
        return await asyncio.to_thread(
            self._create_contact_sync, given_name, family_name, phone_number, email
        )

    def _create_contact_sync(
        self, given_name: str, family_name: str, phone_number: str, email: str | None
    ) -> str | None:
        cn = self._cn
        contact = cn.CNMutableContact.alloc().init()
        contact.setGivenName_(given_name)
        if family_name:
            contact.setFamilyName_(family_name)

        phone_value = cn.CNPhoneNumber.phoneNumberWithStringValue_(phone_number)
        contact.setPhoneNumbers_(
            [cn.CNLabeledValue.labeledValueWithLabel_value_(cn.CNLabelPhoneNumberMain, phone_value)]
        )
        if email:
            contact.setEmailAddresses_(
                [cn.CNLabeledValue.labeledValueWithLabel_value_(cn.CNLabelWork, email)]
            )

        save_request = cn.CNSaveRequest.alloc().init()
        save_request.addContact_toContainerWithIdentifier_(contact, None)

        success, error = self._store.executeSaveRequest_error_(save_request, None)
        if not success:
            raise DirectoryError(f"Failed to save contact: {error or 'unknown error'}")

        return str(contact.identifier())
