"""
Persistence layer for contacts, labels and their associations.

Every query is scoped by owner. Rows are decoded into the pydantic models in
rolodex.models.contact; a row that does not fit raises ContactDecodeError.
"""

import psycopg
from pydantic import BaseModel, ValidationError

from rolodex.db.helpers import DatabaseError, execute_query, fetch_all, fetch_one
from rolodex.db.pool import db_pool
from rolodex.infrastructure.observability.logging import get_logger
from rolodex.models.contact import Contact, ContactLabel, Label, NewContact

logger = get_logger(__name__)

CONTACT_COLUMNS = """
    c.id, c.user_id, c.name, c.phone_number, c.email, c.system_contact_id,
    c.text_description, c.created_at, c.updated_at
"""

# Labels are aggregated per contact so one round-trip returns the full shape
CONTACT_WITH_LABELS_SELECT = f"""
    SELECT {CONTACT_COLUMNS},
        COALESCE(
            json_agg(
                json_build_object(
                    'id', l.id,
                    'user_id', l.user_id,
                    'name', l.name,
                    'created_at', l.created_at,
                    'updated_at', l.updated_at
                )
                ORDER BY l.name COLLATE "C"
            ) FILTER (WHERE l.id IS NOT NULL),
            '[]'::json
        ) AS labels
    FROM contacts c
    LEFT JOIN contact_labels cl ON cl.contact_id = c.id
    LEFT JOIN labels l ON l.id = cl.label_id
"""

LABEL_COLUMNS = "id, user_id, name, created_at, updated_at"


class ContactDecodeError(DatabaseError):
    """Raised when a persisted row cannot be decoded into its model."""


class LabelExistsError(DatabaseError):
    """Raised when the owner already has a label with this name."""


class LabelLinkExistsError(DatabaseError):
    """Raised when the label is already attached to the contact."""


class RecordNotFoundError(DatabaseError):
    """Raised when the contact or label does not exist for this owner."""


class MalformedIdError(DatabaseError):
    """Raised when an id is not a valid UUID."""


def _raise_caller_error(error: DatabaseError, operation: str, detail: str) -> None:
    """Re-raise constraint and input failures as their specific store errors."""
    cause = error.__cause__
    if isinstance(cause, psycopg.errors.UniqueViolation):
        raise LabelLinkExistsError(detail, operation=operation, recoverable=False) from error
    if isinstance(cause, psycopg.errors.ForeignKeyViolation):
        raise RecordNotFoundError(detail, operation=operation, recoverable=False) from error
    if isinstance(cause, psycopg.errors.InvalidTextRepresentation):
        raise MalformedIdError(
            "Contact and label ids must be UUIDs", operation=operation, recoverable=False
        ) from error


def _decode(model: type[BaseModel], row: dict, operation: str):
    try:
        return model.model_validate(row)
    except ValidationError as e:
        logger.error(
            "Failed to decode stored row",
            model=model.__name__,
            row_id=str(row.get("id")),
            error=str(e),
        )
        raise ContactDecodeError(
            f"Stored {model.__name__} row could not be decoded: {e}",
            operation=operation,
            recoverable=False,
        ) from e


def escape_like(value: str) -> str:
    """Escape LIKE wildcards so the value matches as a literal substring."""
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class ContactRepository:
    """Persistence helpers for contacts."""

    @classmethod
    def _row_to_contact(cls, row: dict, operation: str = "decode_contact") -> Contact:
        return _decode(Contact, row, operation)

    @classmethod
    async def list_contacts(cls, user_id: str) -> list[Contact]:
        """All of the owner's contacts with labels, newest first."""

        query = f"""
            {CONTACT_WITH_LABELS_SELECT}
            WHERE c.user_id = %s
            GROUP BY c.id
            ORDER BY c.created_at DESC
        """

        rows = await fetch_all(query, (user_id,))
        return [cls._row_to_contact(row, "list_contacts") for row in rows]

    @classmethod
    async def search_contacts(cls, user_id: str, text: str) -> list[Contact]:
        """Contacts whose name, description, phone or email contains text (case-insensitive)."""

        pattern = f"%{escape_like(text)}%"
        query = f"""
            {CONTACT_WITH_LABELS_SELECT}
            WHERE c.user_id = %s
              AND (
                  c.name ILIKE %s
                  OR c.text_description ILIKE %s
                  OR c.phone_number ILIKE %s
                  OR c.email ILIKE %s
              )
            GROUP BY c.id
            ORDER BY c.created_at DESC
        """

        rows = await fetch_all(query, (user_id, pattern, pattern, pattern, pattern))
        return [cls._row_to_contact(row, "search_contacts") for row in rows]

    @classmethod
    async def create_contact(cls, contact: NewContact) -> Contact:
        """Insert a contact and return the stored row."""

        fields = contact.model_dump(exclude_none=True)
        columns = ", ".join(fields)
        placeholders = ", ".join(["%s"] * len(fields))

        query = f"""
            INSERT INTO contacts ({columns})
            VALUES ({placeholders})
            RETURNING id, user_id, name, phone_number, email, system_contact_id,
                      text_description, created_at, updated_at
        """

        row = await fetch_one(query, tuple(fields.values()))
        if not row:
            raise DatabaseError("Contact insert returned no row", operation="create_contact")

        created = cls._row_to_contact(row, "create_contact")
        logger.info("Contact created", user_id=contact.user_id, contact_id=created.id)
        return created

    @classmethod
    async def create_contact_if_phone_absent(cls, contact: NewContact) -> Contact | None:
        """
        Insert the contact unless the owner already has one with the same phone number.

        The existence check and insert share one transaction holding an advisory
        lock on (owner, phone), so concurrent syncs cannot both insert.

        Returns:
            The new contact, or None when a contact with that phone already exists
        """
        if not contact.phone_number:
            raise ValueError("create_contact_if_phone_absent requires a phone number")

        fields = contact.model_dump(exclude_none=True)
        columns = ", ".join(fields)
        placeholders = ", ".join(["%s"] * len(fields))
        lock_key = f"{contact.user_id}:{contact.phone_number}"

        try:
            async with db_pool.transaction() as conn:
                await execute_query(
                    "SELECT pg_advisory_xact_lock(hashtextextended(%s, 0))",
                    (lock_key,),
                    connection=conn,
                )

                existing = await fetch_one(
                    "SELECT id FROM contacts WHERE user_id = %s AND phone_number = %s LIMIT 1",
                    (contact.user_id, contact.phone_number),
                    connection=conn,
                )
                if existing:
                    return None

                row = await fetch_one(
                    f"""
                    INSERT INTO contacts ({columns})
                    VALUES ({placeholders})
                    RETURNING id, user_id, name, phone_number, email, system_contact_id,
                              text_description, created_at, updated_at
                    """,
                    tuple(fields.values()),
                    connection=conn,
                )
        except psycopg.Error as e:
            logger.error(
                "Conditional contact insert failed",
                user_id=contact.user_id,
                error=str(e),
            )
            raise DatabaseError(
                f"Conditional insert failed: {e}", operation="create_contact_if_phone_absent"
            ) from e

        if not row:
            raise DatabaseError(
                "Contact insert returned no row", operation="create_contact_if_phone_absent"
            )
        return cls._row_to_contact(row, "create_contact_if_phone_absent")

    @classmethod
    async def set_system_contact_id(cls, contact_id: str, system_contact_id: str) -> None:
        """Record the directory's native id on a stored contact."""

        query = """
            UPDATE contacts
            SET system_contact_id = %s,
                updated_at = NOW()
            WHERE id = %s
        """
        await execute_query(query, (system_contact_id, contact_id))


class LabelRepository:
    """Persistence helpers for labels and contact-label associations."""

    @classmethod
    async def list_labels(cls, user_id: str) -> list[Label]:
        """Owner's labels ordered by name (byte-wise, case-sensitive)."""

        query = f"""
            SELECT {LABEL_COLUMNS}
            FROM labels
            WHERE user_id = %s
            ORDER BY name COLLATE "C"
        """

        rows = await fetch_all(query, (user_id,))
        return [_decode(Label, row, "list_labels") for row in rows]

    @classmethod
    async def create_label(cls, user_id: str, name: str) -> Label:
        query = f"""
            INSERT INTO labels (user_id, name)
            VALUES (%s, %s)
            RETURNING {LABEL_COLUMNS}
        """

        try:
            row = await fetch_one(query, (user_id, name))
        except DatabaseError as e:
            if isinstance(e.__cause__, psycopg.errors.UniqueViolation):
                raise LabelExistsError(
                    f"Label '{name}' already exists",
                    operation="create_label",
                    recoverable=False,
                ) from e
            raise

        if not row:
            raise DatabaseError("Label insert returned no row", operation="create_label")

        label = _decode(Label, row, "create_label")
        logger.info("Label created", user_id=user_id, label_id=label.id)
        return label

    @classmethod
    async def assign_label(cls, user_id: str, contact_id: str, label_id: str) -> ContactLabel:
        """
        Attach one of the owner's labels to one of the owner's contacts.

        Raises:
            RecordNotFoundError: Either id is unknown or belongs to another owner
            LabelLinkExistsError: The label is already attached
            MalformedIdError: Either id is not a UUID
        """
        query = """
            INSERT INTO contact_labels (contact_id, label_id)
            SELECT c.id, l.id
            FROM contacts c, labels l
            WHERE c.id = %s AND c.user_id = %s
              AND l.id = %s AND l.user_id = %s
            RETURNING id, contact_id, label_id, created_at
        """

        try:
            row = await fetch_one(query, (contact_id, user_id, label_id, user_id))
        except DatabaseError as e:
            _raise_caller_error(e, "assign_label", "Label is already attached to this contact")
            raise

        if not row:
            raise RecordNotFoundError(
                "Contact or label not found", operation="assign_label", recoverable=False
            )

        link = _decode(ContactLabel, row, "assign_label")
        logger.info("Label assigned", user_id=user_id, contact_id=contact_id, label_id=label_id)
        return link

    @classmethod
    async def remove_label(cls, user_id: str, contact_id: str, label_id: str) -> None:
        """Detach a label from one of the owner's contacts."""
        query = """
            DELETE FROM contact_labels cl
            USING contacts c
            WHERE cl.contact_id = c.id
              AND c.user_id = %s
              AND cl.contact_id = %s
              AND cl.label_id = %s
        """

        try:
            removed = await execute_query(query, (user_id, contact_id, label_id))
        except DatabaseError as e:
            _raise_caller_error(e, "remove_label", "Contact or label not found")
            raise

        if not removed:
            raise RecordNotFoundError(
                "Label is not attached to this contact",
                operation="remove_label",
                recoverable=False,
            )
