"""
Contact models for the contact store.
Pydantic models that match the database schema for contact-related data.
"""

from datetime import datetime
from typing import Annotated
from uuid import UUID

from pydantic import BaseModel, BeforeValidator, Field


def _coerce_id(value):
    # psycopg returns uuid columns as UUID; json_agg payloads carry them as strings
    return str(value) if isinstance(value, UUID) else value


StoreId = Annotated[str, BeforeValidator(_coerce_id)]


class Label(BaseModel):
    """A user-owned label used to organise contacts."""

    id: StoreId = Field(..., description="Label UUID")
    user_id: StoreId = Field(..., description="Owning user UUID")
    name: str = Field(..., description="Display name, unique per owner")
    created_at: datetime = Field(..., description="When the label was created")
    updated_at: datetime = Field(..., description="When the label was last updated")


class Contact(BaseModel):
    """A stored contact with its assigned labels."""

    id: StoreId = Field(..., description="Contact UUID")
    user_id: StoreId = Field(..., description="Owning user UUID")
    name: str | None = Field(None, description="Contact's display name")
    phone_number: str | None = Field(None, description="Free-form phone number")
    email: str | None = Field(None, description="Contact's email address")
    system_contact_id: str | None = Field(
        None, description="Native identifier in the external contact directory"
    )
    text_description: str | None = Field(None, description="Free-text notes about the person")
    created_at: datetime = Field(..., description="When the contact was created")
    updated_at: datetime = Field(..., description="When the contact was last updated")
    labels: list[Label] = Field(default_factory=list, description="Assigned labels")


class ContactLabel(BaseModel):
    """Association row between a contact and a label."""

    id: StoreId = Field(..., description="Association UUID")
    contact_id: StoreId = Field(..., description="Contact UUID")
    label_id: StoreId = Field(..., description="Label UUID")
    created_at: datetime = Field(..., description="When the label was assigned")


class UserPreferences(BaseModel):
    """Per-user preference flags."""

    id: StoreId = Field(..., description="Preferences row UUID")
    user_id: StoreId = Field(..., description="Owning user UUID")
    has_completed_onboarding: bool | None = Field(None, description="Onboarding finished")
    has_synced_contacts: bool | None = Field(
        None, description="Directory sync has completed at least once"
    )
    created_at: datetime = Field(..., description="When the row was created")
    updated_at: datetime = Field(..., description="When the row was last updated")


class NewContact(BaseModel):
    """Field map for a contact insert. Optional fields are only written when set."""

    user_id: str
    name: str
    text_description: str | None = None
    phone_number: str | None = None
    email: str | None = None
    system_contact_id: str | None = None
