"""
Contact API response models.
"""

from pydantic import BaseModel, Field

from rolodex.models.contact import Contact, Label


class SideEffectResponse(BaseModel):
    name: str = Field(..., description="Best-effort step, e.g. 'assign_label:Engineering'")
    ok: bool
    error: str | None = None


class IngestContactResponse(BaseModel):
    contact: Contact
    side_effects: list[SideEffectResponse] = Field(default_factory=list)


class ContactListResponse(BaseModel):
    contacts: list[Contact]
    count: int


class LabelListResponse(BaseModel):
    labels: list[Label]
