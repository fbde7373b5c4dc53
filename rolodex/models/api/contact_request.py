"""
Contact API request models.
Used by routes for input validation.
"""

from pydantic import BaseModel, Field


class IngestContactRequest(BaseModel):
    """Free-text note describing a person."""

    text: str = Field(
        ...,
        min_length=1,
        max_length=5000,
        description="Note about the person, e.g. 'Jane Doe 555-123-4567 met at PyCon'",
    )


class CreateLabelRequest(BaseModel):
    """Request for creating a label."""

    name: str = Field(..., min_length=1, max_length=100, description="Label display name")
