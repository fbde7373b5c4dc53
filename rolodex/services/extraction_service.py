"""
Contact extraction service.

Turns a free-text note about a person into structured contact fields using
the language model, with a deterministic regex fallback when the reply
cannot be used.
"""

import json
import re

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from rolodex.config import settings
from rolodex.infrastructure.observability.logging import get_logger
from rolodex.models.domain.contact_domain import ExtractionResult
from rolodex.services.openai_service import OpenAIService, OpenAIServiceError

logger = get_logger(__name__)

EXTRACTION_PROMPT = """Extract contact information from the following text. Return a JSON object with these fields if found:
- name (full name)
- phoneNumber (in E.164 format if possible)
- email
- description (any additional context or notes about the person)

Text: {text}

JSON response:"""

# International form first so a leading +CC is kept with the number
PHONE_PATTERN = re.compile(
    r"(?<![\w+])(\+\d{1,3}[-.\s]?\d{3}[-.\s]?\d{3}[-.\s]?\d{4}|\d{3}[-.\s]?\d{3}[-.\s]?\d{4})\b"
)
EMAIL_PATTERN = re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b")


class ExtractionRequestError(Exception):
    """Raised when the extraction request fails and local fallback is disabled."""

    def __init__(self, message: str, api_error: str | None = None):
        super().__init__(message)
        self.api_error = api_error


class _ExtractedContactPayload(BaseModel):
    """Shape of the model's JSON reply. Unknown keys are ignored."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    name: str | None = None
    phone_number: str | None = Field(None, alias="phoneNumber")
    email: str | None = None
    description: str | None = None

    @field_validator("name", "phone_number", "email", "description")
    @classmethod
    def _blank_to_none(cls, value: str | None) -> str | None:
        if value is None:
            return None
        value = value.strip()
        return value or None


def extract_name_from_text(text: str) -> str | None:
    """First two whitespace-delimited tokens, or the only token."""
    words = text.split()
    if len(words) >= 2:
        return f"{words[0]} {words[1]}"
    if words:
        return words[0]
    return None


def extract_phone_from_text(text: str) -> str | None:
    match = PHONE_PATTERN.search(text)
    return match.group(1) if match else None


def extract_email_from_text(text: str) -> str | None:
    match = EMAIL_PATTERN.search(text)
    return match.group(0) if match else None


def fallback_extraction(text: str) -> ExtractionResult:
    """Heuristic extraction used when the model reply is unusable."""
    return ExtractionResult(
        name=extract_name_from_text(text),
        phone_number=extract_phone_from_text(text),
        email=extract_email_from_text(text),
        description=text,
        source="fallback",
    )


def parse_extraction_reply(raw_reply: str) -> ExtractionResult:
    """
    Strictly parse the model reply.

    Raises:
        ValueError: If the reply is not a JSON object of optional string fields
    """
    try:
        payload = json.loads(raw_reply)
    except json.JSONDecodeError as e:
        raise ValueError(f"Reply is not valid JSON: {e}") from e

    if not isinstance(payload, dict):
        raise ValueError(f"Reply is JSON {type(payload).__name__}, expected an object")

    try:
        parsed = _ExtractedContactPayload.model_validate(payload)
    except ValidationError as e:
        raise ValueError(f"Reply has unexpected field types: {e}") from e

    return ExtractionResult(
        name=parsed.name,
        phone_number=parsed.phone_number,
        email=parsed.email,
        description=parsed.description,
        source="model",
    )


class ExtractionService:
    """Extracts structured contact fields from free text."""

    def __init__(
        self,
        openai_service: OpenAIService,
        *,
        fallback_on_request_error: bool | None = None,
    ):
        self.openai_service = openai_service
        self.fallback_on_request_error = (
            settings.EXTRACTION_FALLBACK_ON_REQUEST_ERROR
            if fallback_on_request_error is None
            else fallback_on_request_error
        )

    async def extract(self, text: str) -> ExtractionResult:
        """
        Extract {name, phone, email, description} from text.

        A reply that arrives but cannot be parsed always falls back to the
        local heuristics. A failed request falls back too unless
        fallback_on_request_error is disabled, in which case it raises.

        Raises:
            ExtractionRequestError: Request failed and fallback is disabled
        """
        try:
            reply = await self.openai_service.complete(EXTRACTION_PROMPT.format(text=text))
        except OpenAIServiceError as e:
            if not self.fallback_on_request_error:
                logger.error("Extraction request failed", error=str(e), api_error=e.api_error)
                raise ExtractionRequestError(
                    "Extraction request failed", api_error=e.api_error
                ) from e

            logger.warning(
                "Extraction request failed, using local fallback",
                error=str(e),
                api_error=e.api_error,
            )
            return fallback_extraction(text)

        try:
            result = parse_extraction_reply(reply)
        except ValueError as e:
            logger.warning(
                "Extraction reply unparseable, using local fallback",
                error=str(e),
                raw_reply=reply[:200],
            )
            return fallback_extraction(text)

        logger.info(
            "Contact fields extracted",
            has_name=result.name is not None,
            has_phone=result.phone_number is not None,
            has_email=result.email is not None,
            has_description=result.description is not None,
        )
        return result
