"""
Label suggestion for contacts.

Asks the model which of the owner's labels fit a description and maps the
answer back onto existing Label entities. New label names proposed by the
model are reported but never created here; creating labels is the caller's
decision.
"""

import json

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from rolodex.infrastructure.observability.logging import get_logger
from rolodex.models.contact import Label
from rolodex.models.domain.contact_domain import LabelSuggestion
from rolodex.services.openai_service import OpenAIService, OpenAIServiceError

logger = get_logger(__name__)

LABEL_PROMPT = """Based on this description of a contact, suggest up to 3 appropriate labels from the existing labels list. If none of the existing labels fit, suggest up to 2 new label names that would be appropriate.

Description: {description}

Existing labels: {label_names}

Return a JSON object with these fields:
- existingLabels: array of label names from the existing list
- newLabels: array of suggested new label names

JSON response:"""


class _LabelSuggestionPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    existing_labels: list[str] = Field(..., alias="existingLabels")
    new_labels: list[str] = Field(default_factory=list, alias="newLabels")


def match_existing_labels(suggested_names: list[str], existing: list[Label]) -> list[Label]:
    """
    Existing labels whose name case-insensitively equals a suggested name.

    Output keeps the order of `existing`, not the order of the suggestions.
    """
    wanted = {name.strip().lower() for name in suggested_names}
    return [label for label in existing if label.name.lower() in wanted]


class LabelMatcher:
    """Best-effort label suggestion backed by the language model."""

    def __init__(self, openai_service: OpenAIService):
        self.openai_service = openai_service

    async def suggest(self, description: str, existing: list[Label]) -> LabelSuggestion | None:
        """
        Raw model suggestion, including names for labels that do not exist yet.

        Returns None when the request fails or the reply is unusable.
        """
        prompt = LABEL_PROMPT.format(
            description=description,
            label_names=", ".join(label.name for label in existing),
        )

        try:
            reply = await self.openai_service.complete(prompt)
        except OpenAIServiceError as e:
            logger.warning("Label suggestion request failed", error=str(e), api_error=e.api_error)
            return None

        try:
            payload = _LabelSuggestionPayload.model_validate(json.loads(reply))
        except (json.JSONDecodeError, ValidationError) as e:
            logger.warning(
                "Label suggestion reply unparseable",
                error=str(e),
                raw_reply=reply[:200],
            )
            return None

        return LabelSuggestion(
            existing_label_names=payload.existing_labels,
            new_label_names=payload.new_labels,
        )

    async def suggest_labels(self, description: str, existing: list[Label]) -> list[Label]:
        """
        Existing labels that fit the description. Never raises; [] on any failure.
        """
        if not existing:
            return []

        suggestion = await self.suggest(description, existing)
        if suggestion is None:
            return []

        matched = match_existing_labels(suggestion.existing_label_names, existing)

        logger.info(
            "Labels suggested",
            suggested=len(suggestion.existing_label_names),
            matched=len(matched),
            new_label_names=suggestion.new_label_names,
        )
        return matched
