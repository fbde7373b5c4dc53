"""
Request-scoped service wiring for the contact routes.
"""

from fastapi import Request

from rolodex.repositories.contact_repository import ContactRepository, LabelRepository
from rolodex.services.contact_gateway import ContactGateway
from rolodex.services.extraction_service import ExtractionService
from rolodex.services.label_matcher import LabelMatcher
from rolodex.services.openai_service import UnconfiguredOpenAIService


def get_contact_gateway(request: Request) -> ContactGateway:
    """Build a gateway around the model client created in the app lifespan."""
    openai_service = getattr(request.app.state, "openai_service", None)
    if openai_service is None:
        # Extraction falls back locally; ingest answers 503 only with fallback disabled
        openai_service = UnconfiguredOpenAIService()

    return ContactGateway(
        ExtractionService(openai_service),
        LabelMatcher(openai_service),
        contact_repository=ContactRepository,
        label_repository=LabelRepository,
    )
