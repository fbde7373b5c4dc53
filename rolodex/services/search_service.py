"""
Natural-language contact search.

Phase 1 asks the store for a direct substring match. When that finds
nothing (or fails), phase 2 scores every contact locally:

    +3.0  name contains the full query
    +1.0  per query token found in the description
    +2.0  per label whose name contains the full query

Zero-score contacts are dropped; the rest are ordered by score with ties
kept in fetch order.
"""

from rolodex.db.helpers import DatabaseError
from rolodex.infrastructure.observability.logging import get_logger
from rolodex.models.contact import Contact
from rolodex.repositories.contact_repository import ContactRepository

logger = get_logger(__name__)

NAME_MATCH_WEIGHT = 3.0
DESCRIPTION_TOKEN_WEIGHT = 1.0
LABEL_MATCH_WEIGHT = 2.0


def score_contact(contact: Contact, query: str) -> float:
    """Deterministic relevance of a contact for query."""
    needle = query.lower()
    score = 0.0

    if contact.name and needle in contact.name.lower():
        score += NAME_MATCH_WEIGHT

    if contact.text_description:
        description = contact.text_description.lower()
        for token in needle.split():
            if token in description:
                score += DESCRIPTION_TOKEN_WEIGHT

    for label in contact.labels:
        if needle in label.name.lower():
            score += LABEL_MATCH_WEIGHT

    return score


def rank_contacts(contacts: list[Contact], query: str) -> list[Contact]:
    scored = [(contact, score_contact(contact, query)) for contact in contacts]
    # sorted() is stable, so equal scores keep fetch order
    ranked = sorted(
        (item for item in scored if item[1] > 0),
        key=lambda item: item[1],
        reverse=True,
    )
    return [contact for contact, _ in ranked]


class SearchService:
    """Two-phase contact search over one owner's contacts."""

    def __init__(self, contact_repository=ContactRepository):
        self.contact_repository = contact_repository

    async def search(self, query: str, user_id: str) -> list[Contact]:
        """
        Contacts matching query, most relevant first.

        Raises:
            DatabaseError: If the phase-2 fetch of all contacts fails
        """
        try:
            direct = await self.contact_repository.search_contacts(user_id, query)
        except DatabaseError as e:
            logger.warning(
                "Direct contact search failed, falling back to local ranking",
                user_id=user_id,
                error=str(e),
            )
            direct = []

        if direct:
            logger.info("Direct contact search matched", user_id=user_id, results=len(direct))
            return direct

        contacts = await self.contact_repository.list_contacts(user_id)
        ranked = rank_contacts(contacts, query)

        logger.info(
            "Local relevance search completed",
            user_id=user_id,
            candidates=len(contacts),
            results=len(ranked),
        )
        return ranked
