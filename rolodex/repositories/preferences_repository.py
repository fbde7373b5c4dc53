"""
Repository helpers for per-user preference flags.
"""

from rolodex.db.helpers import fetch_one
from rolodex.infrastructure.observability.logging import get_logger
from rolodex.models.contact import UserPreferences

logger = get_logger(__name__)

PREFERENCE_COLUMNS = """
    id, user_id, has_completed_onboarding, has_synced_contacts, created_at, updated_at
"""


class PreferencesRepository:
    """Persistence helpers for user_preferences."""

    @classmethod
    async def set_contacts_synced(cls, user_id: str, synced: bool = True) -> UserPreferences:
        """Upsert the has_synced_contacts flag for the owner."""

        query = f"""
            INSERT INTO user_preferences (user_id, has_synced_contacts)
            VALUES (%s, %s)
            ON CONFLICT (user_id)
            DO UPDATE SET
                has_synced_contacts = EXCLUDED.has_synced_contacts,
                updated_at = NOW()
            RETURNING {PREFERENCE_COLUMNS}
        """

        row = await fetch_one(query, (user_id, synced))
        logger.info("Contacts synced preference updated", user_id=user_id, synced=synced)
        return UserPreferences.model_validate(row)
