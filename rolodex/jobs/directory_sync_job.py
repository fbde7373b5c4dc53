"""
One-shot directory sync job.

Imports the local macOS address book into the contact store for the owner
named by DIRECTORY_SYNC_USER_ID.
"""

from dataclasses import asdict

from rolodex.config import settings
from rolodex.db.pool import db_pool
from rolodex.infrastructure.observability.logging import get_logger
from rolodex.services.directory import ContactDirectory, DirectoryError
from rolodex.services.directory.macos import MacOSContactDirectory
from rolodex.services.directory_sync_service import DirectorySyncService

logger = get_logger(__name__)


def _build_directory() -> ContactDirectory:
    return MacOSContactDirectory()


async def run_directory_sync() -> None:
    user_id = settings.DIRECTORY_SYNC_USER_ID
    if not user_id:
        logger.warning("Directory sync skipped", flag="DIRECTORY_SYNC_USER_ID")
        return

    try:
        directory = _build_directory()
    except DirectoryError as e:
        logger.error("Directory unavailable", error=str(e))
        raise

    await db_pool.initialize()
    try:
        summary = await DirectorySyncService(directory).reconcile(user_id)
    finally:
        await db_pool.close()

    logger.info("Directory sync job complete", user_id=user_id, **asdict(summary))
