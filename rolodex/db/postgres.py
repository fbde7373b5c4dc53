"""
Database readiness check used by the /readyz endpoint.
"""

from rolodex.db.helpers import fetch_val
from rolodex.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


async def check_db():
    """
    Returns True if SELECT 1 succeeds, otherwise the error string.
    """
    try:
        value = await fetch_val("SELECT 1")

        if value == 1:
            return True
        return "Unexpected result from database check"

    except Exception as e:
        logger.error("Database health check failed", error=str(e))
        return str(e)
