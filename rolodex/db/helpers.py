# rolodex/db/helpers.py
"""
Query helpers shared by the contact, label and preference repositories.

Each helper runs one statement either on the caller's connection (inside a
store transaction) or on a connection borrowed from the pool for just that
statement. Driver errors surface as DatabaseError so routes never see psycopg.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import psycopg

from rolodex.db.pool import db_pool
from rolodex.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

# SQLSTATE classes 22 (bad input data) and 23 (constraint violations).
# Retrying these against the store cannot succeed.
CALLER_ERRORS = (psycopg.DataError, psycopg.IntegrityError)


class DatabaseError(Exception):
    """A contact store statement failed."""

    def __init__(self, message: str, operation: str = "unknown", recoverable: bool = True):
        super().__init__(message)
        self.operation = operation
        self.recoverable = recoverable


@asynccontextmanager
async def _borrowed(
    connection: psycopg.AsyncConnection | None, operation: str, query: str
) -> AsyncIterator[psycopg.AsyncConnection]:
    try:
        if connection is not None:
            yield connection
        else:
            async with db_pool.connection() as conn:
                yield conn
    except psycopg.Error as e:
        recoverable = not isinstance(e, CALLER_ERRORS)
        logger.error(
            "Contact store query failed",
            operation=operation,
            query=query[:100],
            sqlstate=e.sqlstate,
            recoverable=recoverable,
            error=str(e),
        )
        raise DatabaseError(
            f"Query failed: {e}", operation=operation, recoverable=recoverable
        ) from e


async def fetch_one(
    query: str, params: tuple = (), *, connection: psycopg.AsyncConnection | None = None
) -> dict[str, Any] | None:
    """
    Run a query and return its first row.

    Args:
        query: SQL with %s placeholders
        params: Query parameters
        connection: Connection of an open transaction, if any

    Returns:
        The row as a dict, or None when the query matched nothing
    """
    async with _borrowed(connection, "fetch_one", query) as conn:
        async with conn.cursor() as cur:
            await cur.execute(query, params)
            return await cur.fetchone() or None


async def fetch_all(
    query: str, params: tuple = (), *, connection: psycopg.AsyncConnection | None = None
) -> list[dict[str, Any]]:
    """Run a query and return every row."""
    async with _borrowed(connection, "fetch_all", query) as conn:
        async with conn.cursor() as cur:
            await cur.execute(query, params)
            return await cur.fetchall()


async def fetch_val(
    query: str, params: tuple = (), *, connection: psycopg.AsyncConnection | None = None
) -> Any:
    """First column of the first row, or None."""
    async with _borrowed(connection, "fetch_val", query) as conn:
        async with conn.cursor() as cur:
            await cur.execute(query, params)
            row = await cur.fetchone()
            return next(iter(row.values())) if row else None


async def execute_query(
    query: str, params: tuple = (), *, connection: psycopg.AsyncConnection | None = None
) -> int:
    """Run a statement and return the affected row count."""
    async with _borrowed(connection, "execute", query) as conn:
        cursor = await conn.execute(query, params)
        return cursor.rowcount
