# rolodex/db/pool.py
"""
Connection pool for the Postgres contact store.

The API process and the directory sync worker each open one pool at startup
and close it on shutdown. Connections are autocommit with dict rows, pinned to
UTC so `created_at` ordering is stable across sessions.
"""

import asyncio
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import psycopg
from psycopg import sql
from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool

from rolodex.config import settings
from rolodex.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

STATEMENT_TIMEOUT = "60s"
CLOSE_TIMEOUT_SECONDS = 30.0
SATURATED_PERCENT = 90


class ContactStorePool:
    """Lifecycle and borrowing of contact store connections."""

    def __init__(self, conninfo: str | None = None):
        self.conninfo = conninfo or settings.SUPABASE_DB_URL
        self.pool: AsyncConnectionPool | None = None
        self._open = False
        self._closed = False

    @property
    def is_open(self) -> bool:
        return self._open and not self._closed

    async def initialize(self) -> None:
        """Open the pool and verify one round trip before serving traffic."""
        if self._open:
            logger.warning("Contact store pool already open")
            return
        if self._closed:
            raise RuntimeError("Contact store pool was closed and cannot be reopened")

        options = {
            **settings.get_db_pool_config(),
            "check": AsyncConnectionPool.check_connection,
            "configure": self._prepare_session,
        }
        self.pool = AsyncConnectionPool(conninfo=self.conninfo, open=False, **options)

        try:
            await self.pool.open()
            await self.pool.wait()
            self._open = True
            await self._round_trip()
        except Exception as e:
            logger.error("Contact store pool failed to open", error=str(e))
            self._open = False
            await self._discard_pool()
            raise RuntimeError(f"Contact store pool failed to open: {e}") from e

        logger.info(
            "Contact store pool open",
            min_size=options["min_size"],
            max_size=options["max_size"],
            timeout=options["timeout"],
            environment=settings.environment,
        )

    async def _discard_pool(self) -> None:
        if self.pool is None:
            return
        try:
            await self.pool.close()
        except Exception as close_error:
            logger.warning("Could not close half-open pool", error=str(close_error))
        self.pool = None

    async def _prepare_session(self, conn: psycopg.AsyncConnection) -> None:
        conn.row_factory = dict_row
        # transaction() opts back in; idle connections never sit INTRANS
        await conn.set_autocommit(True)
        # SET takes no bind parameters
        await conn.execute(
            sql.SQL("SET application_name = {}").format(
                sql.Literal(f"rolodex-{settings.environment}")
            )
        )
        await conn.execute("SET timezone = 'UTC'")
        await conn.execute(
            sql.SQL("SET statement_timeout = {}").format(sql.Literal(STATEMENT_TIMEOUT))
        )

    async def _round_trip(self) -> float:
        """Run SELECT 1 and return the latency in milliseconds."""
        started = time.time()
        async with self.connection() as conn:
            async with conn.cursor() as cur:
                await cur.execute("SELECT 1 AS ok")
                row = await cur.fetchone()
        if not row or row["ok"] != 1:
            raise RuntimeError("Contact store returned an unexpected SELECT 1 result")
        return (time.time() - started) * 1000

    async def close(self) -> None:
        if not self._open or self._closed:
            return

        logger.info("Closing contact store pool")
        self._open = False
        self._closed = True
        try:
            await asyncio.wait_for(self.pool.close(), timeout=CLOSE_TIMEOUT_SECONDS)
        except TimeoutError:
            logger.warning("Contact store pool close timed out")
        except Exception as e:
            logger.error("Error closing contact store pool", error=str(e))

    @asynccontextmanager
    async def connection(self) -> AsyncIterator[psycopg.AsyncConnection]:
        """Borrow an autocommit connection for the duration of the block."""
        if not self.is_open:
            raise RuntimeError("Contact store pool is not open")

        async with self.pool.connection() as conn:
            yield conn

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[psycopg.AsyncConnection]:
        """
        Borrow a connection inside one transaction.

        Commits when the block exits cleanly and rolls back when it raises:

            async with db_pool.transaction() as conn:
                await fetch_one(query, params, connection=conn)
        """
        async with self.connection() as conn:
            async with conn.transaction():
                yield conn

    async def health_check(self) -> dict[str, Any]:
        """Round-trip latency and utilization of the pool."""
        if not self.is_open:
            return {"healthy": False, "service": "database_pool", "error": "Pool not open"}

        try:
            latency_ms = await self._round_trip()
        except Exception as e:
            logger.error("Contact store health check failed", error=str(e))
            return {
                "healthy": False,
                "service": "database_pool",
                "error": str(e),
                "error_type": type(e).__name__,
            }

        stats = self.pool.get_stats()
        size = stats.get("pool_size", 0)
        in_use = size - stats.get("pool_available", 0)
        utilization = in_use / size * 100 if size else 0
        waiting = stats.get("requests_waiting", 0)

        health = {
            "healthy": utilization < SATURATED_PERCENT,
            "service": "database_pool",
            "connection_time_ms": round(latency_ms, 2),
            "pool_stats": {
                "pool_size": size,
                "connections_in_use": in_use,
                "pool_utilization_percent": round(utilization, 2),
                "requests_waiting": waiting,
            },
        }
        if waiting:
            health["warnings"] = [f"Requests waiting for connections: {waiting}"]
        return health


# One per process; opened by the app lifespan or the worker
db_pool = ContactStorePool()


async def db_health_check() -> dict[str, Any]:
    return await db_pool.health_check()
