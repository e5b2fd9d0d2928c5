from __future__ import annotations

import psycopg
from psycopg_pool import AsyncConnectionPool

from concall.common.errors import PersistenceError

TOTAL_VISITS = "total_visits"


class AnalyticsStore:
    """Named counters; increment is a single atomic upsert returning the new value."""

    def __init__(self, pool: AsyncConnectionPool) -> None:
        self._pool = pool

    async def increment(self, name: str = TOTAL_VISITS) -> int:
        try:
            async with self._pool.connection() as conn:
                cur = await conn.execute(
                    """
                    insert into analytics_counters (name, value) values (%s, 1)
                    on conflict (name) do update set value = analytics_counters.value + 1
                    returning value
                    """,
                    (name,),
                )
                row = await cur.fetchone()
        except psycopg.Error as e:
            raise PersistenceError(f"failed to increment {name}: {e}") from e
        return int(row["value"]) if row else 0

    async def get(self, name: str = TOTAL_VISITS) -> int:
        try:
            async with self._pool.connection() as conn:
                cur = await conn.execute("select value from analytics_counters where name = %s", (name,))
                row = await cur.fetchone()
        except psycopg.Error as e:
            raise PersistenceError(f"failed to get {name}: {e}") from e
        return int(row["value"]) if row else 0
