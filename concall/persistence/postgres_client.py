from __future__ import annotations

import logging

from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool

logger = logging.getLogger(__name__)

SCHEMA_STATEMENTS: tuple[str, ...] = (
    """
    create table if not exists guidances (
        id uuid primary key,
        name text not null,
        date text not null,
        guidance text not null,
        created_at timestamptz not null default now()
    )
    """,
    "create index if not exists guidances_name_idx on guidances (name)",
    "create index if not exists guidances_date_idx on guidances (date desc)",
    """
    create table if not exists analytics_counters (
        name text primary key,
        value bigint not null default 0
    )
    """,
)


async def open_pool(database_url: str, *, min_size: int = 1, max_size: int = 10) -> AsyncConnectionPool:
    """
    Open the process-wide connection pool (autocommit, dict rows).

    Closed by the app lifespan on shutdown.
    """
    pool = AsyncConnectionPool(
        conninfo=database_url,
        min_size=min_size,
        max_size=max_size,
        open=False,
        kwargs={"autocommit": True, "row_factory": dict_row},
    )
    await pool.open(wait=True)
    logger.info("postgres.pool_opened min_size=%d max_size=%d", min_size, max_size)
    return pool


async def ensure_schema(pool: AsyncConnectionPool) -> None:
    async with pool.connection() as conn:
        async with conn.transaction():
            for stmt in SCHEMA_STATEMENTS:
                await conn.execute(stmt)
