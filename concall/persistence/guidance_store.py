from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Sequence

import psycopg
from psycopg_pool import AsyncConnectionPool

from concall.common.errors import PersistenceError
from concall.ingest.models import GuidanceRecord

logger = logging.getLogger(__name__)

# Rows that carry no guidance; removed by the cleanup endpoint.
PLACEHOLDER_GUIDANCE: tuple[str, ...] = ("NA", "(no response)")


@dataclass(frozen=True)
class Page:
    rows: list[dict[str, Any]]
    total: int
    page: int
    limit: int

    @property
    def total_pages(self) -> int:
        return (self.total + self.limit - 1) // self.limit if self.limit > 0 else 0


def escape_like(s: str) -> str:
    return s.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class GuidanceStore:
    """
    `guidances` table access.

    Bulk insert is last-write-wins on id; there is no uniqueness on name, so two
    overlapping ingestion runs can both store the same issuer.
    """

    def __init__(self, pool: AsyncConnectionPool) -> None:
        self._pool = pool

    async def existing_names(self, names: Sequence[str]) -> set[str]:
        if not names:
            return set()
        try:
            async with self._pool.connection() as conn:
                cur = await conn.execute(
                    "select distinct name from guidances where name = any(%s)",
                    (list(names),),
                )
                rows = await cur.fetchall()
        except psycopg.Error as e:
            raise PersistenceError(f"existence lookup failed: {e}") from e
        return {r["name"] for r in rows}

    async def insert_many(self, records: Sequence[GuidanceRecord]) -> int:
        if not records:
            return 0
        params = [
            (r.id, r.issuer_name, r.disclosure_date, r.guidance_text, r.created_at)
            for r in records
        ]
        try:
            async with self._pool.connection() as conn:
                async with conn.transaction():
                    async with conn.cursor() as cur:
                        await cur.executemany(
                            """
                            insert into guidances (id, name, date, guidance, created_at)
                            values (%s, %s, %s, %s, %s)
                            on conflict (id) do update set
                                name = excluded.name,
                                date = excluded.date,
                                guidance = excluded.guidance,
                                created_at = excluded.created_at
                            """,
                            params,
                        )
        except psycopg.Error as e:
            raise PersistenceError(f"failed to insert summaries: {e}") from e
        logger.info("guidance_store.inserted count=%d", len(records))
        return len(records)

    async def list_page(self, *, page: int, limit: int) -> Page:
        return await self._select_page(where="", params=(), page=page, limit=limit)

    async def find_by_name(self, query: str, *, page: int, limit: int) -> Page:
        pattern = f"%{escape_like(query)}%"
        return await self._select_page(
            where="where name ilike %s escape '\\'",
            params=(pattern,),
            page=page,
            limit=limit,
        )

    async def delete_placeholders(self) -> int:
        try:
            async with self._pool.connection() as conn:
                cur = await conn.execute(
                    "delete from guidances where guidance = any(%s)",
                    (list(PLACEHOLDER_GUIDANCE),),
                )
                deleted = int(cur.rowcount or 0)
        except psycopg.Error as e:
            raise PersistenceError(f"cleanup failed: {e}") from e
        logger.info("guidance_store.cleanup deleted=%d", deleted)
        return deleted

    async def _select_page(self, *, where: str, params: tuple[Any, ...], page: int, limit: int) -> Page:
        offset = (page - 1) * limit
        try:
            async with self._pool.connection() as conn:
                cur = await conn.execute(f"select count(*) as total from guidances {where}", params)
                total_row = await cur.fetchone()
                cur = await conn.execute(
                    f"""
                    select name, date, guidance
                    from guidances {where}
                    order by date desc, created_at desc
                    offset %s limit %s
                    """,
                    (*params, offset, limit),
                )
                rows = await cur.fetchall()
        except psycopg.Error as e:
            raise PersistenceError(f"failed to query guidances: {e}") from e
        total = int((total_row or {}).get("total") or 0)
        return Page(rows=[dict(r) for r in rows], total=total, page=page, limit=limit)
