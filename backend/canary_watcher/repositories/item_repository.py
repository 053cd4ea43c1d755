"""
Item Repository - discovered URLs

(source_id, url) is unique; insert_if_absent relies on the constraint rather
than a pre-read so concurrent discovery passes cannot double-insert.
"""
import logging
from typing import Optional, List

import asyncpg

from canary_watcher.models import Item, ItemStatus, CandidateItem

logger = logging.getLogger(__name__)


def _row_to_item(row) -> Item:
    return Item(
        id=str(row['id']),
        source_id=str(row['source_id']),
        url=row['url'],
        url_hash=row['url_hash'],
        title=row['title'],
        run_id=str(row['run_id']) if row['run_id'] else None,
        published_at=row['published_at'],
        status=row['status'],
        acquisition_attempt_count=row['acquisition_attempt_count'],
        acquisition_error=row['acquisition_error'],
        discovered_at=row['discovered_at'],
    )


class ItemRepository:

    def __init__(self, db_pool: asyncpg.Pool):
        self.db_pool = db_pool

    async def insert_if_absent(
        self,
        source_id: str,
        candidate: CandidateItem,
        run_id: Optional[str] = None
    ) -> Optional[str]:
        """
        Insert a discovered item unless (source_id, url) already exists

        Returns:
            New item id, or None when the URL was already known
        """
        async with self.db_pool.acquire() as conn:
            item_id = await conn.fetchval("""
                INSERT INTO items (source_id, run_id, url, url_hash, title, published_at)
                VALUES ($1, $2, $3, $4, $5, $6)
                ON CONFLICT (source_id, url) DO NOTHING
                RETURNING id
            """, source_id, run_id, candidate.url, candidate.url_hash,
                candidate.title, candidate.published_at)
            return str(item_id) if item_id else None

    async def get_by_id(self, item_id: str) -> Optional[Item]:
        async with self.db_pool.acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM items WHERE id = $1", item_id)
            return _row_to_item(row) if row else None

    async def get_by_url(self, source_id: str, url: str) -> Optional[Item]:
        async with self.db_pool.acquire() as conn:
            row = await conn.fetchrow(
                "SELECT * FROM items WHERE source_id = $1 AND url = $2", source_id, url
            )
            return _row_to_item(row) if row else None

    async def list_pending(self, limit: int = 50) -> List[Item]:
        async with self.db_pool.acquire() as conn:
            rows = await conn.fetch("""
                SELECT * FROM items
                WHERE status = 'pending'
                ORDER BY discovered_at, id
                LIMIT $1
            """, limit)
            return [_row_to_item(r) for r in rows]

    async def set_status(self, item_id: str, status: str, error: Optional[str] = None) -> None:
        async with self.db_pool.acquire() as conn:
            await conn.execute("""
                UPDATE items
                SET status = $2, acquisition_error = COALESCE($3, acquisition_error)
                WHERE id = $1
            """, item_id, status, error)

    async def record_attempt(self, item_id: str, error: Optional[str] = None) -> None:
        """Count an acquisition attempt; error None clears the last error"""
        async with self.db_pool.acquire() as conn:
            await conn.execute("""
                UPDATE items
                SET acquisition_attempt_count = acquisition_attempt_count + 1,
                    acquisition_error = $2
                WHERE id = $1
            """, item_id, error)

    async def mark_acquired(self, item_id: str) -> None:
        await self.set_status(item_id, ItemStatus.ACQUIRED)

    async def mark_processed(self, item_id: str) -> None:
        await self.set_status(item_id, ItemStatus.PROCESSED)

    async def mark_failed(self, item_id: str, error: str) -> None:
        await self.set_status(item_id, ItemStatus.FAILED, error)
