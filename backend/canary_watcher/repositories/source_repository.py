"""
Source Repository - PostgreSQL storage for the source registry and fetch logs

Storage strategy:
- sources: registry rows, soft-disabled via is_active
- source_fetch_logs: one row per discovery attempt per source
"""
import logging
from datetime import datetime
from typing import Optional, List, Dict

import asyncpg

from canary_watcher.models import Source

logger = logging.getLogger(__name__)


def _row_to_source(row) -> Source:
    return Source(
        id=str(row['id']),
        name=row['name'],
        url=row['url'],
        tier=row['tier'],
        trust_weight=float(row['trust_weight']),
        cadence=row['cadence'],
        source_type=row['source_type'],
        domain_type=row['domain_type'],
        query_config=row['query_config'] or {},
        is_active=row['is_active'],
        error_count=row['error_count'],
        last_success_at=row['last_success_at'],
        created_at=row['created_at'],
        updated_at=row['updated_at'],
    )


class SourceRepository:
    """
    Repository for Source registry rows
    """

    def __init__(self, db_pool: asyncpg.Pool):
        self.db_pool = db_pool

    async def list_active(self) -> List[Source]:
        async with self.db_pool.acquire() as conn:
            rows = await conn.fetch("""
                SELECT * FROM sources
                WHERE is_active = TRUE
                ORDER BY tier, name
            """)
            return [_row_to_source(r) for r in rows]

    async def list_all(self) -> List[Source]:
        async with self.db_pool.acquire() as conn:
            rows = await conn.fetch("SELECT * FROM sources ORDER BY tier, name")
            return [_row_to_source(r) for r in rows]

    async def get_by_id(self, source_id: str) -> Optional[Source]:
        async with self.db_pool.acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM sources WHERE id = $1", source_id)
            return _row_to_source(row) if row else None

    async def record_success(self, source_id: str, at: datetime) -> None:
        """Any successful fetch resets the rolling error count"""
        async with self.db_pool.acquire() as conn:
            await conn.execute("""
                UPDATE sources
                SET error_count = 0, last_success_at = $2, updated_at = NOW()
                WHERE id = $1
            """, source_id, at)

    async def record_failure(self, source_id: str) -> int:
        """
        Increment error_count

        Returns:
            New error count
        """
        async with self.db_pool.acquire() as conn:
            count = await conn.fetchval("""
                UPDATE sources
                SET error_count = error_count + 1, updated_at = NOW()
                WHERE id = $1
                RETURNING error_count
            """, source_id)
            return count or 0

    async def set_active(self, source_id: str, active: bool) -> None:
        """Soft-disable (or re-enable) a source. Never called by the pipeline itself."""
        async with self.db_pool.acquire() as conn:
            await conn.execute("""
                UPDATE sources SET is_active = $2, updated_at = NOW()
                WHERE id = $1
            """, source_id, active)
            logger.info(f"Source {source_id} is_active={active}")

    async def log_fetch(
        self,
        run_id: Optional[str],
        source_id: str,
        success: bool,
        items_found: int = 0,
        error_message: Optional[str] = None
    ) -> None:
        async with self.db_pool.acquire() as conn:
            await conn.execute("""
                INSERT INTO source_fetch_logs (run_id, source_id, success, items_found, error_message)
                VALUES ($1, $2, $3, $4, $5)
            """, run_id, source_id, success, items_found, error_message)

    async def last_errors(self) -> Dict[str, str]:
        """Most recent failed fetch message per source"""
        async with self.db_pool.acquire() as conn:
            rows = await conn.fetch("""
                SELECT DISTINCT ON (source_id) source_id, error_message
                FROM source_fetch_logs
                WHERE success = FALSE
                ORDER BY source_id, fetched_at DESC
            """)
            return {str(r['source_id']): r['error_message'] for r in rows if r['error_message']}

    async def insert_seed(self, seeds: List[dict]) -> int:
        """
        Insert seed sources whose name is not registered yet

        Returns:
            Number of rows inserted
        """
        inserted = 0
        async with self.db_pool.acquire() as conn:
            for s in seeds:
                result = await conn.execute("""
                    INSERT INTO sources (name, url, tier, trust_weight, cadence,
                                         domain_type, source_type, query_config)
                    VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
                    ON CONFLICT (name) DO NOTHING
                """, s['name'], s['url'], s['tier'], s['trust_weight'], s['cadence'],
                    s['domain_type'], s['source_type'], s.get('query_config') or {})
                inserted += int(result.split()[-1])
        return inserted
