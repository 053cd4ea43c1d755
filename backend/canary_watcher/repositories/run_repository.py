"""
Pipeline Run Repository - groups jobs from one triggered execution
"""
import logging
from datetime import datetime
from typing import Optional

import asyncpg

from canary_watcher.models import PipelineRun, RunStatus

logger = logging.getLogger(__name__)


def _row_to_run(row) -> PipelineRun:
    return PipelineRun(
        id=str(row['id']),
        status=RunStatus(row['status']),
        scoring_version=row['scoring_version'],
        started_at=row['started_at'],
        completed_at=row['completed_at'],
        items_discovered=row['items_discovered'],
        items_processed=row['items_processed'],
        items_failed=row['items_failed'],
        error_log=row['error_log'],
    )


class RunRepository:

    def __init__(self, db_pool: asyncpg.Pool):
        self.db_pool = db_pool

    async def create(self, scoring_version: str) -> PipelineRun:
        async with self.db_pool.acquire() as conn:
            row = await conn.fetchrow("""
                INSERT INTO pipeline_runs (status, scoring_version)
                VALUES ('running', $1)
                RETURNING *
            """, scoring_version)
            return _row_to_run(row)

    async def get(self, run_id: str) -> Optional[PipelineRun]:
        async with self.db_pool.acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM pipeline_runs WHERE id = $1", run_id)
            return _row_to_run(row) if row else None

    async def finish(
        self,
        run_id: str,
        status: RunStatus,
        items_discovered: int = 0,
        items_processed: int = 0,
        items_failed: int = 0,
        error_log: Optional[str] = None
    ) -> None:
        async with self.db_pool.acquire() as conn:
            await conn.execute("""
                UPDATE pipeline_runs
                SET status = $2, completed_at = NOW(),
                    items_discovered = items_discovered + $3,
                    items_processed = items_processed + $4,
                    items_failed = items_failed + $5,
                    error_log = COALESCE($6, error_log)
                WHERE id = $1
            """, run_id, status.value, items_discovered, items_processed, items_failed, error_log)

    async def fail_stale(self, started_before: datetime) -> int:
        """Runs still 'running' after a crash are closed as failed"""
        async with self.db_pool.acquire() as conn:
            result = await conn.execute("""
                UPDATE pipeline_runs
                SET status = 'failed', completed_at = NOW(),
                    error_log = COALESCE(error_log, 'stale run')
                WHERE status = 'running' AND started_at < $1
            """, started_before)
            return int(result.split()[-1]) if result else 0
