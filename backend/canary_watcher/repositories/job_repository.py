"""
Job Repository - PostgreSQL storage behind the job queue

Every status change is a compare-and-swap on the current status, so two
workers can never move the same job. Claiming is one UPDATE over a
FOR UPDATE SKIP LOCKED subselect.
"""
import logging
from datetime import datetime
from typing import Optional, List, Tuple

import asyncpg

from canary_watcher.models import Job, JobType, JobStatus

logger = logging.getLogger(__name__)


def _row_to_job(row) -> Job:
    return Job(
        id=str(row['id']),
        type=JobType(row['type']),
        status=JobStatus(row['status']),
        run_id=str(row['run_id']) if row['run_id'] else None,
        payload=row['payload'] or {},
        priority=row['priority'],
        dedupe_key=row['dedupe_key'],
        attempts=row['attempts'],
        max_attempts=row['max_attempts'],
        available_at=row['available_at'],
        locked_at=row['locked_at'],
        locked_by=row['locked_by'],
        last_error=row['last_error'],
        created_at=row['created_at'],
        updated_at=row['updated_at'],
    )


def _sort_oldest_first(jobs: List[Job]) -> List[Job]:
    # RETURNING does not preserve the subselect order
    return sorted(jobs, key=lambda j: (j.created_at, j.id))


class JobRepository:

    def __init__(self, db_pool: asyncpg.Pool):
        self.db_pool = db_pool

    async def insert(
        self,
        job_type: JobType,
        payload: dict,
        run_id: Optional[str],
        priority: int,
        max_attempts: int,
        dedupe_key: Optional[str] = None
    ) -> Tuple[str, bool]:
        """
        Insert a pending job

        With a dedupe key the insert is a no-op when (run_id, type, dedupe_key)
        already exists, and the existing job id is returned.
        Jobs without a run dedupe against each other.

        Returns:
            (job_id, created)
        """
        async with self.db_pool.acquire() as conn:
            job_id = await conn.fetchval("""
                INSERT INTO jobs (run_id, type, status, priority, payload, dedupe_key, max_attempts)
                VALUES ($1, $2, 'pending', $3, $4, $5, $6)
                ON CONFLICT ((COALESCE(run_id, '00000000-0000-0000-0000-000000000000'::uuid)), type, dedupe_key)
                    WHERE dedupe_key IS NOT NULL DO NOTHING
                RETURNING id
            """, run_id, job_type.value, priority, payload, dedupe_key, max_attempts)
            if job_id:
                return str(job_id), True

            existing = await conn.fetchval("""
                SELECT id FROM jobs
                WHERE run_id IS NOT DISTINCT FROM $1 AND type = $2 AND dedupe_key = $3
            """, run_id, job_type.value, dedupe_key)
            return str(existing), False

    async def get(self, job_id: str) -> Optional[Job]:
        async with self.db_pool.acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM jobs WHERE id = $1", job_id)
            return _row_to_job(row) if row else None

    async def find_open(self, job_type: JobType, dedupe_key: str) -> Optional[Job]:
        """Any not-yet-finished job with this key, whatever run it belongs to"""
        async with self.db_pool.acquire() as conn:
            row = await conn.fetchrow("""
                SELECT * FROM jobs
                WHERE type = $1 AND dedupe_key = $2
                  AND status IN ('pending', 'running', 'retry')
                ORDER BY created_at
                LIMIT 1
            """, job_type.value, dedupe_key)
            return _row_to_job(row) if row else None

    async def claim(self, job_type: Optional[JobType], limit: int, worker_id: str) -> List[Job]:
        """
        Atomically mark up to `limit` due pending/retry jobs as running

        Typed claims are oldest-created-first; untyped claims honour priority first.
        """
        async with self.db_pool.acquire() as conn:
            if job_type is not None:
                rows = await conn.fetch("""
                    UPDATE jobs
                    SET status = 'running', locked_at = NOW(), locked_by = $3, updated_at = NOW()
                    WHERE id IN (
                        SELECT id FROM jobs
                        WHERE type = $1
                          AND status IN ('pending', 'retry')
                          AND available_at <= NOW()
                        ORDER BY created_at, id
                        LIMIT $2
                        FOR UPDATE SKIP LOCKED
                    )
                    RETURNING *
                """, job_type.value, limit, worker_id)
                return _sort_oldest_first([_row_to_job(r) for r in rows])

            rows = await conn.fetch("""
                UPDATE jobs
                SET status = 'running', locked_at = NOW(), locked_by = $2, updated_at = NOW()
                WHERE id IN (
                    SELECT id FROM jobs
                    WHERE status IN ('pending', 'retry')
                      AND available_at <= NOW()
                    ORDER BY priority, created_at, id
                    LIMIT $1
                    FOR UPDATE SKIP LOCKED
                )
                RETURNING *
            """, limit, worker_id)
            jobs = [_row_to_job(r) for r in rows]
            return sorted(jobs, key=lambda j: (j.priority, j.created_at, j.id))

    async def compare_and_set(
        self,
        job_id: str,
        expected: JobStatus,
        status: JobStatus,
        attempts: int,
        available_at: Optional[datetime] = None,
        last_error: Optional[str] = None,
        locked_by: Optional[str] = None
    ) -> Optional[Job]:
        """
        Move a job from `expected` to `status`

        Returns:
            The updated job, or None if the job was no longer in `expected`
        """
        async with self.db_pool.acquire() as conn:
            row = await conn.fetchrow("""
                UPDATE jobs
                SET status = $3,
                    attempts = $4,
                    available_at = COALESCE($5, available_at),
                    last_error = COALESCE($6, last_error),
                    locked_at = CASE WHEN $3 = 'running' THEN NOW() ELSE NULL END,
                    locked_by = CASE WHEN $3 = 'running' THEN $7 ELSE NULL END,
                    updated_at = NOW()
                WHERE id = $1 AND status = $2
                RETURNING *
            """, job_id, expected.value, status.value, attempts, available_at, last_error, locked_by)
            return _row_to_job(row) if row else None

    async def release_stale(self, cutoff: datetime) -> int:
        """
        Return running jobs locked before `cutoff` to retry, due immediately

        Returns:
            Number of jobs released
        """
        async with self.db_pool.acquire() as conn:
            result = await conn.execute("""
                UPDATE jobs
                SET status = 'retry', locked_at = NULL, locked_by = NULL,
                    available_at = NOW(), updated_at = NOW(),
                    last_error = COALESCE(last_error, 'lock expired')
                WHERE status = 'running' AND locked_at < $1
            """, cutoff)
            # Parse "UPDATE N" result
            return int(result.split()[-1]) if result else 0

    async def counts(self) -> List[dict]:
        async with self.db_pool.acquire() as conn:
            rows = await conn.fetch("""
                SELECT type, status, COUNT(*) AS count
                FROM jobs
                GROUP BY type, status
                ORDER BY type, status
            """)
            return [dict(r) for r in rows]

    async def count_ready(self) -> int:
        async with self.db_pool.acquire() as conn:
            return await conn.fetchval("""
                SELECT COUNT(*) FROM jobs
                WHERE status IN ('pending', 'retry') AND available_at <= NOW()
            """)

    async def list_jobs(
        self,
        status: Optional[JobStatus] = None,
        job_type: Optional[JobType] = None,
        limit: int = 50
    ) -> List[Job]:
        async with self.db_pool.acquire() as conn:
            rows = await conn.fetch("""
                SELECT * FROM jobs
                WHERE ($1::text IS NULL OR status = $1)
                  AND ($2::text IS NULL OR type = $2)
                ORDER BY updated_at DESC
                LIMIT $3
            """, status.value if status else None, job_type.value if job_type else None, limit)
            return [_row_to_job(r) for r in rows]
