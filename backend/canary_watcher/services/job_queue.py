"""
Postgres-backed job queue for the pipeline stages

Jobs move through an explicit state machine (see models.job):

    pending → running → {done | retry | failed | dead}
    retry → running (when due) | pending (manual requeue) | dead

Claiming is a single UPDATE over a FOR UPDATE SKIP LOCKED subselect, so each
job is handed to exactly ONE worker. Every other transition is a
compare-and-swap on the job's current status.
"""
import logging
from datetime import datetime, timedelta
from typing import Optional, List, Callable

from canary_watcher.errors import InvalidTransition, InvalidJobPayload
from canary_watcher.models import (
    Job,
    JobType,
    JobStatus,
    PipelineRun,
    RunStatus,
    DEFAULT_PRIORITIES,
    check_transition,
)
from canary_watcher.utils.datetime_utils import utcnow

logger = logging.getLogger(__name__)

MAX_ERROR_LENGTH = 4000


def backoff_seconds(attempts: int, base: int = 60, factor: int = 5, maximum: int = 21600) -> int:
    """
    Exponential backoff with a cap.

    attempts=1 → base, attempts=2 → base*factor, ... never above `maximum`.
    With the defaults: 60s, 300s, 1500s, 7500s, 21600s.
    """
    if attempts < 1:
        return base
    return min(base * factor ** (attempts - 1), maximum)


class JobQueue:
    """
    Durable job queue

    Queues are job types:
    - 'discover'  → one per run, fans out fetch jobs
    - 'fetch'     → acquisition, one per item
    - 'extract'   → AI extraction, one per document
    - 'map'       → signal rows, one per document
    - 'aggregate' → daily snapshot, one per date per scoring version

    Enqueue is safely repeatable: a dedupe key makes the insert a no-op when
    the same (run, type, key) already exists.
    """

    def __init__(
        self,
        job_repo,
        run_repo,
        max_attempts: int = 5,
        backoff_base: int = 60,
        backoff_factor: int = 5,
        backoff_max: int = 21600,
        scoring_version: str = 'v1',
        clock: Callable[[], datetime] = utcnow
    ):
        self.job_repo = job_repo
        self.run_repo = run_repo
        self.max_attempts = max_attempts
        self.backoff_base = backoff_base
        self.backoff_factor = backoff_factor
        self.backoff_max = backoff_max
        self.scoring_version = scoring_version
        self.clock = clock

    @classmethod
    def from_settings(cls, job_repo, run_repo, settings, clock: Callable[[], datetime] = utcnow) -> 'JobQueue':
        return cls(
            job_repo,
            run_repo,
            max_attempts=settings.job_max_attempts,
            backoff_base=settings.backoff_base_seconds,
            backoff_factor=settings.backoff_factor,
            backoff_max=settings.backoff_max_seconds,
            scoring_version=settings.scoring_version,
            clock=clock,
        )

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    async def enqueue(
        self,
        job_type: JobType,
        payload: dict,
        run_id: Optional[str] = None,
        dedupe_key: Optional[str] = None,
        priority: Optional[int] = None
    ) -> str:
        """
        Add a pending job

        Example:
            await queue.enqueue(JobType.FETCH, {'item_id': '...'}, run_id,
                                dedupe_key=f"FETCH:{item_id}")

        Returns:
            Job id (the existing one when the dedupe key already matched)
        """
        job_type = JobType(job_type)
        if not isinstance(payload, dict):
            raise InvalidJobPayload(f"payload for {job_type.value} must be a dict")

        job_id, created = await self.job_repo.insert(
            job_type,
            payload,
            run_id,
            priority if priority is not None else DEFAULT_PRIORITIES[job_type],
            self.max_attempts,
            dedupe_key,
        )
        if created:
            logger.debug(f"Enqueued {job_type.value} job {job_id}")
        else:
            logger.debug(f"Dedupe hit for {job_type.value} job {job_id} ({dedupe_key})")
        return job_id

    async def enqueue_open(
        self,
        job_type: JobType,
        payload: dict,
        run_id: Optional[str],
        dedupe_key: str,
        priority: Optional[int] = None
    ) -> str:
        """
        Dedupe only against a job that is still open

        When the deduped job already finished (done, failed or dead), a fresh
        job without a dedupe key is added so the work runs again.
        """
        job_id = await self.enqueue(job_type, payload, run_id, dedupe_key, priority)
        job = await self.job_repo.get(job_id)
        if job is not None and job.is_terminal:
            job_id = await self.enqueue(job_type, payload, run_id, None, priority)
        return job_id

    async def claim(self, job_type: JobType, limit: int, worker_id: str = 'worker') -> List[Job]:
        """
        Atomically claim up to `limit` due jobs of one type, oldest first

        Returns:
            Jobs now in 'running', locked by worker_id
        """
        if limit <= 0:
            return []
        jobs = await self.job_repo.claim(JobType(job_type), limit, worker_id)
        if jobs:
            logger.info(f"[{worker_id}] Claimed {len(jobs)} {JobType(job_type).value} job(s)")
        return jobs

    async def claim_any(self, limit: int, worker_id: str = 'worker') -> List[Job]:
        """Claim due jobs of any type (priority first, then oldest)"""
        if limit <= 0:
            return []
        jobs = await self.job_repo.claim(None, limit, worker_id)
        if jobs:
            logger.info(f"[{worker_id}] Claimed {len(jobs)} job(s)")
        return jobs

    async def get(self, job_id: str) -> Optional[Job]:
        return await self.job_repo.get(job_id)

    async def find_open(self, job_type: JobType, dedupe_key: str) -> Optional[Job]:
        """Open (pending, running or retry) job with this key in any run"""
        return await self.job_repo.find_open(JobType(job_type), dedupe_key)

    async def start(self, job_id: str, worker_id: str = 'inline') -> Optional[Job]:
        """
        Claim one known job (inline stage triggers)

        Returns:
            The running job, or None when it is not claimable right now
            (already running elsewhere, terminal, or retry not yet due)
        """
        job = await self.job_repo.get(job_id)
        if job is None or job.status not in (JobStatus.PENDING, JobStatus.RETRY):
            return None
        if job.status == JobStatus.RETRY and job.available_at and job.available_at > self.clock():
            return None
        return await self.job_repo.compare_and_set(
            job.id, job.status, JobStatus.RUNNING, job.attempts, locked_by=worker_id
        )

    async def complete(self, job_id: str) -> Job:
        """running → done"""
        return await self._transition(job_id, JobStatus.DONE)

    async def fail(self, job_id: str, error: str, retryable: bool = True) -> Job:
        """
        Record a failed attempt

        - not retryable → failed (terminal)
        - retryable     → attempts+1, then dead once attempts reach max_attempts,
                          otherwise retry with exponential backoff
        """
        job = await self._require(job_id)
        error = (error or 'unknown error')[:MAX_ERROR_LENGTH]

        if not retryable:
            updated = await self._transition(job_id, JobStatus.FAILED, job=job, last_error=error)
            logger.warning(f"Job {job_id} ({job.type.value}) failed: {error}")
            return updated

        attempts = job.attempts + 1
        if attempts >= job.max_attempts:
            updated = await self._transition(
                job_id, JobStatus.DEAD, job=job, attempts=attempts, last_error=error
            )
            logger.error(f"Job {job_id} ({job.type.value}) dead after {attempts} attempts: {error}")
            return updated

        delay = backoff_seconds(attempts, self.backoff_base, self.backoff_factor, self.backoff_max)
        updated = await self._transition(
            job_id,
            JobStatus.RETRY,
            job=job,
            attempts=attempts,
            available_at=self.clock() + timedelta(seconds=delay),
            last_error=error,
        )
        logger.info(f"Job {job_id} ({job.type.value}) retry #{attempts} in {delay}s: {error}")
        return updated

    async def requeue(self, job_id: str) -> Job:
        """Manual retry → pending, due immediately"""
        job = await self._require(job_id)
        return await self._transition(job_id, JobStatus.PENDING, job=job, available_at=self.clock())

    async def release_stale_locks(self, stale_minutes: int = 15) -> int:
        """
        Return jobs stuck in 'running' (crashed worker) to retry

        Returns:
            Number of jobs released
        """
        released = await self.job_repo.release_stale(self.clock() - timedelta(minutes=stale_minutes))
        if released:
            logger.warning(f"Released {released} stale job lock(s)")
        return released

    async def counts(self) -> List[dict]:
        """Job counts grouped by (type, status)"""
        return await self.job_repo.counts()

    async def count_ready(self) -> int:
        return await self.job_repo.count_ready()

    async def list_jobs(
        self,
        status: Optional[JobStatus] = None,
        job_type: Optional[JobType] = None,
        limit: int = 50
    ) -> List[Job]:
        return await self.job_repo.list_jobs(
            JobStatus(status) if status else None,
            JobType(job_type) if job_type else None,
            limit,
        )

    async def _require(self, job_id: str) -> Job:
        job = await self.job_repo.get(job_id)
        if job is None:
            raise InvalidJobPayload(f"Job {job_id} not found")
        return job

    async def _transition(
        self,
        job_id: str,
        to_status: JobStatus,
        job: Optional[Job] = None,
        attempts: Optional[int] = None,
        available_at: Optional[datetime] = None,
        last_error: Optional[str] = None
    ) -> Job:
        job = job or await self._require(job_id)
        check_transition(job.status, to_status)

        updated = await self.job_repo.compare_and_set(
            job.id,
            job.status,
            to_status,
            attempts if attempts is not None else job.attempts,
            available_at=available_at,
            last_error=last_error,
        )
        if updated is None:
            # Someone else moved the job between our read and the swap
            current = await self._require(job_id)
            raise InvalidTransition(current.status.value, to_status.value)
        return updated

    # ------------------------------------------------------------------
    # Pipeline runs
    # ------------------------------------------------------------------

    async def create_run(self) -> PipelineRun:
        run = await self.run_repo.create(self.scoring_version)
        logger.info(f"Started pipeline run {run.id}")
        return run

    async def complete_run(
        self,
        run_id: str,
        items_discovered: int = 0,
        items_processed: int = 0,
        items_failed: int = 0
    ) -> None:
        await self.run_repo.finish(
            run_id, RunStatus.COMPLETED, items_discovered, items_processed, items_failed
        )
        logger.info(
            f"Completed pipeline run {run_id}: discovered={items_discovered} "
            f"processed={items_processed} failed={items_failed}"
        )

    async def fail_run(self, run_id: str, error: str) -> None:
        await self.run_repo.finish(run_id, RunStatus.FAILED, error_log=error[:MAX_ERROR_LENGTH])
        logger.error(f"Pipeline run {run_id} failed: {error}")

    async def mark_stale_runs_failed(self, stale_minutes: int = 120) -> int:
        count = await self.run_repo.fail_stale(self.clock() - timedelta(minutes=stale_minutes))
        if count:
            logger.warning(f"Marked {count} stale pipeline run(s) failed")
        return count
