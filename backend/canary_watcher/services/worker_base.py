"""
Base worker for the Postgres job queue

Long-running worker shape: signal handling, processed/failed counters and a
loop that never dies on one bad job. Jobs are claimed from Postgres.
"""
import asyncio
import logging
import signal
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from canary_watcher.errors import is_retryable
from canary_watcher.models import Job
from canary_watcher.services.job_queue import JobQueue

logger = logging.getLogger(__name__)


@dataclass
class JobOutcome:
    job: Job
    ok: bool
    result: Any = None
    error: Optional[str] = None
    retryable: bool = False


async def run_job(queue: JobQueue, job: Job, handler: Callable[[Job], Awaitable[Any]]) -> JobOutcome:
    """
    Run a claimed job and record its outcome on the queue

    The handler raises on failure; the exception decides retry vs failed via
    is_retryable(). Never raises for handler errors.
    """
    try:
        result = await handler(job)
    except asyncio.CancelledError:
        raise
    except Exception as e:
        retryable = is_retryable(e)
        message = f"{type(e).__name__}: {e}"
        if retryable:
            logger.warning(f"Job {job.id} ({job.type.value}) failed, will retry: {message}")
        else:
            logger.warning(f"Job {job.id} ({job.type.value}) failed permanently: {message}")
        await queue.fail(job.id, message, retryable=retryable)
        return JobOutcome(job=job, ok=False, error=message, retryable=retryable)

    await queue.complete(job.id)
    return JobOutcome(job=job, ok=True, result=result)


class BaseWorker:
    """
    Base class for queue workers

    - Signal handling (graceful shutdown)
    - Claim → process → complete/fail loop
    - Metrics logging (processed / failed)
    """

    def __init__(
        self,
        job_queue: JobQueue,
        worker_name: str,
        batch_size: int = 5,
        poll_interval: float = 5.0,
        stale_lock_minutes: int = 15
    ):
        self.job_queue = job_queue
        self.worker_name = worker_name
        self.batch_size = batch_size
        self.poll_interval = poll_interval
        self.stale_lock_minutes = stale_lock_minutes
        self.running = False
        self.jobs_processed = 0
        self.jobs_failed = 0

    async def start(self):
        """
        Main worker loop

        Continuously:
        1. Release locks left behind by crashed workers
        2. Claim a batch of due jobs
        3. Process each, recording done / retry / failed / dead
        4. Sleep when the queue is empty
        """
        self._setup_signal_handlers()

        self.running = True
        logger.info(f"[{self.worker_name}] Started, polling job queue")

        while self.running:
            try:
                await self.job_queue.release_stale_locks(self.stale_lock_minutes)
                jobs = await self.claim()

                if not jobs:
                    await asyncio.sleep(self.poll_interval)
                    continue

                for job in jobs:
                    logger.debug(f"[{self.worker_name}] Received job: {job.id} ({job.type.value})")
                    outcome = await run_job(self.job_queue, job, self.process)
                    if outcome.ok:
                        self.jobs_processed += 1
                    else:
                        self.jobs_failed += 1

            except asyncio.CancelledError:
                logger.info(f"[{self.worker_name}] Received cancellation signal")
                break
            except Exception as e:
                logger.error(f"[{self.worker_name}] Worker loop error: {e}", exc_info=True)
                await asyncio.sleep(1)

        logger.info(
            f"[{self.worker_name}] Shutting down. "
            f"Processed: {self.jobs_processed}, Failed: {self.jobs_failed}"
        )

    def stop(self):
        self.running = False

    def _setup_signal_handlers(self):
        """Setup graceful shutdown on SIGTERM/SIGINT"""
        def shutdown_handler(signum, frame):
            logger.info(f"[{self.worker_name}] Received signal {signum}, shutting down...")
            self.running = False

        signal.signal(signal.SIGTERM, shutdown_handler)
        signal.signal(signal.SIGINT, shutdown_handler)

    async def claim(self):
        """Override to restrict the job types this worker takes"""
        return await self.job_queue.claim_any(self.batch_size, self.worker_name)

    async def process(self, job: Job):
        """
        Override in subclass - do the actual work

        Raise to fail the job; the exception type decides whether it retries.
        """
        raise NotImplementedError(f"{self.__class__.__name__} must implement process()")
