"""
Cron-mode pipeline run

One run = one discover job plus everything it fans out to, drained from the
queue until nothing is ready or the wall-clock budget runs out. Work left
over (retries not yet due, jobs beyond the budget) stays queued for the
next run.
"""
import asyncio
import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Dict, Optional

from canary_watcher.context import PipelineContext
from canary_watcher.models import Job, JobType
from canary_watcher.services.dispatcher import JobDispatcher
from canary_watcher.services.worker_base import JobOutcome, run_job
from canary_watcher.utils.datetime_utils import elapsed_ms

logger = logging.getLogger(__name__)


def discover_dedupe_key(run_id: str) -> str:
    return f"DISCOVER:{run_id}"


@dataclass
class RunTotals:
    run_id: Optional[str] = None
    jobs_done: int = 0
    jobs_failed: int = 0
    items_discovered: int = 0
    budget_exhausted: bool = False
    done_by_type: Dict[str, int] = field(default_factory=dict)
    failed_by_type: Dict[str, int] = field(default_factory=dict)
    duration_ms: int = 0

    def to_dict(self) -> dict:
        return {
            'run_id': self.run_id,
            'jobs_done': self.jobs_done,
            'jobs_failed': self.jobs_failed,
            'items_discovered': self.items_discovered,
            'budget_exhausted': self.budget_exhausted,
            'done_by_type': dict(self.done_by_type),
            'failed_by_type': dict(self.failed_by_type),
            'duration_ms': self.duration_ms,
        }


class PipelineRunner:
    name = 'pipeline'

    def __init__(self, ctx: PipelineContext, batch_size: int = 10, concurrency: int = 4):
        self.ctx = ctx
        self.batch_size = batch_size
        self.concurrency = concurrency
        self.dispatcher = JobDispatcher(ctx)

    async def run(self, budget_seconds: Optional[int] = None, force: bool = False) -> RunTotals:
        """
        Trigger a full run and drain the queue within the budget

        Args:
            budget_seconds: Wall-clock budget, defaults to settings.time_budget_seconds
            force: Ignore source cadence in the discover job

        Returns:
            RunTotals
        """
        settings = self.ctx.settings
        budget = budget_seconds if budget_seconds is not None else settings.time_budget_seconds
        started = self.ctx.now()
        deadline = started + timedelta(seconds=budget)

        queue = self.ctx.queue
        await queue.mark_stale_runs_failed(settings.stale_run_minutes)
        run = await queue.create_run()
        totals = RunTotals(run_id=run.id)
        await queue.enqueue(JobType.DISCOVER, {'force': force}, run.id, dedupe_key=discover_dedupe_key(run.id))

        done = Counter()
        failed = Counter()
        discovered = 0
        try:
            while True:
                if self.ctx.now() >= deadline:
                    totals.budget_exhausted = True
                    logger.warning(f"[{self.name}] Time budget of {budget}s exhausted, leaving work queued")
                    break

                await queue.release_stale_locks(settings.stale_lock_minutes)
                jobs = await queue.claim_any(self.batch_size, self.name)
                if not jobs:
                    break

                outcomes = await self._run_batch(jobs, deadline)
                for outcome in outcomes:
                    if outcome.ok:
                        done[outcome.job.type.value] += 1
                        if outcome.job.type == JobType.DISCOVER:
                            discovered += outcome.result.get('items_inserted', 0)
                    else:
                        failed[outcome.job.type.value] += 1
        except Exception as e:
            await queue.fail_run(run.id, f"{type(e).__name__}: {e}")
            raise

        totals.done_by_type = dict(done)
        totals.failed_by_type = dict(failed)
        totals.jobs_done = sum(done.values())
        totals.jobs_failed = sum(failed.values())
        totals.items_discovered = discovered
        totals.duration_ms = elapsed_ms(started, self.ctx.now())

        await queue.complete_run(
            run.id,
            items_discovered=discovered,
            items_processed=done[JobType.MAP.value],
            items_failed=failed[JobType.FETCH.value] + failed[JobType.EXTRACT.value] + failed[JobType.MAP.value],
        )
        logger.info(
            f"[{self.name}] Run {run.id}: {totals.jobs_done} done, {totals.jobs_failed} failed "
            f"in {totals.duration_ms}ms"
        )
        return totals

    async def _run_batch(self, jobs, deadline) -> list:
        semaphore = asyncio.Semaphore(max(1, self.concurrency))

        async def bounded(job: Job) -> JobOutcome:
            async with semaphore:
                remaining = (deadline - self.ctx.now()).total_seconds()

                async def handler(j: Job):
                    if remaining <= 0:
                        raise asyncio.TimeoutError()
                    return await asyncio.wait_for(self.dispatcher.process(j), timeout=remaining)

                return await run_job(self.ctx.queue, job, handler)

        return await asyncio.gather(*[bounded(job) for job in jobs])
