"""
Route claimed jobs to their stage handlers
"""
import logging
from typing import Any

from canary_watcher.context import PipelineContext
from canary_watcher.errors import InvalidJobPayload
from canary_watcher.models import Job, JobType
from canary_watcher.services.worker_base import BaseWorker
from canary_watcher.workers.acquisition import AcquisitionStage
from canary_watcher.workers.aggregation import SnapshotBuilder
from canary_watcher.workers.discovery import DiscoveryStage
from canary_watcher.workers.signal_extraction import SignalExtractionStage

logger = logging.getLogger(__name__)


class JobDispatcher:
    """
    One handler per job type. Handlers raise on failure; the caller records
    done / retry / failed on the queue.
    """

    def __init__(self, ctx: PipelineContext):
        self.ctx = ctx
        self.discovery = DiscoveryStage(ctx)
        self.acquisition = AcquisitionStage(ctx)
        self.extraction = SignalExtractionStage(ctx)
        self.aggregation = SnapshotBuilder(ctx)

    async def process(self, job: Job) -> Any:
        if job.type == JobType.DISCOVER:
            stats = await self.discovery.run(
                run_id=job.run_id, force=bool(job.payload.get('force', False))
            )
            return stats.to_dict()
        if job.type == JobType.FETCH:
            return await self.acquisition.process_job(job)
        if job.type == JobType.EXTRACT:
            return await self.extraction.process_extract_job(job)
        if job.type == JobType.MAP:
            return await self.extraction.process_map_job(job)
        if job.type == JobType.AGGREGATE:
            return await self.aggregation.process_job(job)
        raise InvalidJobPayload(f"No handler for job type {job.type!r}")


class PipelineWorker(BaseWorker):
    """Long-running worker taking every job type from the queue"""

    def __init__(self, ctx: PipelineContext, worker_name: str = 'pipeline-worker', batch_size: int = 5):
        super().__init__(
            ctx.queue,
            worker_name,
            batch_size=batch_size,
            stale_lock_minutes=ctx.settings.stale_lock_minutes,
        )
        self.dispatcher = JobDispatcher(ctx)

    async def process(self, job: Job):
        return await self.dispatcher.process(job)
