"""
Acquisition stage - fetch full content for discovered items

Per item:
1. skip when a live document already exists (idempotent reprocessing)
2. fetch + clean via the content client
3. write the body to blob storage under documents/{item_id}/clean.md
4. insert the Document and enqueue its extract job

Failures are recorded as a failed Document row and left to the queue's
retry/backoff; nothing retries inline. Items are processed concurrently up to
a small limit, and each one is bounded by the remaining time budget.
"""
import asyncio
import hashlib
import logging
from dataclasses import dataclass, field, asdict
from datetime import timedelta
from typing import List, Optional

from canary_watcher.context import PipelineContext
from canary_watcher.errors import InvalidJobPayload, PermanentUpstreamError, PipelineError
from canary_watcher.models import DocumentStatus, Item, Job, JobType, blob_key_for_item
from canary_watcher.services.worker_base import run_job
from canary_watcher.utils.datetime_utils import elapsed_ms
from canary_watcher.workers.discovery import fetch_dedupe_key

logger = logging.getLogger(__name__)


def extract_dedupe_key(document_id: str) -> str:
    return f"EXTRACT:{document_id}"


@dataclass
class ItemResult:
    item_id: str
    success: bool
    skipped: bool = False
    document_id: Optional[str] = None
    word_count: int = 0
    error: Optional[str] = None
    job_id: Optional[str] = None


@dataclass
class AcquisitionStats:
    dry_run: bool = False
    documents_processed: int = 0
    documents_failed: int = 0
    documents_skipped: int = 0
    per_item: List[ItemResult] = field(default_factory=list)
    duration_ms: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


class AcquisitionStage:
    name = 'acquisition'

    def __init__(self, ctx: PipelineContext):
        self.ctx = ctx

    async def run(self, item_ids: Optional[List[str]] = None, dry_run: bool = False) -> AcquisitionStats:
        """
        Acquire explicit items (inline jobs) or the next batch of pending fetch jobs

        Returns:
            AcquisitionStats
        """
        started = self.ctx.now()
        deadline = started + timedelta(seconds=self.ctx.settings.time_budget_seconds)
        stats = AcquisitionStats(dry_run=dry_run)

        if dry_run:
            items = await self._dry_run_items(item_ids)
            stats.per_item = [ItemResult(item_id=i.id, success=False, skipped=True) for i in items]
            stats.documents_skipped = len(items)
            stats.duration_ms = elapsed_ms(started, self.ctx.now())
            return stats

        if item_ids:
            jobs = await self._inline_jobs(item_ids, stats)
        else:
            jobs = await self.ctx.queue.claim(JobType.FETCH, self.ctx.settings.acquisition_batch_size, self.name)

        logger.info(f"[{self.name}] Acquiring {len(jobs)} item(s)")
        semaphore = asyncio.Semaphore(max(1, self.ctx.settings.acquisition_concurrency))
        results = await asyncio.gather(*[self._run_bounded(job, semaphore, deadline) for job in jobs])

        for result in results:
            stats.per_item.append(result)
            if result.skipped:
                stats.documents_skipped += 1
            elif result.success:
                stats.documents_processed += 1
            else:
                stats.documents_failed += 1

        stats.duration_ms = elapsed_ms(started, self.ctx.now())
        logger.info(
            f"[{self.name}] Processed {stats.documents_processed}, failed {stats.documents_failed}, "
            f"skipped {stats.documents_skipped} in {stats.duration_ms}ms"
        )
        return stats

    async def _dry_run_items(self, item_ids: Optional[List[str]]) -> List[Item]:
        if not item_ids:
            return await self.ctx.items.list_pending(self.ctx.settings.acquisition_batch_size)
        items = []
        for item_id in item_ids:
            item = await self.ctx.items.get_by_id(item_id)
            if item:
                items.append(item)
        return items

    async def _inline_jobs(self, item_ids: List[str], stats: AcquisitionStats) -> List[Job]:
        """Enqueue-or-get a fetch job per item and claim it directly"""
        jobs = []
        for item_id in item_ids:
            item = await self.ctx.items.get_by_id(item_id)
            if item is None:
                stats.per_item.append(ItemResult(item_id=item_id, success=False, error='Item not found'))
                stats.documents_failed += 1
                continue

            job_id = await self.ctx.queue.enqueue(
                JobType.FETCH, {'item_id': item.id}, item.run_id, dedupe_key=fetch_dedupe_key(item.id)
            )
            job = await self.ctx.queue.start(job_id, self.name)
            if job is None:
                stats.per_item.append(ItemResult(
                    item_id=item.id, success=False, skipped=True, job_id=job_id,
                    error='Fetch job is running elsewhere or already finished',
                ))
                stats.documents_skipped += 1
                continue
            jobs.append(job)
        return jobs

    async def _run_bounded(self, job: Job, semaphore: asyncio.Semaphore, deadline) -> ItemResult:
        item_id = str(job.payload.get('item_id'))
        async with semaphore:
            remaining = (deadline - self.ctx.now()).total_seconds()

            async def handler(j: Job):
                if remaining <= 0:
                    raise asyncio.TimeoutError()
                return await asyncio.wait_for(self.process_job(j), timeout=remaining)

            outcome = await run_job(self.ctx.queue, job, handler)

        if outcome.ok:
            result = outcome.result
            result.job_id = job.id
            return result
        return ItemResult(item_id=item_id, success=False, error=outcome.error, job_id=job.id)

    async def process_job(self, job: Job) -> ItemResult:
        """Fetch job handler; raises so the caller can fail the job"""
        item_id = job.payload.get('item_id')
        if not item_id:
            raise InvalidJobPayload(f"fetch job {job.id} has no item_id")
        item = await self.ctx.items.get_by_id(item_id)
        if item is None:
            raise InvalidJobPayload(f"fetch job {job.id}: item {item_id} not found")
        return await self.acquire_item(item, job.run_id)

    async def acquire_item(self, item: Item, run_id: Optional[str] = None) -> ItemResult:
        run_id = run_id or item.run_id

        existing = await self.ctx.documents.get_live_for_item(item.id)
        if existing is not None:
            if existing.status == DocumentStatus.ACQUIRED:
                await self._enqueue_extract(existing.id, run_id)
            logger.debug(f"[{self.name}] Item {item.id} already has document {existing.id}")
            return ItemResult(item_id=item.id, success=True, skipped=True, document_id=existing.id)

        key = blob_key_for_item(item.id)
        try:
            fetched = await self.ctx.content_client.fetch_content(item.url)
            await self.ctx.blob_store.put(key, fetched.content)
        except PipelineError as e:
            await self._record_failure(item, e)
            raise

        content_hash = hashlib.sha256(fetched.content.encode('utf-8')).hexdigest()
        document = await self.ctx.documents.create(
            item.id, key, content_hash, fetched.word_count, fetched.metadata
        )
        await self.ctx.items.record_attempt(item.id, None)
        await self.ctx.items.mark_acquired(item.id)
        await self._enqueue_extract(document.id, run_id)

        logger.info(f"[{self.name}] Acquired {item.url} ({fetched.word_count} words)")
        return ItemResult(
            item_id=item.id, success=True, document_id=document.id, word_count=fetched.word_count
        )

    async def _enqueue_extract(self, document_id: str, run_id: Optional[str]) -> str:
        return await self.ctx.queue.enqueue(
            JobType.EXTRACT, {'document_id': document_id}, run_id,
            dedupe_key=extract_dedupe_key(document_id),
        )

    async def _record_failure(self, item: Item, error: PipelineError) -> None:
        message = str(error)
        logger.warning(f"[{self.name}] Failed {item.url}: {message}")
        await self.ctx.items.record_attempt(item.id, message)
        await self.ctx.documents.record_failure(item.id, message)
        if isinstance(error, PermanentUpstreamError):
            await self.ctx.items.mark_failed(item.id, message)
