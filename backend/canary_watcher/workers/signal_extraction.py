"""
Signal extraction stage - AI claim extraction and signal mapping per document

Two job types:
- extract: read the blob, call the AI extractor, validate, store the
           extraction on the document (status 'extracted'), enqueue map
- map:     turn stored claims into Signal rows (replacing any previous ones),
           mark document and item processed, enqueue the day's aggregate

A validation failure marks that document failed with the raw response kept;
other documents are unaffected.
"""
import asyncio
import logging
from dataclasses import dataclass, field, asdict
from datetime import timedelta
from typing import List, Optional

from canary_watcher.context import PipelineContext
from canary_watcher.errors import BlobNotFound, ExtractionValidationError, InvalidJobPayload
from canary_watcher.models import DocumentContext, Job, JobType
from canary_watcher.models.api.extraction import SignalExtraction
from canary_watcher.services.ai_extractor import ExtractionRequest
from canary_watcher.services.signal_mapper import map_claims_to_signals
from canary_watcher.services.worker_base import run_job
from canary_watcher.utils.datetime_utils import elapsed_ms
from canary_watcher.workers.acquisition import extract_dedupe_key

logger = logging.getLogger(__name__)

RAW_RESPONSE_KEEP = 4000


def map_dedupe_key(document_id: str) -> str:
    return f"MAP:{document_id}"


def aggregate_dedupe_key(day, scoring_version: str) -> str:
    return f"AGG:{day.isoformat()}:{scoring_version}"


@dataclass
class DocumentResult:
    document_id: str
    success: bool
    claims: int = 0
    signals_created: int = 0
    signal_ids: List[str] = field(default_factory=list)
    error: Optional[str] = None


@dataclass
class ExtractionStats:
    documents_processed: int = 0
    documents_failed: int = 0
    signals_created: int = 0
    per_document: List[DocumentResult] = field(default_factory=list)
    duration_ms: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


class SignalExtractionStage:
    name = 'extraction'

    def __init__(self, ctx: PipelineContext):
        self.ctx = ctx

    async def run(self, document_ids: Optional[List[str]] = None) -> ExtractionStats:
        """
        Extract and map explicit documents, or the next batch of extract jobs

        Returns:
            ExtractionStats
        """
        started = self.ctx.now()
        deadline = started + timedelta(seconds=self.ctx.settings.time_budget_seconds)
        stats = ExtractionStats()

        if document_ids:
            jobs = await self._inline_jobs(document_ids, stats)
        else:
            batch_size = self.ctx.settings.extraction_batch_size
            jobs = await self.ctx.queue.claim(JobType.EXTRACT, batch_size, self.name)
            if len(jobs) < batch_size:
                jobs += await self._awaiting_jobs(batch_size - len(jobs), jobs)

        logger.info(f"[{self.name}] Processing {len(jobs)} document(s)")
        semaphore = asyncio.Semaphore(max(1, self.ctx.settings.extraction_concurrency))
        results = await asyncio.gather(*[self._process_document(job, semaphore, deadline) for job in jobs])

        for result in results:
            stats.per_document.append(result)
            if result.success:
                stats.documents_processed += 1
                stats.signals_created += result.signals_created
            else:
                stats.documents_failed += 1

        stats.duration_ms = elapsed_ms(started, self.ctx.now())
        logger.info(
            f"[{self.name}] Processed {stats.documents_processed}, failed {stats.documents_failed}, "
            f"{stats.signals_created} signal(s) in {stats.duration_ms}ms"
        )
        return stats

    async def _inline_jobs(self, document_ids: List[str], stats: ExtractionStats) -> List[Job]:
        jobs = []
        for document_id in document_ids:
            doc_ctx = await self.ctx.documents.get_context(document_id)
            if doc_ctx is None:
                stats.per_document.append(DocumentResult(document_id, False, error='Document not found'))
                stats.documents_failed += 1
                continue

            job_id = await self.ctx.queue.enqueue_open(
                JobType.EXTRACT, {'document_id': document_id}, doc_ctx.run_id,
                dedupe_key=extract_dedupe_key(document_id),
            )
            job = await self.ctx.queue.start(job_id, self.name)
            if job is None:
                stats.per_document.append(DocumentResult(
                    document_id, False, error='Extract job is running elsewhere or waiting for retry',
                ))
                stats.documents_failed += 1
                continue
            jobs.append(job)
        return jobs

    async def _awaiting_jobs(self, limit: int, claimed: List[Job]) -> List[Job]:
        """
        Start extract jobs for acquired documents that have no open one

        Covers documents whose extract job was never enqueued or already finished.
        """
        claimed_ids = {job.payload.get('document_id') for job in claimed}
        jobs = []
        for document in await self.ctx.documents.list_awaiting_extraction(limit + len(claimed_ids)):
            if len(jobs) >= limit:
                break
            if document.id in claimed_ids:
                continue
            key = extract_dedupe_key(document.id)
            if await self.ctx.queue.find_open(JobType.EXTRACT, key) is not None:
                continue
            doc_ctx = await self.ctx.documents.get_context(document.id)
            run_id = doc_ctx.run_id if doc_ctx else None
            job_id = await self.ctx.queue.enqueue_open(
                JobType.EXTRACT, {'document_id': document.id}, run_id, dedupe_key=key,
            )
            job = await self.ctx.queue.start(job_id, self.name)
            if job is not None:
                jobs.append(job)
        if jobs:
            logger.info(f"[{self.name}] Picked up {len(jobs)} acquired document(s) without an extract job")
        return jobs

    async def _process_document(self, job: Job, semaphore: asyncio.Semaphore, deadline) -> DocumentResult:
        """extract then map, each recorded on its own job"""
        document_id = str(job.payload.get('document_id'))
        async with semaphore:
            remaining = (deadline - self.ctx.now()).total_seconds()

            async def bounded_extract(j: Job):
                if remaining <= 0:
                    raise asyncio.TimeoutError()
                return await asyncio.wait_for(self.process_extract_job(j), timeout=remaining)

            extract_outcome = await run_job(self.ctx.queue, job, bounded_extract)
            if not extract_outcome.ok:
                return DocumentResult(document_id, False, error=extract_outcome.error)

            claims, map_job_id = extract_outcome.result
            map_job = await self.ctx.queue.start(map_job_id, self.name)
            if map_job is None:
                signals = await self.ctx.signals.list_for_document(document_id)
                return DocumentResult(
                    document_id, True, claims=claims,
                    signals_created=len(signals), signal_ids=[s.id for s in signals],
                )

            map_outcome = await run_job(self.ctx.queue, map_job, self.process_map_job)
            if not map_outcome.ok:
                return DocumentResult(document_id, False, claims=claims, error=map_outcome.error)

            signal_ids = map_outcome.result
            return DocumentResult(
                document_id, True, claims=claims, signals_created=len(signal_ids), signal_ids=signal_ids
            )

    # ------------------------------------------------------------------
    # Job handlers
    # ------------------------------------------------------------------

    async def process_extract_job(self, job: Job):
        """
        Returns:
            (claim count, map job id)
        """
        document_id = self._document_id(job)
        doc_ctx = await self._load(document_id)
        extraction = await self.extract_document(doc_ctx)
        map_job_id = await self.ctx.queue.enqueue_open(
            JobType.MAP, {'document_id': document_id}, job.run_id or doc_ctx.run_id,
            dedupe_key=map_dedupe_key(document_id),
        )
        return len(extraction.claims), map_job_id

    async def process_map_job(self, job: Job) -> List[str]:
        document_id = self._document_id(job)
        doc_ctx = await self._load(document_id)
        return await self.map_document(doc_ctx, job.run_id or doc_ctx.run_id)

    def _document_id(self, job: Job) -> str:
        document_id = job.payload.get('document_id')
        if not document_id:
            raise InvalidJobPayload(f"{job.type.value} job {job.id} has no document_id")
        return document_id

    async def _load(self, document_id: str) -> DocumentContext:
        doc_ctx = await self.ctx.documents.get_context(document_id)
        if doc_ctx is None:
            raise InvalidJobPayload(f"Document {document_id} not found")
        return doc_ctx

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    async def extract_document(self, doc_ctx: DocumentContext) -> SignalExtraction:
        document = doc_ctx.document
        if not document.clean_blob_key:
            raise InvalidJobPayload(f"Document {document.id} has no stored content")

        try:
            text = await self.ctx.blob_store.get(document.clean_blob_key)
        except BlobNotFound as e:
            await self.ctx.documents.mark_failed(document.id, str(e))
            raise

        request = ExtractionRequest(
            text=text,
            source_name=doc_ctx.source_name,
            source_tier=doc_ctx.source_tier,
            url=doc_ctx.item_url,
            published_at=doc_ctx.published_at,
        )
        try:
            extraction = await self.ctx.extractor.extract(request)
        except ExtractionValidationError as e:
            raw = (e.raw_response or '')[:RAW_RESPONSE_KEEP]
            await self.ctx.documents.mark_failed(document.id, f"{e}\n\nRaw response:\n{raw}")
            logger.warning(f"[{self.name}] Document {document.id} failed validation: {e}")
            raise

        await self.ctx.documents.save_extraction(document.id, extraction.model_dump())
        logger.info(f"[{self.name}] Document {document.id}: {len(extraction.claims)} claim(s)")
        return extraction

    async def map_document(self, doc_ctx: DocumentContext, run_id: Optional[str]) -> List[str]:
        document = doc_ctx.document
        if document.extraction is None:
            raise InvalidJobPayload(f"Document {document.id} has no stored extraction")

        extraction = SignalExtraction.model_validate(document.extraction)
        signals = map_claims_to_signals(
            extraction,
            document.id,
            doc_ctx.item_url,
            doc_ctx.trust_weight,
            self.ctx.settings.scoring_version,
            self.ctx.policy,
        )

        signal_ids = await self.ctx.signals.replace_for_document(document.id, signals)
        await self.ctx.documents.mark_processed(document.id)
        await self.ctx.items.mark_processed(document.item_id)

        day = document.acquired_date or self.ctx.now().date()
        await self.ctx.queue.enqueue_open(
            JobType.AGGREGATE, {'date': day.isoformat()}, run_id,
            dedupe_key=aggregate_dedupe_key(day, self.ctx.settings.scoring_version),
        )
        logger.info(f"[{self.name}] Document {document.id}: {len(signal_ids)} signal(s)")
        return signal_ids
