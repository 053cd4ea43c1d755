"""
Acquisition stage tests: blob + document per item, failures left to the queue
"""

import hashlib
import pytest

from canary_watcher.errors import PermanentUpstreamError, TransientUpstreamError
from canary_watcher.models import DocumentStatus, ItemStatus, JobStatus, JobType, blob_key_for_item
from canary_watcher.tests.fakes import make_context
from canary_watcher.workers.acquisition import AcquisitionStage, extract_dedupe_key
from canary_watcher.workers.discovery import fetch_dedupe_key

ARTICLE = "A new agent benchmark was released today. " * 80
URL_A = 'https://lab.test/blog/agent-benchmark'
URL_B = 'https://slow.test/news/timeout'


async def enqueue_fetch(ctx, item):
    return await ctx.queue.enqueue(
        JobType.FETCH, {'item_id': item.id}, item.run_id, dedupe_key=fetch_dedupe_key(item.id)
    )


class TestAcquisitionBatch:
    """Claimed fetch jobs: one success, one transient timeout."""

    @pytest.mark.asyncio
    async def test_success_and_timeout(self, ctx):
        item_a = ctx.items.add('src-1', URL_A, run_id='run-1')
        item_b = ctx.items.add('src-1', URL_B, run_id='run-1')
        job_a = await enqueue_fetch(ctx, item_a)
        job_b = await enqueue_fetch(ctx, item_b)
        ctx.content_client.pages = {
            URL_A: ARTICLE,
            URL_B: TransientUpstreamError(f"Timed out fetching {URL_B}"),
        }

        stats = await AcquisitionStage(ctx).run()

        assert stats.documents_processed == 1
        assert stats.documents_failed == 1

        # A: blob + document + extract job
        key = blob_key_for_item(item_a.id)
        assert ctx.blob_store.blobs[key] == ARTICLE
        document = await ctx.documents.get_live_for_item(item_a.id)
        assert document.status == DocumentStatus.ACQUIRED
        assert document.clean_blob_key == key
        assert document.content_hash == hashlib.sha256(ARTICLE.encode('utf-8')).hexdigest()
        assert (await ctx.items.get_by_id(item_a.id)).status == ItemStatus.ACQUIRED
        assert (await ctx.queue.get(job_a)).status == JobStatus.DONE

        extract_jobs = ctx.queue.job_repo.of_type(JobType.EXTRACT)
        assert len(extract_jobs) == 1
        assert extract_jobs[0].payload == {'document_id': document.id}
        assert extract_jobs[0].dedupe_key == extract_dedupe_key(document.id)

        # B: failed document row, job waits for retry
        retry_job = await ctx.queue.get(job_b)
        assert retry_job.status == JobStatus.RETRY
        assert retry_job.attempts == 1
        assert await ctx.documents.get_live_for_item(item_b.id) is None
        failed_docs = [d for d in ctx.documents.documents.values() if d.item_id == item_b.id]
        assert [d.status for d in failed_docs] == [DocumentStatus.FAILED]
        item_b_after = await ctx.items.get_by_id(item_b.id)
        assert item_b_after.status == ItemStatus.PENDING
        assert item_b_after.acquisition_attempt_count == 1
        assert 'Timed out' in item_b_after.acquisition_error

    @pytest.mark.asyncio
    async def test_permanent_error_fails_item_and_job(self, ctx):
        item = ctx.items.add('src-1', URL_A, run_id='run-1')
        job_id = await enqueue_fetch(ctx, item)
        ctx.content_client.pages = {URL_A: PermanentUpstreamError(f"HTTP 404 for {URL_A}", status_code=404)}

        stats = await AcquisitionStage(ctx).run()

        assert stats.documents_failed == 1
        assert (await ctx.queue.get(job_id)).status == JobStatus.FAILED
        assert (await ctx.items.get_by_id(item.id)).status == ItemStatus.FAILED

    @pytest.mark.asyncio
    async def test_batch_size_bounds_the_pass(self, clock, source):
        ctx = make_context(sources=[source], clock=clock, acquisition_batch_size=2)
        pages = {}
        for n in range(5):
            item = ctx.items.add('src-1', f"https://lab.test/blog/{n}", run_id='run-1')
            await enqueue_fetch(ctx, item)
            pages[item.url] = ARTICLE
        ctx.content_client.pages = pages

        stats = await AcquisitionStage(ctx).run()

        assert stats.documents_processed == 2
        pending = [j for j in ctx.queue.job_repo.of_type(JobType.FETCH) if j.status == JobStatus.PENDING]
        assert len(pending) == 3


class TestIdempotentAcquisition:

    @pytest.mark.asyncio
    async def test_item_with_live_document_is_skipped(self, ctx):
        item = ctx.items.add('src-1', URL_A, run_id='run-1')
        existing = ctx.documents.add(item.id, clean_blob_key=blob_key_for_item(item.id))
        await enqueue_fetch(ctx, item)

        stats = await AcquisitionStage(ctx).run()

        assert stats.documents_skipped == 1
        assert ctx.content_client.calls == []
        # an acquired-but-unextracted document gets its extract job back
        extract_jobs = ctx.queue.job_repo.of_type(JobType.EXTRACT)
        assert [j.payload['document_id'] for j in extract_jobs] == [existing.id]

    @pytest.mark.asyncio
    async def test_processed_document_is_left_alone(self, ctx):
        item = ctx.items.add('src-1', URL_A, run_id='run-1')
        ctx.documents.add(item.id, status=DocumentStatus.PROCESSED)
        await enqueue_fetch(ctx, item)

        stats = await AcquisitionStage(ctx).run()

        assert stats.documents_skipped == 1
        assert ctx.queue.job_repo.of_type(JobType.EXTRACT) == []

    @pytest.mark.asyncio
    async def test_failed_document_does_not_block_reacquisition(self, ctx):
        item = ctx.items.add('src-1', URL_A, run_id='run-1')
        ctx.documents.add(item.id, status=DocumentStatus.FAILED, error='HTTP 503')
        ctx.content_client.pages = {URL_A: ARTICLE}

        stats = await AcquisitionStage(ctx).run(item_ids=[item.id])

        assert stats.documents_processed == 1
        live = await ctx.documents.get_live_for_item(item.id)
        assert live.status == DocumentStatus.ACQUIRED


class TestInlineTrigger:
    """Explicit item ids run as inline jobs."""

    @pytest.mark.asyncio
    async def test_explicit_items_get_jobs(self, ctx):
        item = ctx.items.add('src-1', URL_A, run_id='run-1')
        ctx.content_client.pages = {URL_A: ARTICLE}

        stats = await AcquisitionStage(ctx).run(item_ids=[item.id])

        assert stats.documents_processed == 1
        fetch_jobs = ctx.queue.job_repo.of_type(JobType.FETCH)
        assert len(fetch_jobs) == 1
        assert fetch_jobs[0].status == JobStatus.DONE
        assert stats.per_item[0].job_id == fetch_jobs[0].id

    @pytest.mark.asyncio
    async def test_unknown_item(self, ctx):
        stats = await AcquisitionStage(ctx).run(item_ids=['missing'])
        assert stats.documents_failed == 1
        assert stats.per_item[0].error == 'Item not found'

    @pytest.mark.asyncio
    async def test_finished_job_is_not_rerun(self, ctx):
        item = ctx.items.add('src-1', URL_A, run_id='run-1')
        ctx.content_client.pages = {URL_A: ARTICLE}
        stage = AcquisitionStage(ctx)

        await stage.run(item_ids=[item.id])
        again = await stage.run(item_ids=[item.id])

        assert again.documents_skipped == 1
        assert ctx.content_client.calls == [URL_A]

    @pytest.mark.asyncio
    async def test_dry_run_fetches_nothing(self, ctx):
        item = ctx.items.add('src-1', URL_A, run_id='run-1')

        stats = await AcquisitionStage(ctx).run(item_ids=[item.id], dry_run=True)

        assert stats.dry_run is True
        assert stats.documents_skipped == 1
        assert ctx.content_client.calls == []
        assert ctx.queue.job_repo.jobs == {}
