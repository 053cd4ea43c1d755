"""
Discovery stage tests: dedup on insert, per-source isolation, cadence, dry run
"""

import asyncio
import pytest
from datetime import timedelta

from canary_watcher.errors import PermanentUpstreamError, TransientUpstreamError
from canary_watcher.models import CandidateItem, ItemStatus, JobType
from canary_watcher.tests.fakes import make_context, make_source
from canary_watcher.utils.url_utils import canonicalize_url, url_hash
from canary_watcher.workers.discovery import DiscoveryStage, fetch_dedupe_key


def candidate(url: str, title: str = None) -> CandidateItem:
    canonical = canonicalize_url(url)
    return CandidateItem(url=canonical, url_hash=url_hash(canonical), title=title)


URLS = [
    'https://lab.test/blog/new-model',
    'https://lab.test/blog/old-benchmark',
    'https://lab.test/blog/old-agent',
]


class SlowListingClient:
    async def fetch_listing(self, source):
        await asyncio.sleep(5)
        return []


class TestDiscoveryDedup:
    """Only URLs unknown for the source become Items and fetch jobs."""

    @pytest.mark.asyncio
    async def test_inserts_only_new_urls(self, clock):
        source = make_source('src-1', error_count=2)
        ctx = make_context(sources=[source], listings={'src-1': [candidate(u) for u in URLS]}, clock=clock)
        ctx.items.add('src-1', URLS[1])
        ctx.items.add('src-1', URLS[2])

        stats = await DiscoveryStage(ctx).run(run_id='run-1')

        assert stats.items_found == 3
        assert stats.items_inserted == 1
        assert len(stats.inserted_item_ids) == 1

        new_item = await ctx.items.get_by_id(stats.inserted_item_ids[0])
        assert new_item.url == URLS[0]
        assert new_item.run_id == 'run-1'

        fetch_jobs = ctx.queue.job_repo.of_type(JobType.FETCH)
        assert len(fetch_jobs) == 1
        assert fetch_jobs[0].payload == {'item_id': new_item.id}
        assert fetch_jobs[0].dedupe_key == fetch_dedupe_key(new_item.id)

    @pytest.mark.asyncio
    async def test_success_resets_error_count(self, clock):
        source = make_source('src-1', error_count=2)
        ctx = make_context(sources=[source], listings={'src-1': [candidate(URLS[0])]}, clock=clock)

        await DiscoveryStage(ctx).run(run_id='run-1')

        assert source.error_count == 0
        assert source.last_success_at == clock()
        assert ctx.sources.fetch_logs == [{
            'run_id': 'run-1', 'source_id': 'src-1', 'success': True,
            'items_found': 1, 'error_message': None,
        }]

    @pytest.mark.asyncio
    async def test_rerun_is_idempotent(self, clock):
        ctx = make_context(
            sources=[make_source('src-1')],
            listings={'src-1': [candidate(u) for u in URLS]},
            clock=clock,
        )
        stage = DiscoveryStage(ctx)

        first = await stage.run(run_id='run-1')
        second = await stage.run(run_id='run-1', force=True)

        assert first.items_inserted == 3
        assert second.items_inserted == 0
        assert len(ctx.items.items) == 3
        assert len(ctx.queue.job_repo.of_type(JobType.FETCH)) == 3

    @pytest.mark.asyncio
    async def test_duplicates_within_a_listing_collapse(self, clock):
        listing = [
            candidate('https://lab.test/blog/new-model?utm_source=rss'),
            candidate('http://LAB.test/blog/new-model#comments'),
        ]
        ctx = make_context(sources=[make_source('src-1')], listings={'src-1': listing}, clock=clock)

        stats = await DiscoveryStage(ctx).run()

        assert stats.items_found == 1
        assert stats.items_inserted == 1


class TestSourceIsolation:
    """One failing source never blocks the others."""

    @pytest.mark.asyncio
    async def test_failing_source_is_recorded_and_others_continue(self, clock):
        broken = make_source('src-broken', error_count=1)
        healthy = make_source('src-ok')
        ctx = make_context(
            sources=[broken, healthy],
            listings={
                'src-broken': TransientUpstreamError('HTTP 503 for https://src-broken.test/feed.xml'),
                'src-ok': [candidate(URLS[0])],
            },
            clock=clock,
        )

        stats = await DiscoveryStage(ctx).run(run_id='run-1')

        assert stats.sources_failed == 1
        assert stats.sources_succeeded == 1
        assert stats.items_inserted == 1
        assert broken.error_count == 2
        failure_log = [log for log in ctx.sources.fetch_logs if not log['success']]
        assert failure_log[0]['source_id'] == 'src-broken'
        assert 'HTTP 503' in failure_log[0]['error_message']

    @pytest.mark.asyncio
    async def test_unsupported_source_type_is_a_per_source_error(self, clock):
        ctx = make_context(
            sources=[make_source('src-x', source_type='x')],
            listings={'src-x': PermanentUpstreamError("Source type 'x' is not supported")},
            clock=clock,
        )
        stats = await DiscoveryStage(ctx).run()
        assert stats.sources_failed == 1
        assert stats.per_source[0].error == "Source type 'x' is not supported"

    @pytest.mark.asyncio
    async def test_source_fetch_timeout(self, clock):
        source = make_source('src-slow')
        ctx = make_context(sources=[source], clock=clock, source_fetch_timeout_seconds=0.01)
        ctx.listing_client = SlowListingClient()

        stats = await DiscoveryStage(ctx).run()

        assert stats.sources_failed == 1
        assert 'timed out' in stats.per_source[0].error
        assert source.error_count == 1


    @pytest.mark.asyncio
    async def test_storage_error_in_one_source_is_isolated(self, clock):
        ctx = make_context(
            sources=[make_source('src-a'), make_source('src-b')],
            listings={
                'src-a': [candidate('https://a.test/post')],
                'src-b': [candidate('https://b.test/post')],
            },
            clock=clock,
        )
        insert = ctx.items.insert_if_absent

        async def flaky_insert(source_id, item, run_id):
            if source_id == 'src-a':
                raise ConnectionError('connection reset')
            return await insert(source_id, item, run_id)

        ctx.items.insert_if_absent = flaky_insert

        stats = await DiscoveryStage(ctx).run(run_id='run-1')

        assert stats.sources_failed == 1
        assert stats.sources_succeeded == 1
        assert stats.items_inserted == 1
        failed = [r for r in stats.per_source if not r.success]
        assert failed[0].source_id == 'src-a'
        assert 'connection reset' in failed[0].error
        assert len(ctx.queue.job_repo.of_type(JobType.FETCH)) == 1

    @pytest.mark.asyncio
    async def test_unexpected_listing_error_is_a_per_source_error(self, clock):
        ctx = make_context(
            sources=[make_source('src-a'), make_source('src-b')],
            listings={'src-a': ValueError('bad markup'), 'src-b': [candidate(URLS[0])]},
            clock=clock,
        )
        stats = await DiscoveryStage(ctx).run()
        assert stats.sources_failed == 1
        assert stats.items_inserted == 1


class TestStrandedItems:
    """An item inserted without its fetch job gets one on the next pass."""

    @pytest.mark.asyncio
    async def test_failed_enqueue_is_repaired_by_next_pass(self, clock):
        ctx = make_context(sources=[make_source('src-1')], listings={'src-1': [candidate(URLS[0])]}, clock=clock)
        enqueue = ctx.queue.enqueue
        calls = []

        async def enqueue_failing_once(*args, **kwargs):
            calls.append(args)
            if len(calls) == 1:
                raise ConnectionError('connection reset')
            return await enqueue(*args, **kwargs)

        ctx.queue.enqueue = enqueue_failing_once
        stage = DiscoveryStage(ctx)

        first = await stage.run(run_id='run-1')
        assert first.sources_failed == 1
        assert len(ctx.items.items) == 1
        assert ctx.queue.job_repo.of_type(JobType.FETCH) == []

        second = await stage.run(run_id='run-2', force=True)

        item = next(iter(ctx.items.items.values()))
        fetch_jobs = ctx.queue.job_repo.of_type(JobType.FETCH)
        assert second.items_inserted == 0
        assert second.fetch_jobs_requeued == 1
        assert len(fetch_jobs) == 1
        assert fetch_jobs[0].payload == {'item_id': item.id}

    @pytest.mark.asyncio
    async def test_open_fetch_job_in_another_run_is_not_duplicated(self, clock):
        ctx = make_context(sources=[make_source('src-1')], listings={'src-1': [candidate(URLS[0])]}, clock=clock)
        stage = DiscoveryStage(ctx)

        await stage.run(run_id='run-1')
        second = await stage.run(run_id='run-2', force=True)

        assert second.fetch_jobs_requeued == 0
        assert len(ctx.queue.job_repo.of_type(JobType.FETCH)) == 1

    @pytest.mark.asyncio
    async def test_item_past_pending_is_left_alone(self, clock):
        ctx = make_context(sources=[make_source('src-1')], listings={'src-1': [candidate(URLS[0])]}, clock=clock)
        ctx.items.add('src-1', URLS[0], status=ItemStatus.ACQUIRED)

        stats = await DiscoveryStage(ctx).run(run_id='run-1')

        assert stats.fetch_jobs_requeued == 0
        assert ctx.queue.job_repo.of_type(JobType.FETCH) == []


class TestDueSources:

    @pytest.mark.asyncio
    async def test_cadence_skips_recently_checked_sources(self, clock):
        source = make_source('src-1', cadence='daily', last_success_at=clock() - timedelta(hours=2))
        ctx = make_context(sources=[source], listings={'src-1': [candidate(URLS[0])]}, clock=clock)

        stats = await DiscoveryStage(ctx).run()

        assert stats.sources_skipped == 1
        assert stats.sources_checked == 0
        assert ctx.listing_client.calls == []

    @pytest.mark.asyncio
    async def test_force_ignores_cadence(self, clock):
        source = make_source('src-1', cadence='weekly', last_success_at=clock() - timedelta(days=1))
        ctx = make_context(sources=[source], listings={'src-1': [candidate(URLS[0])]}, clock=clock)

        stats = await DiscoveryStage(ctx).run(force=True)

        assert stats.sources_checked == 1
        assert stats.items_inserted == 1

    @pytest.mark.asyncio
    async def test_placeholder_and_inactive_sources_are_skipped(self, clock):
        placeholder = make_source('src-placeholder', url='https://example.com/feed')
        inactive = make_source('src-off', is_active=False)
        ctx = make_context(sources=[placeholder, inactive], clock=clock)

        stats = await DiscoveryStage(ctx).run(force=True)

        assert stats.sources_checked == 0
        assert ctx.listing_client.calls == []

    @pytest.mark.asyncio
    async def test_restrict_to_source_ids(self, clock):
        ctx = make_context(
            sources=[make_source('src-1'), make_source('src-2')],
            listings={'src-1': [candidate(URLS[0])], 'src-2': [candidate(URLS[1])]},
            clock=clock,
        )
        stats = await DiscoveryStage(ctx).run(source_ids=['src-2'])
        assert ctx.listing_client.calls == ['src-2']
        assert stats.items_inserted == 1


class TestDryRun:

    @pytest.mark.asyncio
    async def test_dry_run_writes_nothing(self, clock):
        source = make_source('src-1', error_count=3)
        ctx = make_context(sources=[source], listings={'src-1': [candidate(u) for u in URLS]}, clock=clock)

        stats = await DiscoveryStage(ctx).run(dry_run=True)

        assert stats.dry_run is True
        assert stats.items_found == 3
        assert stats.items_inserted == 0
        assert ctx.items.items == {}
        assert ctx.queue.job_repo.jobs == {}
        assert ctx.sources.fetch_logs == []
        assert source.error_count == 3
