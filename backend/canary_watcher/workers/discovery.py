"""
Discovery stage - pull candidate items from registered sources

For each active source due for a check:
1. fetch its listing (feed / curated page / search)
2. insert only URLs not yet known for that source (unique constraint, no pre-read)
3. enqueue one fetch job per newly inserted item
   (and re-enqueue one for a known item still pending with no open fetch job)
4. record success (reset error_count) or failure (increment) and a fetch log row

One source failing never blocks the others.
"""
import asyncio
import logging
from dataclasses import dataclass, field, asdict
from typing import List, Optional

from canary_watcher.context import PipelineContext
from canary_watcher.errors import PipelineError
from canary_watcher.models import ItemStatus, JobType, Source
from canary_watcher.utils.datetime_utils import elapsed_ms

logger = logging.getLogger(__name__)


def fetch_dedupe_key(item_id: str) -> str:
    return f"FETCH:{item_id}"


@dataclass
class SourceResult:
    source_id: str
    name: str
    success: bool
    items_found: int = 0
    items_inserted: int = 0
    error: Optional[str] = None


@dataclass
class DiscoveryStats:
    run_id: Optional[str] = None
    dry_run: bool = False
    items_found: int = 0
    items_inserted: int = 0
    inserted_item_ids: List[str] = field(default_factory=list)
    fetch_jobs_requeued: int = 0
    sources_checked: int = 0
    sources_succeeded: int = 0
    sources_failed: int = 0
    sources_skipped: int = 0
    per_source: List[SourceResult] = field(default_factory=list)
    duration_ms: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


class DiscoveryStage:
    name = 'discovery'

    def __init__(self, ctx: PipelineContext):
        self.ctx = ctx

    async def run(
        self,
        run_id: Optional[str] = None,
        force: bool = False,
        dry_run: bool = False,
        source_ids: Optional[List[str]] = None
    ) -> DiscoveryStats:
        """
        Discover new items across due sources

        Args:
            run_id: Pipeline run the inserted items and fetch jobs belong to
            force: Ignore cadence and check every active source
            dry_run: Fetch listings but write nothing
            source_ids: Restrict the pass to these sources

        Returns:
            DiscoveryStats
        """
        started = self.ctx.now()
        stats = DiscoveryStats(run_id=run_id, dry_run=dry_run)

        sources = await self.ctx.sources.list_active()
        if source_ids:
            wanted = set(source_ids)
            sources = [s for s in sources if s.id in wanted]

        due = []
        for source in sources:
            if source.is_placeholder or not source.is_due(started, force=force):
                stats.sources_skipped += 1
                continue
            due.append(source)

        logger.info(f"[{self.name}] Checking {len(due)} source(s), skipped {stats.sources_skipped}")

        semaphore = asyncio.Semaphore(max(1, self.ctx.settings.discovery_concurrency))
        results = await asyncio.gather(*[
            self._discover_source(source, run_id, dry_run, semaphore, stats)
            for source in due
        ])

        for result in results:
            stats.per_source.append(result)
            stats.sources_checked += 1
            stats.items_found += result.items_found
            if result.success:
                stats.sources_succeeded += 1
            else:
                stats.sources_failed += 1

        stats.items_inserted = len(stats.inserted_item_ids)
        stats.duration_ms = elapsed_ms(started, self.ctx.now())
        logger.info(
            f"[{self.name}] Found {stats.items_found}, inserted {stats.items_inserted}, "
            f"{stats.sources_failed} source(s) failed in {stats.duration_ms}ms"
        )
        return stats

    async def _discover_source(
        self,
        source: Source,
        run_id: Optional[str],
        dry_run: bool,
        semaphore: asyncio.Semaphore,
        stats: DiscoveryStats
    ) -> SourceResult:
        async with semaphore:
            try:
                return await self._check_source(source, run_id, dry_run, stats)
            except Exception as e:
                logger.error(f"[{self.name}] Unexpected error discovering {source.name}: {e}", exc_info=True)
                return await self._record_failure(source, run_id, dry_run, f"{type(e).__name__}: {e}")

    async def _check_source(
        self,
        source: Source,
        run_id: Optional[str],
        dry_run: bool,
        stats: DiscoveryStats
    ) -> SourceResult:
        timeout = self.ctx.settings.source_fetch_timeout_seconds
        try:
            candidates = await asyncio.wait_for(
                self.ctx.listing_client.fetch_listing(source), timeout=timeout
            )
        except asyncio.TimeoutError:
            return await self._record_failure(source, run_id, dry_run, f"Source fetch timed out ({timeout:.0f}s)")
        except PipelineError as e:
            return await self._record_failure(source, run_id, dry_run, str(e))

        unique = []
        seen = set()
        for candidate in candidates:
            if candidate.url_hash in seen:
                continue
            seen.add(candidate.url_hash)
            unique.append(candidate)

        result = SourceResult(source_id=source.id, name=source.name, success=True, items_found=len(unique))
        if dry_run:
            return result

        for candidate in unique:
            item_id = await self.ctx.items.insert_if_absent(source.id, candidate, run_id)
            if item_id is None:
                if await self._requeue_stranded(source, candidate, run_id):
                    stats.fetch_jobs_requeued += 1
                continue
            stats.inserted_item_ids.append(item_id)
            result.items_inserted += 1
            await self.ctx.queue.enqueue(
                JobType.FETCH,
                {'item_id': item_id},
                run_id,
                dedupe_key=fetch_dedupe_key(item_id),
            )

        await self.ctx.sources.record_success(source.id, self.ctx.now())
        await self.ctx.sources.log_fetch(run_id, source.id, True, len(unique))
        logger.info(f"[{self.name}] {source.name}: {len(unique)} found, {result.items_inserted} new")
        return result

    async def _requeue_stranded(self, source: Source, candidate, run_id: Optional[str]) -> bool:
        """
        Give a known, still-pending item a fetch job when it has none open

        An earlier pass can insert the item and then fail before enqueuing.
        """
        item = await self.ctx.items.get_by_url(source.id, candidate.url)
        if item is None or item.status != ItemStatus.PENDING:
            return False
        key = fetch_dedupe_key(item.id)
        if await self.ctx.queue.find_open(JobType.FETCH, key) is not None:
            return False
        await self.ctx.queue.enqueue(JobType.FETCH, {'item_id': item.id}, run_id, dedupe_key=key)
        logger.info(f"[{self.name}] Re-enqueued fetch for pending item {item.id}")
        return True

    async def _record_failure(
        self,
        source: Source,
        run_id: Optional[str],
        dry_run: bool,
        error: str
    ) -> SourceResult:
        logger.warning(f"[{self.name}] {source.name} failed: {error}")
        if not dry_run:
            try:
                await self.ctx.sources.record_failure(source.id)
                await self.ctx.sources.log_fetch(run_id, source.id, False, 0, error)
            except Exception as e:
                logger.error(f"[{self.name}] Could not record failure for {source.name}: {e}", exc_info=True)
        return SourceResult(source_id=source.id, name=source.name, success=False, error=error)
