"""
Aggregation stage - daily snapshot builder

Rolls up every signal whose document was acquired on a date into that date's
DailySnapshot. The math lives in services.scoring; this stage only gathers
inputs and upserts the result, so re-running a date replaces its row.
"""
import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Optional

from canary_watcher.context import PipelineContext
from canary_watcher.errors import InvalidJobPayload
from canary_watcher.models import DailySnapshot, Job
from canary_watcher.services.scoring import build_snapshot
from canary_watcher.utils.datetime_utils import elapsed_ms, parse_date

logger = logging.getLogger(__name__)

WEEK = 7


@dataclass
class AggregationStats:
    date: str
    signal_count: int = 0
    written: bool = False
    dry_run: bool = False
    snapshot: dict = field(default_factory=dict)
    duration_ms: int = 0

    def to_dict(self) -> dict:
        return {
            'date': self.date,
            'signal_count': self.signal_count,
            'written': self.written,
            'dry_run': self.dry_run,
            'snapshot': self.snapshot,
            'duration_ms': self.duration_ms,
        }


class SnapshotBuilder:
    name = 'aggregation'

    def __init__(self, ctx: PipelineContext):
        self.ctx = ctx

    async def run(self, day: Optional[date] = None, dry_run: bool = False) -> AggregationStats:
        """
        Build (and unless dry_run, upsert) the snapshot for `day`

        Args:
            day: Calendar date in UTC, defaults to today
            dry_run: Compute without writing

        Returns:
            AggregationStats with the snapshot as a dict
        """
        started = self.ctx.now()
        day = day or started.date()
        stats = AggregationStats(date=day.isoformat(), dry_run=dry_run)

        snapshot = await self.compute(day)
        stats.signal_count = len(snapshot.signal_ids)
        stats.snapshot = snapshot.to_dict()

        if not dry_run:
            await self.ctx.snapshots.upsert(snapshot)
            stats.written = True

        stats.duration_ms = elapsed_ms(started, self.ctx.now())
        logger.info(
            f"[{self.name}] {day.isoformat()}: {stats.signal_count} signal(s), "
            f"composite={snapshot.composite_score} trend={snapshot.trend} "
            f"{'(dry run)' if dry_run else 'written'}"
        )
        return stats

    async def compute(self, day: date) -> DailySnapshot:
        signals = await self.ctx.signals.list_for_date(day)
        canaries = await self.ctx.canaries.list_active()
        previous_day = await self.ctx.snapshots.get(day - timedelta(days=1))
        week_ago = await self.ctx.snapshots.get(day - timedelta(days=WEEK))
        weekly_signal_count = await self.ctx.signals.count_in_window(day, WEEK)

        return build_snapshot(
            day,
            signals,
            canaries,
            previous_day,
            week_ago,
            weekly_signal_count,
            self.ctx.settings.scoring_version,
            self.ctx.policy,
        )

    async def process_job(self, job: Job) -> dict:
        """Aggregate job handler, payload {'date': 'YYYY-MM-DD'}"""
        raw = job.payload.get('date')
        try:
            day = parse_date(raw)
        except (TypeError, ValueError) as e:
            raise InvalidJobPayload(f"aggregate job {job.id} has a bad date {raw!r}: {e}")
        stats = await self.run(day)
        return stats.to_dict()
