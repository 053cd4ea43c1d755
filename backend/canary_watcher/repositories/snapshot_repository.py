"""
Snapshot Repository - one DailySnapshot per date, upserted
"""
import logging
from datetime import date
from typing import Optional, List

import asyncpg

from canary_watcher.models import DailySnapshot, AxisScore, CanaryStatus, AutonomyAssessment

logger = logging.getLogger(__name__)


def _row_to_snapshot(row) -> DailySnapshot:
    return DailySnapshot(
        date=row['date'],
        axis_scores={axis: AxisScore.from_dict(v) for axis, v in (row['axis_scores'] or {}).items()},
        coverage_score=float(row['coverage_score']),
        signal_ids=list(row['signal_ids'] or []),
        canary_statuses=[CanaryStatus.from_dict(c) for c in row['canary_statuses'] or []],
        composite_score=row['composite_score'],
        trend=row['trend'],
        week_over_week_delta=float(row['week_over_week_delta'] or 0.0),
        gap_axes=list(row['gap_axes'] or []),
        autonomy=AutonomyAssessment.from_dict(row['autonomy']),
        top_movers=list(row['top_movers'] or []),
        notes=list(row['notes'] or []),
        scoring_version=row['scoring_version'],
        created_at=row['created_at'],
    )


class SnapshotRepository:

    def __init__(self, db_pool: asyncpg.Pool):
        self.db_pool = db_pool

    async def get(self, day: date) -> Optional[DailySnapshot]:
        async with self.db_pool.acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM daily_snapshots WHERE date = $1", day)
            return _row_to_snapshot(row) if row else None

    async def get_latest(self) -> Optional[DailySnapshot]:
        async with self.db_pool.acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM daily_snapshots ORDER BY date DESC LIMIT 1")
            return _row_to_snapshot(row) if row else None

    async def list_range(self, start: date, end: date) -> List[DailySnapshot]:
        async with self.db_pool.acquire() as conn:
            rows = await conn.fetch("""
                SELECT * FROM daily_snapshots
                WHERE date >= $1 AND date <= $2
                ORDER BY date
            """, start, end)
            return [_row_to_snapshot(r) for r in rows]

    async def upsert(self, snapshot: DailySnapshot) -> None:
        """Insert or fully replace the snapshot for its date"""
        data = snapshot.to_dict()
        async with self.db_pool.acquire() as conn:
            await conn.execute("""
                INSERT INTO daily_snapshots (date, axis_scores, coverage_score, signal_ids,
                                             canary_statuses, composite_score, trend,
                                             week_over_week_delta, gap_axes, autonomy, notes,
                                             top_movers, scoring_version)
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13)
                ON CONFLICT (date) DO UPDATE SET
                    axis_scores = EXCLUDED.axis_scores,
                    coverage_score = EXCLUDED.coverage_score,
                    signal_ids = EXCLUDED.signal_ids,
                    canary_statuses = EXCLUDED.canary_statuses,
                    composite_score = EXCLUDED.composite_score,
                    trend = EXCLUDED.trend,
                    week_over_week_delta = EXCLUDED.week_over_week_delta,
                    gap_axes = EXCLUDED.gap_axes,
                    autonomy = EXCLUDED.autonomy,
                    notes = EXCLUDED.notes,
                    top_movers = EXCLUDED.top_movers,
                    scoring_version = EXCLUDED.scoring_version,
                    updated_at = NOW()
            """, snapshot.date, data['axis_scores'], snapshot.coverage_score, data['signal_ids'],
                data['canary_statuses'], snapshot.composite_score, snapshot.trend,
                snapshot.week_over_week_delta, data['gap_axes'], data['autonomy'], data['notes'],
                data['top_movers'], snapshot.scoring_version)
            logger.info(f"Upserted snapshot for {snapshot.date}")
