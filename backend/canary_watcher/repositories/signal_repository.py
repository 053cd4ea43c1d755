"""
Signal Repository - extracted claims
"""
import logging
from datetime import date, timedelta
from typing import List

import asyncpg

from canary_watcher.models import Signal, AxisImpact, Metric, Citation
from canary_watcher.utils.datetime_utils import day_bounds

logger = logging.getLogger(__name__)


def _row_to_signal(row) -> Signal:
    return Signal(
        id=str(row['id']),
        document_id=str(row['document_id']),
        claim_summary=row['claim_summary'],
        axes_impacted=[AxisImpact.from_dict(a) for a in row['axes_impacted'] or []],
        metric=Metric.from_dict(row['metric']),
        confidence=float(row['confidence']),
        citations=[Citation.from_dict(c) for c in row['citations'] or []],
        scoring_version=row['scoring_version'],
        classification=row['classification'],
        source_url=row['source_url'],
        created_at=row['created_at'],
    )


class SignalRepository:

    def __init__(self, db_pool: asyncpg.Pool):
        self.db_pool = db_pool

    async def replace_for_document(self, document_id: str, signals: List[Signal]) -> List[str]:
        """
        Replace every signal of a document in one transaction

        Re-mapping a document therefore never duplicates signals.

        Returns:
            Ids of the inserted signals
        """
        ids = []
        async with self.db_pool.acquire() as conn:
            async with conn.transaction():
                await conn.execute("DELETE FROM signals WHERE document_id = $1", document_id)
                for s in signals:
                    signal_id = await conn.fetchval("""
                        INSERT INTO signals (document_id, claim_summary, classification,
                                             axes_impacted, metric, confidence, citations,
                                             source_url, scoring_version)
                        VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
                        RETURNING id
                    """, document_id, s.claim_summary, s.classification,
                        [a.to_dict() for a in s.axes_impacted],
                        s.metric.to_dict() if s.metric else None,
                        s.confidence,
                        [c.to_dict() for c in s.citations],
                        s.source_url, s.scoring_version)
                    ids.append(str(signal_id))
        return ids

    async def list_for_date(self, day: date) -> List[Signal]:
        """Signals whose document was acquired on the given UTC day"""
        start, end = day_bounds(day)
        async with self.db_pool.acquire() as conn:
            rows = await conn.fetch("""
                SELECT s.* FROM signals s
                JOIN documents d ON d.id = s.document_id
                WHERE d.acquired_at >= $1 AND d.acquired_at < $2
                ORDER BY s.id
            """, start, end)
            return [_row_to_signal(r) for r in rows]

    async def count_in_window(self, end_day: date, days: int = 7) -> int:
        """Signals whose document was acquired in the `days` days ending on end_day"""
        start, _ = day_bounds(end_day - timedelta(days=days - 1))
        _, end = day_bounds(end_day)
        async with self.db_pool.acquire() as conn:
            return await conn.fetchval("""
                SELECT COUNT(*) FROM signals s
                JOIN documents d ON d.id = s.document_id
                WHERE d.acquired_at >= $1 AND d.acquired_at < $2
            """, start, end)

    async def list_for_document(self, document_id: str) -> List[Signal]:
        async with self.db_pool.acquire() as conn:
            rows = await conn.fetch("""
                SELECT * FROM signals WHERE document_id = $1 ORDER BY created_at, id
            """, document_id)
            return [_row_to_signal(r) for r in rows]
