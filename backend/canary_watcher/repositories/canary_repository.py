"""
Canary Definition Repository - static threshold-alarm config
"""
import logging
from typing import List

import asyncpg

from canary_watcher.models import CanaryDefinition

logger = logging.getLogger(__name__)


class CanaryRepository:

    def __init__(self, db_pool: asyncpg.Pool):
        self.db_pool = db_pool

    async def list_active(self) -> List[CanaryDefinition]:
        async with self.db_pool.acquire() as conn:
            rows = await conn.fetch("""
                SELECT * FROM canary_definitions
                WHERE is_active = TRUE
                ORDER BY display_order, id
            """)
            return [
                CanaryDefinition(
                    id=r['id'],
                    name=r['name'],
                    axes_watched=list(r['axes_watched']),
                    description=r['description'],
                    thresholds=r['thresholds'] or {},
                    display_order=r['display_order'],
                    is_active=r['is_active'],
                )
                for r in rows
            ]

    async def upsert_many(self, definitions: List[CanaryDefinition]) -> None:
        async with self.db_pool.acquire() as conn:
            for c in definitions:
                await conn.execute("""
                    INSERT INTO canary_definitions (id, name, description, axes_watched,
                                                    thresholds, display_order, is_active)
                    VALUES ($1, $2, $3, $4, $5, $6, $7)
                    ON CONFLICT (id) DO UPDATE SET
                        name = EXCLUDED.name,
                        description = EXCLUDED.description,
                        axes_watched = EXCLUDED.axes_watched,
                        thresholds = EXCLUDED.thresholds,
                        display_order = EXCLUDED.display_order,
                        is_active = EXCLUDED.is_active
                """, c.id, c.name, c.description, c.axes_watched, c.thresholds,
                    c.display_order, c.is_active)
        logger.info(f"Upserted {len(definitions)} canary definitions")
