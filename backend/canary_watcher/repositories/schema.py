"""
Schema bootstrap - applies db/schema.sql
"""
import logging
from pathlib import Path

import asyncpg

logger = logging.getLogger(__name__)

SCHEMA_PATH = Path(__file__).resolve().parent.parent / 'db' / 'schema.sql'


async def apply_schema(db_pool: asyncpg.Pool) -> None:
    """Apply the DDL; every statement is guarded with IF [NOT] EXISTS so this is repeatable"""
    ddl = SCHEMA_PATH.read_text()
    async with db_pool.acquire() as conn:
        await conn.execute(ddl)
    logger.info(f"Applied schema from {SCHEMA_PATH}")
