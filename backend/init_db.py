#!/usr/bin/env python3
"""
Create the schema and load seed data (canary definitions + source registry)

Safe to re-run: DDL uses IF NOT EXISTS, canaries are upserted and sources
are inserted only when their name is new.
"""
import asyncio
import logging
from pathlib import Path

from dotenv import load_dotenv
env_path = Path(__file__).parent.parent / '.env'
load_dotenv(env_path)

from canary_watcher.config import PostgresConfig, create_postgres_pool
from canary_watcher.db.seeds import CANARY_DEFINITIONS, SEED_SOURCES
from canary_watcher.repositories import CanaryRepository, SourceRepository
from canary_watcher.repositories.schema import apply_schema

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s [%(name)s] %(levelname)s: %(message)s'
)
logger = logging.getLogger('init-db')


async def main():
    db_pool = await create_postgres_pool(PostgresConfig.from_env())
    try:
        await apply_schema(db_pool)
        await CanaryRepository(db_pool).upsert_many(CANARY_DEFINITIONS)
        inserted = await SourceRepository(db_pool).insert_seed(SEED_SOURCES)
        logger.info(f"Seeded {len(CANARY_DEFINITIONS)} canaries, {inserted} new source(s)")
    finally:
        await db_pool.close()


if __name__ == '__main__':
    asyncio.run(main())
