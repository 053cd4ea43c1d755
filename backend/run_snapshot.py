#!/usr/bin/env python3
"""
Build the daily snapshot for one date (default: today, UTC)

Usage:
    python run_snapshot.py
    python run_snapshot.py --date 2026-01-15 --dry-run
"""
import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv
env_path = Path(__file__).parent.parent / '.env'
load_dotenv(env_path)

from canary_watcher.config import get_settings
from canary_watcher.context import PipelineContext
from canary_watcher.utils.datetime_utils import parse_date
from canary_watcher.workers.aggregation import SnapshotBuilder

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s [%(name)s] %(levelname)s: %(message)s'
)


async def main(day, dry_run: bool) -> int:
    # Aggregation never calls the AI client
    ctx = await PipelineContext.create(get_settings(), with_extractor=False)
    try:
        stats = await SnapshotBuilder(ctx).run(day, dry_run=dry_run)
    finally:
        await ctx.close()
    print(json.dumps(stats.to_dict(), indent=2))
    return 0


if __name__ == '__main__':
    parser = argparse.ArgumentParser(description="Build a daily snapshot")
    parser.add_argument('--date', default=None, help="YYYY-MM-DD")
    parser.add_argument('--dry-run', action='store_true', help="Compute without writing")
    args = parser.parse_args()
    sys.exit(asyncio.run(main(parse_date(args.date) if args.date else None, args.dry_run)))
