#!/usr/bin/env python3
"""
Canary Watcher pipeline entry point

Usage:
    python run_pipeline.py                      # cron mode: one run within the time budget
    python run_pipeline.py --budget 600 --force # shorter budget, ignore source cadence
    python run_pipeline.py --worker             # long-running queue worker
    python run_pipeline.py --serve --port 8000  # trigger/observability API
"""
import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

# Load .env from project root (one level up from backend/)
from dotenv import load_dotenv
env_path = Path(__file__).parent.parent / '.env'
load_dotenv(env_path)

from canary_watcher.config import get_settings
from canary_watcher.context import PipelineContext
from canary_watcher.errors import ConfigurationError
from canary_watcher.services.dispatcher import PipelineWorker
from canary_watcher.services.pipeline_runner import PipelineRunner

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s [%(name)s] %(levelname)s: %(message)s'
)
logger = logging.getLogger('run-pipeline')


async def run_once(budget, force: bool) -> int:
    ctx = await PipelineContext.create(get_settings())
    try:
        totals = await PipelineRunner(ctx).run(budget_seconds=budget, force=force)
    finally:
        await ctx.close()
    print(json.dumps(totals.to_dict(), indent=2))
    return 0 if totals.jobs_failed == 0 else 1


async def run_worker(name: str, batch_size: int) -> int:
    ctx = await PipelineContext.create(get_settings())
    worker = PipelineWorker(ctx, worker_name=name, batch_size=batch_size)
    try:
        await worker.start()
    finally:
        await ctx.close()
        logger.info("Worker shut down cleanly")
    return 0


def serve(host: str, port: int) -> int:
    import uvicorn
    from canary_watcher.api.app import create_app

    uvicorn.run(create_app(), host=host, port=port)
    return 0


def main() -> int:
    parser = argparse.ArgumentParser(description="Run the Canary Watcher pipeline")
    parser.add_argument('--budget', type=int, default=None, help="Wall-clock budget in seconds")
    parser.add_argument('--force', action='store_true', help="Ignore source cadence")
    parser.add_argument('--worker', action='store_true', help="Run a long-lived queue worker")
    parser.add_argument('--name', default='pipeline-worker', help="Worker name (lock owner)")
    parser.add_argument('--batch-size', type=int, default=5)
    parser.add_argument('--serve', action='store_true', help="Serve the pipeline API")
    parser.add_argument('--host', default='0.0.0.0')
    parser.add_argument('--port', type=int, default=8000)
    args = parser.parse_args()

    try:
        if args.serve:
            return serve(args.host, args.port)
        if args.worker:
            return asyncio.run(run_worker(args.name, args.batch_size))
        return asyncio.run(run_once(args.budget, args.force))
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        return 2
    except KeyboardInterrupt:
        logger.info("Received keyboard interrupt, shutting down...")
        return 130


if __name__ == '__main__':
    sys.exit(main())
