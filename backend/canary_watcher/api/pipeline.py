"""
Pipeline trigger API router

Manual stage triggers plus queue and source observability. Every trigger
answers {ok: true, stats} or {ok: false, error}; configuration problems are
reported as HTTP 500.
"""
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from canary_watcher.context import PipelineContext
from canary_watcher.errors import ConfigurationError, InvalidJobPayload, InvalidTransition
from canary_watcher.models import JobStatus
from canary_watcher.services.scoring import placeholder_snapshot
from canary_watcher.services.source_health import build_health_report
from canary_watcher.utils.datetime_utils import parse_date
from canary_watcher.workers.acquisition import AcquisitionStage
from canary_watcher.workers.aggregation import SnapshotBuilder
from canary_watcher.workers.discovery import DiscoveryStage
from canary_watcher.workers.signal_extraction import SignalExtractionStage

logger = logging.getLogger(__name__)

router = APIRouter(tags=["pipeline"])

DEAD_JOBS_LIMIT = 20


class StageRequest(BaseModel):
    """Body shared by the stage triggers; every field is optional"""
    model_config = ConfigDict(populate_by_name=True)

    item_ids: Optional[List[str]] = Field(default=None, alias='itemIds')
    document_ids: Optional[List[str]] = Field(default=None, alias='documentIds')
    source_ids: Optional[List[str]] = Field(default=None, alias='sourceIds')
    dry_run: bool = Field(default=False, alias='dryRun')
    force: bool = False
    date: Optional[str] = None


def get_context(request: Request) -> PipelineContext:
    ctx = getattr(request.app.state, 'ctx', None)
    if ctx is None:
        raise HTTPException(status_code=503, detail="Pipeline context not initialised")
    return ctx


def _failure(error: Exception, status_code: int) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={'ok': False, 'error': str(error)})


async def _run_stage(stage_name: str, call):
    try:
        stats = await call()
    except ConfigurationError as e:
        logger.error(f"[{stage_name}] Configuration error: {e}")
        return _failure(e, 500)
    except (InvalidJobPayload, ValueError) as e:
        return _failure(e, 400)
    except Exception as e:
        logger.error(f"[{stage_name}] Trigger failed: {e}", exc_info=True)
        return _failure(e, 500)
    return {'ok': True, 'stats': stats.to_dict()}


@router.post("/discover")
async def trigger_discover(body: Optional[StageRequest] = None, ctx: PipelineContext = Depends(get_context)):
    """Run discovery across due sources (force ignores cadence)"""
    body = body or StageRequest()
    stage = DiscoveryStage(ctx)
    return await _run_stage(
        'discovery',
        lambda: stage.run(force=body.force, dry_run=body.dry_run, source_ids=body.source_ids),
    )


@router.post("/acquire")
async def trigger_acquire(body: Optional[StageRequest] = None, ctx: PipelineContext = Depends(get_context)):
    """Acquire explicit items, or the next batch of pending fetch jobs"""
    body = body or StageRequest()
    stage = AcquisitionStage(ctx)
    return await _run_stage('acquisition', lambda: stage.run(item_ids=body.item_ids, dry_run=body.dry_run))


@router.post("/process")
async def trigger_process(body: Optional[StageRequest] = None, ctx: PipelineContext = Depends(get_context)):
    """Extract and map explicit documents, or the next batch of extract jobs"""
    body = body or StageRequest()
    if ctx.extractor is None:
        return _failure(ConfigurationError("AI extractor is not configured"), 500)
    stage = SignalExtractionStage(ctx)
    return await _run_stage('extraction', lambda: stage.run(document_ids=body.document_ids))


@router.post("/snapshot")
async def trigger_snapshot(body: Optional[StageRequest] = None, ctx: PipelineContext = Depends(get_context)):
    """Build the daily snapshot for body.date (default today, UTC)"""
    body = body or StageRequest()
    try:
        day = parse_date(body.date) if body.date else None
    except ValueError:
        return _failure(ValueError("Invalid date; use YYYY-MM-DD"), 400)
    builder = SnapshotBuilder(ctx)
    return await _run_stage('aggregation', lambda: builder.run(day, dry_run=body.dry_run))


@router.get("/jobs")
async def get_jobs(ctx: PipelineContext = Depends(get_context)):
    """Job counts by type and status, plus the most recent dead jobs"""
    counts = await ctx.queue.counts()
    dead = await ctx.queue.list_jobs(status=JobStatus.DEAD, limit=DEAD_JOBS_LIMIT)
    return {
        'ok': True,
        'counts': counts,
        'ready': await ctx.queue.count_ready(),
        'dead_jobs': [job.to_dict() for job in dead],
    }


@router.post("/jobs/{job_id}/requeue")
async def requeue_job(job_id: str, ctx: PipelineContext = Depends(get_context)):
    """Manual retry: a job in retry goes back to pending"""
    try:
        job = await ctx.queue.requeue(job_id)
    except InvalidJobPayload as e:
        return _failure(e, 404)
    except InvalidTransition as e:
        return _failure(e, 409)
    return {'ok': True, 'job': job.to_dict()}


@router.get("/sources/health-report")
async def get_source_health(ctx: PipelineContext = Depends(get_context)):
    sources = await ctx.sources.list_all()
    last_errors = await ctx.sources.last_errors()
    return {'ok': True, **build_health_report(sources, last_errors, ctx.now())}


@router.get("/snapshot/{date}")
async def get_snapshot(date: str, ctx: PipelineContext = Depends(get_context)):
    """
    Snapshot for one date

    A date that has never been aggregated gets an "insufficient data"
    placeholder (autonomy level 1) instead of a 404.
    """
    try:
        day = parse_date(date)
    except ValueError:
        return _failure(ValueError("Invalid date format. Use YYYY-MM-DD."), 400)

    snapshot = await ctx.snapshots.get(day)
    if snapshot is None:
        placeholder = placeholder_snapshot(day, ctx.settings.scoring_version, ctx.policy)
        return {'ok': True, 'exists': False, 'snapshot': placeholder.to_dict()}
    return {'ok': True, 'exists': True, 'snapshot': snapshot.to_dict()}
