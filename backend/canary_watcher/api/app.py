"""
Canary Watcher - FastAPI app for pipeline triggers and observability
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from canary_watcher import __version__
from canary_watcher.api.pipeline import router as pipeline_router
from canary_watcher.config import get_settings
from canary_watcher.context import PipelineContext

logger = logging.getLogger(__name__)


def create_app(ctx: Optional[PipelineContext] = None) -> FastAPI:
    """
    Build the app. With no context given, the lifespan wires production
    collaborators from settings and closes them on shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = ctx is None
        app.state.ctx = ctx or await PipelineContext.create(get_settings())
        logger.info("Pipeline context ready")
        try:
            yield
        finally:
            if owned:
                await app.state.ctx.close()
                logger.info("Pipeline context closed")

    app = FastAPI(
        title="Canary Watcher",
        description="AI capability signal pipeline: discovery, acquisition, extraction, daily snapshots",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(pipeline_router, prefix="/api/pipeline")

    @app.get("/health")
    async def health():
        return {"status": "ok", "service": "canary-watcher"}

    return app


app = create_app()
