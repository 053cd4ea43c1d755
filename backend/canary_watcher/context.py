"""
Execution context threaded through every stage call

Stages never reach for a module-level pool or client: everything they touch
comes from here, so tests can build a context from in-memory fakes.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Optional

import httpx
from openai import AsyncOpenAI

from canary_watcher.config import Settings, ScoringPolicy, DEFAULT_POLICY, PostgresConfig, create_postgres_pool
from canary_watcher.repositories import (
    SourceRepository,
    ItemRepository,
    DocumentRepository,
    SignalRepository,
    JobRepository,
    RunRepository,
    SnapshotRepository,
    CanaryRepository,
)
from canary_watcher.services.blob_store import BlobStore, create_blob_store
from canary_watcher.services.job_queue import JobQueue
from canary_watcher.utils.datetime_utils import utcnow

logger = logging.getLogger(__name__)


@dataclass
class PipelineContext:
    settings: Settings
    sources: Any
    items: Any
    documents: Any
    signals: Any
    snapshots: Any
    canaries: Any
    queue: JobQueue
    blob_store: BlobStore
    listing_client: Any = None
    content_client: Any = None
    extractor: Any = None
    policy: ScoringPolicy = DEFAULT_POLICY
    clock: Callable[[], datetime] = utcnow
    _closers: list = field(default_factory=list, repr=False)

    def now(self) -> datetime:
        return self.clock()

    @classmethod
    async def create(cls, settings: Settings, with_extractor: bool = True) -> 'PipelineContext':
        """
        Wire production collaborators: asyncpg pool, httpx client, blob store, AI client

        Configuration problems raise ConfigurationError here, before any work starts.
        """
        from canary_watcher.services.feed_client import ListingClient, WebSearchClient
        from canary_watcher.services.content_client import ContentClient
        from canary_watcher.services.ai_extractor import SignalExtractor

        blob_store = create_blob_store(settings)
        extractor = SignalExtractor.from_settings(settings) if with_extractor else None

        pool = await create_postgres_pool(PostgresConfig.from_settings(settings))
        http_client = httpx.AsyncClient(
            timeout=settings.http_timeout_seconds,
            follow_redirects=True,
            max_redirects=settings.http_max_redirects,
            headers={'User-Agent': settings.user_agent},
        )

        search_client = None
        if settings.openrouter_api_key:
            search_client = WebSearchClient(
                AsyncOpenAI(
                    api_key=settings.openrouter_api_key,
                    base_url=settings.openrouter_base_url,
                    timeout=settings.source_fetch_timeout_seconds,
                    max_retries=2,
                ),
                settings.search_model,
            )

        ctx = cls(
            settings=settings,
            sources=SourceRepository(pool),
            items=ItemRepository(pool),
            documents=DocumentRepository(pool),
            signals=SignalRepository(pool),
            snapshots=SnapshotRepository(pool),
            canaries=CanaryRepository(pool),
            queue=JobQueue.from_settings(JobRepository(pool), RunRepository(pool), settings),
            blob_store=blob_store,
            listing_client=ListingClient(http_client, search_client),
            content_client=ContentClient(http_client),
            extractor=extractor,
        )
        ctx._closers = [http_client.aclose, pool.close]
        return ctx

    async def close(self) -> None:
        for closer in self._closers:
            await closer()
        self._closers = []
