"""
Repositories - asyncpg storage, one class per table
"""
from .source_repository import SourceRepository
from .item_repository import ItemRepository
from .document_repository import DocumentRepository
from .signal_repository import SignalRepository
from .job_repository import JobRepository
from .run_repository import RunRepository
from .snapshot_repository import SnapshotRepository
from .canary_repository import CanaryRepository
from .schema import apply_schema

__all__ = [
    'SourceRepository',
    'ItemRepository',
    'DocumentRepository',
    'SignalRepository',
    'JobRepository',
    'RunRepository',
    'SnapshotRepository',
    'CanaryRepository',
    'apply_schema',
]
