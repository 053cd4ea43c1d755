"""
Item domain model - one discovered URL per source
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Optional


class ItemStatus:
    PENDING = 'pending'
    ACQUIRED = 'acquired'
    PROCESSED = 'processed'
    FAILED = 'failed'


@dataclass
class CandidateItem:
    """A (url, title) pair pulled from a source listing, already canonicalised"""
    url: str
    url_hash: str
    title: Optional[str] = None
    published_at: Optional[datetime] = None


@dataclass
class Item:
    """
    Discovered candidate. (source_id, url) is unique: discovery dedups on insert.
    """
    id: str
    source_id: str
    url: str
    url_hash: str
    title: Optional[str] = None
    run_id: Optional[str] = None
    published_at: Optional[datetime] = None
    status: str = ItemStatus.PENDING
    acquisition_attempt_count: int = 0
    acquisition_error: Optional[str] = None
    discovered_at: Optional[datetime] = None
