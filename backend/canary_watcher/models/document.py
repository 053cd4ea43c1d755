"""
Document domain model - acquired full text for an item
"""
from dataclasses import dataclass
from datetime import datetime, date
from typing import Optional


class DocumentStatus:
    ACQUIRED = 'acquired'
    EXTRACTED = 'extracted'
    PROCESSED = 'processed'
    FAILED = 'failed'

    LIVE = (ACQUIRED, EXTRACTED, PROCESSED)


def blob_key_for_item(item_id: str) -> str:
    """Deterministic blob key; re-acquiring the same item overwrites the same object"""
    return f"documents/{item_id}/clean.md"


@dataclass
class Document:
    """
    Acquired content. The body lives in blob storage under `clean_blob_key`,
    owned exclusively by this document. At most one non-failed document per item.
    """
    id: str
    item_id: str
    clean_blob_key: Optional[str] = None
    content_hash: Optional[str] = None
    word_count: int = 0
    status: str = DocumentStatus.ACQUIRED
    extracted_metadata: Optional[dict] = None
    extraction: Optional[dict] = None
    error: Optional[str] = None
    acquired_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None

    @property
    def is_live(self) -> bool:
        return self.status != DocumentStatus.FAILED

    @property
    def acquired_date(self) -> Optional[date]:
        return self.acquired_at.date() if self.acquired_at else None


@dataclass
class DocumentContext:
    """A document joined with the item and source facts extraction needs"""
    document: Document
    item_url: str
    item_title: Optional[str]
    published_at: Optional[datetime]
    run_id: Optional[str]
    source_name: str
    source_tier: str
    trust_weight: float
