"""
Document Repository - acquired content rows

Body text lives in blob storage; this table holds the pointer, hash, status and
the stored AI extraction. A partial unique index keeps at most one non-failed
document per item, while failed attempts accumulate for diagnosis.
"""
import logging
from typing import Optional, List

import asyncpg

from canary_watcher.models import Document, DocumentStatus, DocumentContext

logger = logging.getLogger(__name__)


def _row_to_document(row) -> Document:
    return Document(
        id=str(row['id']),
        item_id=str(row['item_id']),
        clean_blob_key=row['clean_blob_key'],
        content_hash=row['content_hash'],
        word_count=row['word_count'],
        status=row['status'],
        extracted_metadata=row['extracted_metadata'],
        extraction=row['extraction'],
        error=row['error'],
        acquired_at=row['acquired_at'],
        processed_at=row['processed_at'],
    )


class DocumentRepository:

    def __init__(self, db_pool: asyncpg.Pool):
        self.db_pool = db_pool

    async def get_by_id(self, document_id: str) -> Optional[Document]:
        async with self.db_pool.acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM documents WHERE id = $1", document_id)
            return _row_to_document(row) if row else None

    async def get_live_for_item(self, item_id: str) -> Optional[Document]:
        async with self.db_pool.acquire() as conn:
            row = await conn.fetchrow("""
                SELECT * FROM documents
                WHERE item_id = $1 AND status <> 'failed'
            """, item_id)
            return _row_to_document(row) if row else None

    async def create(
        self,
        item_id: str,
        clean_blob_key: str,
        content_hash: str,
        word_count: int,
        extracted_metadata: Optional[dict] = None
    ) -> Document:
        """
        Insert the live document for an item

        A concurrent insert for the same item hits the partial unique index;
        the existing live row is returned instead.
        """
        async with self.db_pool.acquire() as conn:
            row = await conn.fetchrow("""
                INSERT INTO documents (item_id, clean_blob_key, content_hash, word_count,
                                       status, extracted_metadata)
                VALUES ($1, $2, $3, $4, 'acquired', $5)
                ON CONFLICT (item_id) WHERE status <> 'failed' DO NOTHING
                RETURNING *
            """, item_id, clean_blob_key, content_hash, word_count, extracted_metadata)
            if row is None:
                row = await conn.fetchrow("""
                    SELECT * FROM documents WHERE item_id = $1 AND status <> 'failed'
                """, item_id)
            return _row_to_document(row)

    async def record_failure(self, item_id: str, error: str) -> Document:
        """Record a failed acquisition attempt as a failed document row"""
        async with self.db_pool.acquire() as conn:
            row = await conn.fetchrow("""
                INSERT INTO documents (item_id, status, error)
                VALUES ($1, 'failed', $2)
                RETURNING *
            """, item_id, error)
            return _row_to_document(row)

    async def get_context(self, document_id: str) -> Optional[DocumentContext]:
        async with self.db_pool.acquire() as conn:
            row = await conn.fetchrow("""
                SELECT d.*, i.url AS item_url, i.title AS item_title,
                       i.published_at, i.run_id,
                       s.name AS source_name, s.tier AS source_tier, s.trust_weight
                FROM documents d
                JOIN items i ON i.id = d.item_id
                JOIN sources s ON s.id = i.source_id
                WHERE d.id = $1
            """, document_id)
            if not row:
                return None
            return DocumentContext(
                document=_row_to_document(row),
                item_url=row['item_url'],
                item_title=row['item_title'],
                published_at=row['published_at'],
                run_id=str(row['run_id']) if row['run_id'] else None,
                source_name=row['source_name'],
                source_tier=row['source_tier'],
                trust_weight=float(row['trust_weight']),
            )

    async def list_awaiting_extraction(self, limit: int = 10) -> List[Document]:
        async with self.db_pool.acquire() as conn:
            rows = await conn.fetch("""
                SELECT * FROM documents
                WHERE status = 'acquired'
                ORDER BY acquired_at, id
                LIMIT $1
            """, limit)
            return [_row_to_document(r) for r in rows]

    async def save_extraction(self, document_id: str, extraction: dict) -> None:
        async with self.db_pool.acquire() as conn:
            await conn.execute("""
                UPDATE documents
                SET extraction = $2, status = 'extracted', error = NULL
                WHERE id = $1
            """, document_id, extraction)

    async def mark_processed(self, document_id: str) -> None:
        async with self.db_pool.acquire() as conn:
            await conn.execute("""
                UPDATE documents
                SET status = 'processed', processed_at = NOW(), error = NULL
                WHERE id = $1
            """, document_id)

    async def mark_failed(self, document_id: str, error: str) -> None:
        """Keep the error text (including raw AI output) for manual reprocessing"""
        async with self.db_pool.acquire() as conn:
            await conn.execute("""
                UPDATE documents SET status = $2, error = $3
                WHERE id = $1
            """, document_id, DocumentStatus.FAILED, error)
