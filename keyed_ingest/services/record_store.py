"""
Keyed record store: persistent map from business key to payload.
"""

import asyncio
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Sequence

from keyed_ingest.infrastructure.db.connection import DatabaseManager
from keyed_ingest.infrastructure.db.models.records import Record
from keyed_ingest.infrastructure.db.repositories.record_repository import (
    BatchWriteResult,
    PendingRecord,
    RecordRepository,
)
from keyed_ingest.services.base import BaseService

DEFAULT_PAGE_SIZE = 1000


class KeyedRecordStore(BaseService):
    """
    Session-owning facade over ``RecordRepository``.

    Every call is its own transaction. ``put_batch`` is the unit of
    persistence used during ingestion; ``scan`` pages through records in key
    order, each page read in a separate short session so scans interleave
    with writers.
    """

    def __init__(self, db: DatabaseManager, page_size: int = DEFAULT_PAGE_SIZE):
        super().__init__(db)
        self.page_size = page_size

    def get_service_name(self) -> str:
        return "KeyedRecordStore"

    def put(self, key: str, payload: Dict[str, Any], source_file_id: str) -> BatchWriteResult:
        with self.db.get_session() as session:
            return RecordRepository(session).put(key, payload, source_file_id)

    def put_batch(
        self,
        rows: Sequence[PendingRecord],
        source_file_id: str,
        is_stale: Optional[Callable[[Dict[str, Any], Dict[str, Any]], bool]] = None,
    ) -> BatchWriteResult:
        with self.db.get_session() as session:
            return RecordRepository(session).put_batch(rows, source_file_id, is_stale=is_stale)

    def get(self, key: str) -> Optional[Record]:
        with self.db.get_session() as session:
            return RecordRepository(session).get_by_key(key)

    def count(self) -> int:
        with self.db.get_session() as session:
            return RecordRepository(session).count_records()

    def recount(self) -> int:
        with self.db.get_session() as session:
            total = RecordRepository(session).recount()
        self.log_operation("recount", {"total": total})
        return total

    def delete_where(self, source_file_id: str) -> int:
        with self.db.get_session() as session:
            return RecordRepository(session).delete_where(source_file_id)

    def scan_pages(self, limit: Optional[int] = None):
        """Yield lists of records in key order, at most ``limit`` in total."""
        after_key: Optional[str] = None
        remaining = limit
        while remaining is None or remaining > 0:
            size = self.page_size if remaining is None else min(self.page_size, remaining)
            with self.db.get_session() as session:
                page = RecordRepository(session).scan_page(after_key, size)
            if not page:
                return
            yield page
            if remaining is not None:
                remaining -= len(page)
            after_key = page[-1].key
            if len(page) < size:
                return

    async def scan(self, limit: Optional[int] = None) -> AsyncIterator[Record]:
        """Async iteration over records, yielding control between pages."""
        for page in self.scan_pages(limit):
            for record in page:
                yield record
            await asyncio.sleep(0)

    def sample(self, limit: int) -> List[Record]:
        records: List[Record] = []
        for page in self.scan_pages(limit):
            records.extend(page)
        return records
