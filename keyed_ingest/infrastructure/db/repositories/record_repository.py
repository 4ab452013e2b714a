import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence

from sqlalchemy import delete, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, func, select

from ....core.exceptions import DatabaseError
from ....utils.date_utils import get_current_timestamp
from ..models.records import Record, StoreCounter
from .base import BaseRepository

logger = logging.getLogger(__name__)

RECORD_COUNTER = "records"

# Stays well below SQLite's bound-parameter limit
IN_CLAUSE_CHUNK = 500


@dataclass
class PendingRecord:
    """A row ready to be written: business key plus payload."""
    key: str
    payload: Dict[str, Any]


@dataclass
class BatchWriteResult:
    written: int = 0
    inserted: int = 0
    stale: int = 0


class RecordRepository(BaseRepository[Record]):
    """
    Keyed record storage with upsert, cascade delete and an O(1) count.

    The distinct-key count lives in ``store_counters`` and is adjusted in the
    same transaction as every write and delete, so it never drifts from the
    rows it describes.
    """

    def __init__(self, session: Session):
        super().__init__(Record, session)

    def _insert(self):
        dialect = self.session.get_bind().dialect.name
        if dialect == "postgresql":
            return postgresql.insert(Record.__table__)
        if dialect == "sqlite":
            return sqlite.insert(Record.__table__)
        raise DatabaseError(f"Upsert is not supported on dialect '{dialect}'", operation="put")

    def _existing(self, keys: Sequence[str]) -> Dict[str, Dict[str, Any]]:
        found: Dict[str, Dict[str, Any]] = {}
        for start in range(0, len(keys), IN_CLAUSE_CHUNK):
            chunk = keys[start:start + IN_CLAUSE_CHUNK]
            statement = select(Record.key, Record.payload).where(Record.key.in_(chunk))
            for key, payload in self.session.exec(statement).all():
                found[key] = payload
        return found

    def _bump_counter(self, delta: int) -> None:
        if delta == 0:
            return
        statement = (
            update(StoreCounter)
            .where(StoreCounter.name == RECORD_COUNTER)
            .values(value=StoreCounter.value + delta)
        )
        result = self.session.exec(statement)
        if result.rowcount == 0:
            # Counter row missing: rebuild it from the table, which already
            # reflects this transaction's flushed writes.
            self.session.add(StoreCounter(name=RECORD_COUNTER, value=self._count_rows()))
            self.session.flush()

    def _count_rows(self) -> int:
        return self.session.exec(select(func.count()).select_from(Record)).one()

    def put_batch(
        self,
        rows: Sequence[PendingRecord],
        source_file_id: str,
        is_stale: Optional[Callable[[Dict[str, Any], Dict[str, Any]], bool]] = None,
    ) -> BatchWriteResult:
        """
        Upsert rows, later rows in ``rows`` winning over earlier ones.

        Args:
            rows: Keyed rows in ingestion order
            source_file_id: Owning FileEntry id written on every row
            is_stale: Optional ``(incoming, stored) -> bool``; rows for which it
                returns True are skipped instead of overwriting

        Returns:
            Counts of rows written, keys newly inserted and stale rows skipped
        """
        result = BatchWriteResult()
        if not rows:
            return result

        latest: Dict[str, Dict[str, Any]] = {}
        for row in rows:
            if is_stale is not None and row.key in latest and is_stale(row.payload, latest[row.key]):
                result.stale += 1
                continue
            latest[row.key] = row.payload
            result.written += 1

        try:
            existing = self._existing(list(latest.keys()))

            if is_stale is not None:
                for key in [k for k, payload in latest.items() if k in existing]:
                    if is_stale(latest[key], existing[key]):
                        del latest[key]
                        result.stale += 1
                        result.written -= 1

            if not latest:
                return result

            now = get_current_timestamp()
            values = [
                {"key": key, "payload": payload, "source_file_id": source_file_id, "updated_at": now}
                for key, payload in latest.items()
            ]
            statement = self._insert().values(values)
            statement = statement.on_conflict_do_update(
                index_elements=[Record.__table__.c.key],
                set_={
                    "payload": statement.excluded.payload,
                    "source_file_id": statement.excluded.source_file_id,
                    "updated_at": statement.excluded.updated_at,
                },
            )
            self.session.exec(statement)

            result.inserted = sum(1 for key in latest if key not in existing)
            self._bump_counter(result.inserted)
            self.session.flush()
            return result

        except SQLAlchemyError as e:
            logger.error(f"Failed to write batch of {len(rows)} records: {e}")
            raise DatabaseError(f"Failed to write records: {str(e)}", operation="put_batch") from e

    def put(self, key: str, payload: Dict[str, Any], source_file_id: str) -> BatchWriteResult:
        return self.put_batch([PendingRecord(key, payload)], source_file_id)

    def get_by_key(self, key: str) -> Optional[Record]:
        return self.get(key)

    def count_records(self) -> int:
        """Distinct keys in the store, read from the maintained counter."""
        try:
            value = self.session.exec(
                select(StoreCounter.value).where(StoreCounter.name == RECORD_COUNTER)
            ).first()
            if value is None:
                return self._count_rows()
            return value

        except SQLAlchemyError as e:
            raise DatabaseError(f"Failed to count records: {str(e)}", operation="count") from e

    def recount(self) -> int:
        """Rebuild the counter from the records table."""
        try:
            actual = self._count_rows()
            counter = self.session.get(StoreCounter, RECORD_COUNTER)
            if counter is None:
                counter = StoreCounter(name=RECORD_COUNTER, value=actual)
            counter.value = actual
            self.session.add(counter)
            self.session.flush()
            return actual

        except SQLAlchemyError as e:
            raise DatabaseError(f"Failed to recount records: {str(e)}", operation="recount") from e

    def scan_page(self, after_key: Optional[str], page_size: int) -> List[Record]:
        """One page of records in key order, strictly after ``after_key``."""
        try:
            statement = select(Record).order_by(Record.key).limit(page_size)
            if after_key is not None:
                statement = statement.where(Record.key > after_key)
            return list(self.session.exec(statement).all())

        except SQLAlchemyError as e:
            raise DatabaseError(f"Failed to scan records: {str(e)}", operation="scan") from e

    def delete_where(self, source_file_id: str) -> int:
        """Remove every record owned by ``source_file_id``. Returns rows removed."""
        try:
            result = self.session.exec(delete(Record).where(Record.source_file_id == source_file_id))
            removed = result.rowcount or 0
            self._bump_counter(-removed)
            self.session.flush()
            logger.debug(f"Deleted {removed} records owned by {source_file_id}")
            return removed

        except SQLAlchemyError as e:
            logger.error(f"Failed to delete records of {source_file_id}: {e}")
            raise DatabaseError(f"Failed to delete records: {str(e)}", operation="delete_where") from e
