import logging
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, func, select

from ....core.enums import FileStatus, ReorderDirection
from ....core.exceptions import DatabaseError, NotFoundError
from ....utils.date_utils import get_current_timestamp
from ..models.file_registry import FileEntry
from .base import BaseRepository
from .record_repository import RecordRepository

logger = logging.getLogger(__name__)


class FileRegistryRepository(BaseRepository[FileEntry]):

    def __init__(self, session: Session):
        super().__init__(FileEntry, session)

    def _ordering(self):
        return [FileEntry.sort_order, FileEntry.uploaded_at, FileEntry.id]

    def next_order_value(self) -> int:
        current = self.session.exec(select(func.max(FileEntry.sort_order))).one()
        return 0 if current is None else current + 1

    def register(self, entry: FileEntry) -> FileEntry:
        """
        Create the entry, or reset an existing entry with the same id.

        A re-registered entry keeps its display name and order, and starts a
        fresh processing run.
        """
        existing = self.get(entry.id)
        if existing is None:
            if entry.sort_order is None or entry.sort_order == 0:
                entry.sort_order = self.next_order_value()
            return self.create(entry)

        return self.update(existing, {
            "original_name": entry.original_name,
            "size": entry.size,
            "last_modified": entry.last_modified,
            "kind": entry.kind,
            "content_type": entry.content_type,
            "uploaded_at": entry.uploaded_at,
            "rows_seen": 0,
            "rows_upserted": 0,
            "status": FileStatus.PROCESSING,
            "error_detail": None,
            "updated_at": get_current_timestamp(),
        })

    def list_ordered(self) -> List[FileEntry]:
        return self.get_multi(limit=None, order_by=self._ordering())

    def add_counts(self, file_id: str, rows_seen: int, rows_upserted: int) -> FileEntry:
        entry = self.get_or_404(file_id)
        return self.update(entry, {
            "rows_seen": entry.rows_seen + rows_seen,
            "rows_upserted": entry.rows_upserted + rows_upserted,
            "updated_at": get_current_timestamp(),
        })

    def set_status(self, file_id: str, status: FileStatus, error_detail: Optional[str] = None) -> FileEntry:
        entry = self.get_or_404(file_id)
        return self.update(entry, {
            "status": status,
            "error_detail": error_detail,
            "updated_at": get_current_timestamp(),
        })

    def rename(self, file_id: str, display_name: str) -> FileEntry:
        entry = self.get_or_404(file_id)
        return self.update(entry, {"display_name": display_name, "updated_at": get_current_timestamp()})

    def reorder(self, file_id: str, direction: ReorderDirection) -> bool:
        """
        Swap order with the adjacent entry in the sorted listing.

        Returns False at either boundary.

        Raises:
            NotFoundError: If ``file_id`` is not registered
        """
        entries = self.list_ordered()
        index = next((i for i, e in enumerate(entries) if e.id == file_id), None)
        if index is None:
            raise NotFoundError("FileEntry", file_id)

        target = index - 1 if direction == ReorderDirection.UP else index + 1
        if target < 0 or target >= len(entries):
            return False

        current, neighbour = entries[index], entries[target]
        if current.sort_order == neighbour.sort_order:
            # Ties resolve by upload time; make the positions explicit first
            for position, entry in enumerate(entries):
                entry.sort_order = position
                self.session.add(entry)

        current_order, neighbour_order = current.sort_order, neighbour.sort_order
        self.update(current, {"sort_order": neighbour_order})
        self.update(neighbour, {"sort_order": current_order})
        return True

    def delete_cascade(self, file_id: str) -> int:
        """
        Remove the entry and every record it owns in the caller's transaction.

        Returns:
            Number of records removed

        Raises:
            NotFoundError: If ``file_id`` is not registered
        """
        if self.get(file_id) is None:
            raise NotFoundError("FileEntry", file_id)

        try:
            removed = RecordRepository(self.session).delete_where(file_id)
            self.delete(file_id)
            self.session.flush()
            return removed

        except SQLAlchemyError as e:
            raise DatabaseError(f"Failed to delete file {file_id}: {str(e)}", operation="delete_cascade") from e
