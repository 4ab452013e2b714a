"""
File registry service: per-upload metadata, status, ordering, rename and delete.
"""

from typing import List, Optional, Union

from keyed_ingest.core.enums import FileStatus, ReorderDirection
from keyed_ingest.core.exceptions import NotFoundError
from keyed_ingest.infrastructure.db.models.file_registry import FileEntry
from keyed_ingest.infrastructure.db.repositories.file_repository import FileRegistryRepository
from keyed_ingest.services.base import BaseService


class FileService(BaseService):
    """Service for managing registered uploads."""

    def get_service_name(self) -> str:
        return "FileService"

    def register(self, entry: FileEntry) -> FileEntry:
        """Create or replace an entry by its deterministic id."""
        self.log_operation("register", {"file_id": entry.id})
        with self.db.get_session() as session:
            return FileRegistryRepository(session).register(entry)

    def get(self, file_id: str) -> Optional[FileEntry]:
        with self.db.get_session() as session:
            return FileRegistryRepository(session).get(file_id)

    def list_files(self) -> List[FileEntry]:
        """Entries by manual order ascending."""
        with self.db.get_session() as session:
            return FileRegistryRepository(session).list_ordered()

    def set_status(self, file_id: str, status: FileStatus, error_detail: Optional[str] = None) -> Optional[FileEntry]:
        try:
            with self.db.get_session() as session:
                return FileRegistryRepository(session).set_status(file_id, status, error_detail)
        except NotFoundError:
            self.logger.warning(f"Cannot set status {status.value} on missing file {file_id}")
            return None

    def rename(self, file_id: str, display_name: str) -> Optional[FileEntry]:
        """Change the display name. Missing ids are a no-op returning None."""
        self.log_operation("rename", {"file_id": file_id, "display_name": display_name})
        try:
            with self.db.get_session() as session:
                return FileRegistryRepository(session).rename(file_id, display_name)
        except NotFoundError as e:
            self.logger.warning(e.message)
            return None

    def reorder(self, file_id: str, direction: Union[ReorderDirection, str]) -> bool:
        """Swap with the adjacent entry. Boundaries and missing ids are no-ops."""
        direction = ReorderDirection(direction)
        self.log_operation("reorder", {"file_id": file_id, "direction": direction.value})
        try:
            with self.db.get_session() as session:
                return FileRegistryRepository(session).reorder(file_id, direction)
        except NotFoundError as e:
            self.logger.warning(e.message)
            return False

    def delete_cascade(self, file_id: str) -> Optional[int]:
        """
        Delete the entry and all records it owns as one transaction.

        Returns:
            Number of records removed, or None when the id is not registered
        """
        self.log_operation("delete_cascade", {"file_id": file_id})
        try:
            with self.db.get_session() as session:
                removed = FileRegistryRepository(session).delete_cascade(file_id)
        except NotFoundError as e:
            self.logger.warning(e.message)
            return None

        self.logger.info(f"Deleted file {file_id} and {removed} records")
        return removed
