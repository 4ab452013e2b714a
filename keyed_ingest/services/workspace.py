"""
Upload workspace: the operations the HTTP and CLI shells call.
"""

from typing import List, Optional, Sequence

from keyed_ingest.core.config import Settings, get_settings
from keyed_ingest.core.enums import ReorderDirection
from keyed_ingest.infrastructure.db.connection import DatabaseManager
from keyed_ingest.infrastructure.db.models.file_registry import FileEntry
from keyed_ingest.infrastructure.db.models.records import Record
from keyed_ingest.schemas.file_upload import IngestResult
from keyed_ingest.utils.file_utils import UploadSource
from keyed_ingest.utils.progress import CancellationToken, ProgressChannel
from .export_service import ExportArtifact, Exporter
from .file_service import FileService
from .ingestion_service import IngestionCoordinator, QueueDecision, QueueItemResult
from .record_store import KeyedRecordStore


class UploadWorkspace:
    """
    Wires the record store, file registry, coordinator and exporter around
    one ``DatabaseManager``. The caller owns the manager's lifecycle.
    """

    def __init__(self, db: DatabaseManager, settings: Optional[Settings] = None):
        self.db = db
        self.settings = settings or get_settings()
        self.store = KeyedRecordStore(db, page_size=self.settings.ingest.scan_page_size)
        self.files = FileService(db)
        self.coordinator = IngestionCoordinator(db, self.store, self.files, self.settings.ingest)
        self.exporter = Exporter(self.store, self.settings.export)

    async def ingest(
        self,
        source: UploadSource,
        channel: Optional[ProgressChannel] = None,
        token: Optional[CancellationToken] = None,
        key_field: Optional[str] = None,
        revision_field: Optional[str] = None,
    ) -> IngestResult:
        return await self.coordinator.ingest(
            source, channel=channel, token=token, key_field=key_field, revision_field=revision_field
        )

    async def ingest_queue(
        self,
        sources: Sequence[UploadSource],
        decide: Optional[QueueDecision] = None,
        **kwargs,
    ) -> List[QueueItemResult]:
        return await self.coordinator.ingest_queue(sources, decide=decide, **kwargs)

    def list_files(self) -> List[FileEntry]:
        return self.files.list_files()

    def get_file(self, file_id: str) -> Optional[FileEntry]:
        return self.files.get(file_id)

    def rename(self, file_id: str, display_name: str) -> Optional[FileEntry]:
        return self.files.rename(file_id, display_name)

    def reorder(self, file_id: str, direction: ReorderDirection) -> bool:
        return self.files.reorder(file_id, direction)

    def delete_cascade(self, file_id: str) -> Optional[int]:
        return self.files.delete_cascade(file_id)

    def count(self) -> int:
        return self.store.count()

    def recount(self) -> int:
        return self.store.recount()

    def get_record(self, key: str) -> Optional[Record]:
        return self.store.get(key)

    def preview(self, limit: Optional[int] = None) -> List[Record]:
        """Bounded sample in stable key order."""
        return self.store.sample(limit or self.settings.ingest.preview_limit)

    def export_all(self, row_cap: Optional[int] = None, filename: Optional[str] = None) -> ExportArtifact:
        return self.exporter.export_all(row_cap=row_cap, filename=filename)
