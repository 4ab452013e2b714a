"""
Services module.
Contains the store, registry, ingestion and export business logic.
"""

from .base import BaseService
from .export_service import ExportArtifact, Exporter
from .file_service import FileService
from .ingestion_service import IngestionCoordinator, QueueItemResult, make_revision_check
from .record_store import KeyedRecordStore
from .workspace import UploadWorkspace

__all__ = [
    "BaseService",
    "ExportArtifact",
    "Exporter",
    "FileService",
    "IngestionCoordinator",
    "KeyedRecordStore",
    "QueueItemResult",
    "UploadWorkspace",
    "make_revision_check",
]
