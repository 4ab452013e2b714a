from .base import BaseRepository
from .file_repository import FileRegistryRepository
from .record_repository import BatchWriteResult, PendingRecord, RecordRepository

__all__ = [
    "BaseRepository",
    "BatchWriteResult",
    "FileRegistryRepository",
    "PendingRecord",
    "RecordRepository",
]
