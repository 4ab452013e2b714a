from .base import BaseResponse, ErrorResponse
from .file_upload import (
    FileEntryRead,
    FileListResponse,
    IngestResponse,
    IngestResult,
    MutationResponse,
    PreviewResponse,
    RecordCountResponse,
    RecordRead,
    RenameRequest,
    ReorderRequest,
)
from .progress import ProgressEvent

__all__ = [
    "BaseResponse",
    "ErrorResponse",
    "FileEntryRead",
    "FileListResponse",
    "IngestResponse",
    "IngestResult",
    "MutationResponse",
    "PreviewResponse",
    "ProgressEvent",
    "RecordCountResponse",
    "RecordRead",
    "RenameRequest",
    "ReorderRequest",
]
