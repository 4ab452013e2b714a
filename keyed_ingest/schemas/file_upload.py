from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from keyed_ingest.core.enums import FileKind, FileStatus, ReorderDirection
from .base import BaseResponse


class FileEntryRead(BaseModel):
    """Schema for a registered upload."""
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: str
    original_name: str
    display_name: str
    size: int
    last_modified: int
    kind: FileKind
    uploaded_at: datetime
    rows_seen: int
    rows_upserted: int
    status: FileStatus
    error_detail: Optional[str] = None
    order: int = Field(validation_alias="sort_order")


class FileListResponse(BaseResponse):
    data: List[FileEntryRead]
    total_records: int


class IngestResult(BaseModel):
    """Outcome of ingesting one file."""
    file_id: str
    rows_seen: int
    rows_upserted: int
    total_store_count: int


class IngestResponse(BaseResponse):
    data: IngestResult


class RenameRequest(BaseModel):
    display_name: str = Field(min_length=1, max_length=255)


class ReorderRequest(BaseModel):
    direction: ReorderDirection


class MutationResponse(BaseResponse):
    """Result of a registry mutation; ``changed`` is False for no-ops."""
    changed: bool
    file: Optional[FileEntryRead] = None
    records_removed: Optional[int] = None


class RecordRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    key: str
    payload: Dict[str, Any]
    source_file_id: str
    updated_at: datetime


class RecordCountResponse(BaseResponse):
    total: int


class PreviewResponse(BaseResponse):
    total: int
    data: List[RecordRead]
