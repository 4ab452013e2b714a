from datetime import datetime
from typing import Optional

from sqlalchemy import Column, DateTime
from sqlmodel import Field, SQLModel

from ....core.enums import FileKind, FileStatus
from ....utils.date_utils import get_current_timestamp


class FileEntry(SQLModel, table=True):
    """
    Metadata and provenance for one uploaded file.
    """
    __tablename__ = "file_registry"

    id: str = Field(
        primary_key=True,
        max_length=600,
        description="Deterministic id built from name, size and last-modified time"
    )

    original_name: str = Field(
        max_length=255,
        description="Name of the file as selected by the user"
    )

    display_name: str = Field(
        max_length=255,
        description="Renamable label shown in listings"
    )

    size: int = Field(
        default=0,
        description="Size of the file in bytes"
    )

    last_modified: int = Field(
        default=0,
        description="Last-modified time of the source file in epoch milliseconds"
    )

    kind: FileKind = Field(
        default=FileKind.DELIMITED,
        description="Parser kind used for the file"
    )

    content_type: Optional[str] = Field(
        default=None,
        max_length=255,
    )

    uploaded_at: datetime = Field(
        default_factory=get_current_timestamp,
        sa_column=Column(DateTime(timezone=True), nullable=False),
        description="When ingestion of this file started"
    )

    rows_seen: int = Field(default=0)

    rows_upserted: int = Field(default=0)

    status: FileStatus = Field(
        default=FileStatus.PROCESSING,
        index=True,
        description="processing, ready or error"
    )

    error_detail: Optional[str] = Field(default=None)

    sort_order: int = Field(
        default=0,
        index=True,
        description="Manual priority used for listing"
    )

    updated_at: datetime = Field(
        default_factory=get_current_timestamp,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
