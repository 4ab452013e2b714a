from datetime import datetime
from typing import Any, Dict

from sqlalchemy import DateTime
from sqlmodel import JSON, Column, Field, SQLModel

from ....utils.date_utils import get_current_timestamp


class Record(SQLModel, table=True):
    """
    Deduplicated row keyed by its business key.
    """
    __tablename__ = "records"

    key: str = Field(
        primary_key=True,
        max_length=512,
        description="Business key, unique across the store"
    )

    payload: Dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
        description="Ordered field name to scalar mapping of the winning row"
    )

    source_file_id: str = Field(
        foreign_key="file_registry.id",
        index=True,
        max_length=600,
        description="File that last wrote this key"
    )

    updated_at: datetime = Field(
        default_factory=get_current_timestamp,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )


class StoreCounter(SQLModel, table=True):
    """
    Persistent counters maintained in the same transaction as record writes.
    """
    __tablename__ = "store_counters"

    name: str = Field(primary_key=True, max_length=64)
    value: int = Field(default=0)
