"""
tests/conftest.py

Shared fixtures: every test gets its own SQLite database under ``tmp_path``
with small batch and chunk sizes so batch boundaries are exercised.
"""

from pathlib import Path
from typing import Callable

import pytest

from keyed_ingest.core.config import (
    DatabaseSettings,
    ExportSettings,
    IngestSettings,
    LoggingSettings,
    Settings,
)
from keyed_ingest.infrastructure.db.connection import DatabaseManager
from keyed_ingest.infrastructure.db.models.file_registry import FileEntry
from keyed_ingest.services.file_service import FileService
from keyed_ingest.services.record_store import KeyedRecordStore
from keyed_ingest.services.workspace import UploadWorkspace
from keyed_ingest.utils.file_utils import UploadSource


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        database=DatabaseSettings(url=f"sqlite:///{tmp_path / 'store.db'}"),
        ingest=IngestSettings(
            key_field="id",
            batch_size=2,
            csv_chunk_rows=2,
            csv_delimiter=",",
            csv_encoding="utf-8-sig",
            scan_page_size=2,
        ),
        export=ExportSettings(row_cap=600_000, filename="deduped_export.csv"),
        logging=LoggingSettings(level="WARNING"),
    )


@pytest.fixture
def db(settings: Settings):
    manager = DatabaseManager.from_settings(settings.database)
    manager.connect()
    yield manager
    manager.disconnect()


@pytest.fixture
def store(db: DatabaseManager) -> KeyedRecordStore:
    return KeyedRecordStore(db, page_size=2)


@pytest.fixture
def file_service(db: DatabaseManager) -> FileService:
    return FileService(db)


@pytest.fixture
def workspace(db: DatabaseManager, settings: Settings) -> UploadWorkspace:
    return UploadWorkspace(db, settings)


@pytest.fixture
def register_file(file_service: FileService) -> Callable[[str], FileEntry]:
    """Register a bare entry so records can reference it."""

    def _register(file_id: str) -> FileEntry:
        return file_service.register(FileEntry(
            id=file_id,
            original_name=f"{file_id}.csv",
            display_name=f"{file_id}.csv",
        ))

    return _register


@pytest.fixture
def write_file(tmp_path: Path) -> Callable[..., UploadSource]:
    """Write text (or bytes) under ``tmp_path/uploads`` and wrap it as an upload."""
    uploads = tmp_path / "uploads"
    uploads.mkdir()

    def _write(name: str, content) -> UploadSource:
        path = uploads / name
        if isinstance(content, bytes):
            path.write_bytes(content)
        else:
            path.write_text(content, encoding="utf-8", newline="")
        return UploadSource.from_path(path)

    return _write


@pytest.fixture
def write_workbook(tmp_path: Path) -> Callable[..., UploadSource]:
    """Write an .xlsx workbook; ``sheets`` maps sheet title to a list of rows."""
    from openpyxl import Workbook

    def _write(name: str, sheets: dict) -> UploadSource:
        workbook = Workbook()
        workbook.remove(workbook.active)
        for title, rows in sheets.items():
            sheet = workbook.create_sheet(title)
            for row in rows:
                sheet.append(row)
        path = tmp_path / name
        workbook.save(path)
        return UploadSource.from_path(path)

    return _write
