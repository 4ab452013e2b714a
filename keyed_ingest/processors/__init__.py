# ==============================================
# keyed_ingest/processors/__init__.py
# ==============================================
from typing import Optional

from keyed_ingest.core.config import IngestSettings
from keyed_ingest.core.enums import FileKind
from keyed_ingest.core.exceptions import UnsupportedFormatError
from keyed_ingest.utils.file_utils import get_file_kind

from .base_processor import BaseProcessor, Row, RowChunk, coerce_scalar, normalize_key
from .csv_processor import CSVProcessor
from .excel_processor import ExcelProcessor


def get_processor(file_name: str, settings: Optional[IngestSettings] = None) -> BaseProcessor:
    """
    Factory function to get the processor for a file name.

    Args:
        file_name: Upload name; only the extension is inspected
        settings: Ingestion settings supplying chunk size, delimiter,
            encoding and the spreadsheet ceiling

    Returns:
        Processor instance

    Raises:
        UnsupportedFormatError: If the extension is not recognized
    """
    settings = settings or IngestSettings()
    kind = get_file_kind(file_name)

    if kind == FileKind.SPREADSHEET:
        return ExcelProcessor(chunk_rows=settings.csv_chunk_rows, max_bytes=settings.excel_max_bytes)

    return CSVProcessor(
        chunk_rows=settings.csv_chunk_rows,
        delimiter=settings.csv_delimiter,
        encoding=settings.csv_encoding,
    )


def is_supported_file(file_name: str) -> bool:
    try:
        get_file_kind(file_name)
        return True
    except UnsupportedFormatError:
        return False


__all__ = [
    "BaseProcessor",
    "CSVProcessor",
    "ExcelProcessor",
    "Row",
    "RowChunk",
    "coerce_scalar",
    "normalize_key",
    "get_processor",
    "is_supported_file",
]
