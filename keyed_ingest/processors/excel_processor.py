# ==============================================
# keyed_ingest/processors/excel_processor.py
# ==============================================
import io
from typing import Iterator, List

import pandas as pd

from keyed_ingest.core.enums import FileKind
from keyed_ingest.core.exceptions import AppException, OversizeError, ParseError
from keyed_ingest.utils.file_utils import UploadSource, get_file_extension
from .base_processor import BaseProcessor, Row, RowChunk, coerce_scalar

DEFAULT_EXCEL_MAX_BYTES = 20 * 1024 * 1024


class ExcelProcessor(BaseProcessor):
    """
    Whole-document parser for spreadsheet workbooks.

    The workbook is loaded in memory, so sources larger than ``max_bytes``
    are rejected before any byte is read. Only the first sheet is parsed.
    Empty cells are present in the row with a ``None`` value.
    """

    kind = FileKind.SPREADSHEET

    def __init__(self, chunk_rows: int = 5000, max_bytes: int = DEFAULT_EXCEL_MAX_BYTES):
        super().__init__(chunk_rows)
        self.max_bytes = max_bytes

    def check_source(self, source: UploadSource) -> None:
        if self.max_bytes and source.size > self.max_bytes:
            raise OversizeError(source.name, source.size, self.max_bytes)

    def _engine(self, source: UploadSource) -> str:
        return "xlrd" if get_file_extension(source.name) == ".xls" else "openpyxl"

    @staticmethod
    def _column_names(columns) -> List[str]:
        names: List[str] = []
        for position, column in enumerate(columns):
            name = str(column).strip()
            if not name or name.startswith("Unnamed:"):
                name = f"Column_{position + 1}"
            names.append(name)
        return names

    def _load_frame(self, source: UploadSource) -> pd.DataFrame:
        with source.open() as stream:
            buffer = io.BytesIO(stream.read())

        try:
            return pd.read_excel(buffer, sheet_name=0, dtype=object, engine=self._engine(source))
        except AppException:
            raise
        except Exception as e:
            # Readers raise a wide range of exception types for corrupt workbooks
            raise ParseError(f"Could not read workbook '{source.name}': {e}") from e

    def iter_chunks(self, source: UploadSource) -> Iterator[RowChunk]:
        self.check_source(source)
        df = self._load_frame(source)
        names = self._column_names(df.columns)
        total_rows = len(df)
        self.logger.info(f"Loaded workbook '{source.name}': {total_rows} rows, {len(names)} columns")

        if total_rows == 0:
            yield RowChunk(rows=[], rows_processed=0, total_rows=0)
            return

        processed = 0
        for start in range(0, total_rows, self.chunk_rows):
            block = df.iloc[start:start + self.chunk_rows]
            rows: List[Row] = [
                {name: coerce_scalar(value) for name, value in zip(names, values)}
                for values in block.itertuples(index=False, name=None)
            ]
            processed += len(rows)
            yield RowChunk(rows=rows, rows_processed=processed, total_rows=total_rows)
