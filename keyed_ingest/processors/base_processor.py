# ==============================================
# keyed_ingest/processors/base_processor.py
# ==============================================
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, Dict, Iterator, List, Optional, Union

import numpy as np
import pandas as pd

from keyed_ingest.core.enums import FileKind
from keyed_ingest.core.logging import get_logger
from keyed_ingest.utils.file_utils import UploadSource

logger = get_logger(__name__)

Scalar = Union[str, int, float, bool, None]
Row = Dict[str, Scalar]


@dataclass
class RowChunk:
    """
    A bounded slice of parsed rows plus a position marker.

    Delimited input reports ``bytes_consumed``/``total_bytes``; spreadsheet
    input reports ``rows_processed``/``total_rows``.
    """
    rows: List[Row] = field(default_factory=list)
    bytes_consumed: Optional[int] = None
    total_bytes: Optional[int] = None
    rows_processed: Optional[int] = None
    total_rows: Optional[int] = None

    @property
    def percent(self) -> int:
        if self.total_bytes and self.bytes_consumed is not None:
            return min(100, int(self.bytes_consumed * 100 / self.total_bytes))
        if self.total_rows and self.rows_processed is not None:
            return min(100, int(self.rows_processed * 100 / self.total_rows))
        return 0


def coerce_scalar(value: Any) -> Scalar:
    """
    Normalize a parsed cell to a JSON-native scalar.

    Strings, ints, floats and booleans pass through; NaN/NaT and None become
    None; timestamps become ISO-8601 strings; numpy scalars become Python
    scalars; anything else is rendered with ``str``.
    """
    if value is None:
        return None
    if isinstance(value, (bool, np.bool_)):
        return bool(value)
    if isinstance(value, str):
        return value
    if isinstance(value, (int, np.integer)):
        return int(value)
    if isinstance(value, (float, np.floating)):
        return None if math.isnan(value) else float(value)
    if isinstance(value, Decimal):
        return float(value)
    if value is pd.NaT:
        return None
    if isinstance(value, (pd.Timestamp, datetime, date, time)):
        return value.isoformat()
    try:
        if pd.isna(value):
            return None
    except (TypeError, ValueError):
        pass
    return str(value)


def normalize_key(value: Scalar) -> str:
    """Business key as a stripped string; empty when missing."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


class BaseProcessor(ABC):
    """
    Abstract base class for file parsers.

    A processor turns an ``UploadSource`` into a lazy, non-resumable
    sequence of ``RowChunk`` objects. The first logical record defines the
    field names.
    """

    kind: FileKind

    def __init__(self, chunk_rows: int = 5000):
        self.chunk_rows = chunk_rows
        self.logger = logger

    @abstractmethod
    def check_source(self, source: UploadSource) -> None:
        """
        Validate the source before any parsing starts.

        Raises:
            OversizeError: If the source cannot be parsed within memory limits
        """

    @abstractmethod
    def iter_chunks(self, source: UploadSource) -> Iterator[RowChunk]:
        """
        Parse the source lazily.

        Raises:
            ParseError: If the stream is malformed
        """

    def iter_rows(self, source: UploadSource) -> Iterator[Row]:
        for chunk in self.iter_chunks(source):
            yield from chunk.rows
