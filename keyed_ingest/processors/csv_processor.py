# ==============================================
# keyed_ingest/processors/csv_processor.py
# ==============================================
import csv
import io
from itertools import islice
from typing import BinaryIO, Iterator, List

import chardet

from keyed_ingest.core.enums import FileKind
from keyed_ingest.core.exceptions import ParseError
from keyed_ingest.utils.file_utils import UploadSource, get_file_extension
from .base_processor import BaseProcessor, Row, RowChunk

AUTO = "auto"
SAMPLE_BYTES = 64 * 1024


class CountingReader(io.RawIOBase):
    """Raw stream wrapper that counts bytes handed to the decoder."""

    def __init__(self, stream: BinaryIO):
        self._stream = stream
        self.bytes_read = 0

    def readable(self) -> bool:
        return True

    def readinto(self, buffer) -> int:
        data = self._stream.read(len(buffer))
        size = len(data)
        buffer[:size] = data
        self.bytes_read += size
        return size

    def close(self) -> None:
        try:
            self._stream.close()
        finally:
            super().close()


class CSVProcessor(BaseProcessor):
    """
    Streaming parser for delimited text.

    Rows are read incrementally, so there is no size ceiling: memory use is
    bounded by ``chunk_rows``. Quoted fields (including embedded delimiters
    and newlines) are respected, blank lines are skipped, and fields missing
    at the end of a row are absent from the row mapping.
    """

    kind = FileKind.DELIMITED

    def __init__(self, chunk_rows: int = 5000, delimiter: str = ",", encoding: str = "utf-8-sig",
                 quote_char: str = '"'):
        super().__init__(chunk_rows)
        self.delimiter = delimiter
        self.encoding = encoding
        self.quote_char = quote_char

        # Common delimiters to try for auto-detection
        self.delimiter_candidates = [',', ';', '\t', '|']

    def check_source(self, source: UploadSource) -> None:
        """Delimited input streams, so any size is accepted."""
        return None

    def _read_sample(self, source: UploadSource) -> bytes:
        with source.open() as stream:
            return stream.read(SAMPLE_BYTES)

    def _detect_encoding(self, sample: bytes) -> str:
        if self.encoding.lower() != AUTO:
            return self.encoding

        detected = chardet.detect(sample)
        encoding = detected.get("encoding") or "utf-8"
        confidence = detected.get("confidence") or 0

        # Use utf-8 as fallback for low confidence
        if confidence < 0.7 or encoding.lower() in ("ascii", "utf-8"):
            encoding = "utf-8-sig"

        self.logger.info(f"Detected encoding: {encoding} (confidence: {confidence})")
        return encoding

    def _detect_delimiter(self, source: UploadSource, sample: bytes, encoding: str) -> str:
        if get_file_extension(source.name) == ".tsv" and self.delimiter in (",", AUTO):
            return "\t"
        if self.delimiter.lower() != AUTO:
            return self.delimiter

        sample_text = sample.decode(encoding, errors="ignore")
        # Drop a possibly truncated last line
        sample_text = "\n".join(sample_text.splitlines()[:20])

        try:
            dialect = csv.Sniffer().sniff(sample_text, delimiters="".join(self.delimiter_candidates))
            self.logger.info(f"CSV Sniffer detected delimiter: {dialect.delimiter!r}")
            return dialect.delimiter
        except csv.Error:
            pass

        counts = {d: sample_text.count(d) for d in self.delimiter_candidates if sample_text.count(d)}
        if counts:
            detected = max(counts, key=counts.get)
            self.logger.info(f"Delimiter detection by count: {detected!r}")
            return detected

        self.logger.warning("Could not detect delimiter, using comma")
        return ","

    @staticmethod
    def _field_names(header: List[str]) -> List[str]:
        names: List[str] = []
        seen = {}
        for position, raw in enumerate(header):
            name = raw.strip() or f"Column_{position + 1}"
            if name in seen:
                seen[name] += 1
                name = f"{name}.{seen[name]}"
            else:
                seen[name] = 0
            names.append(name)
        return names

    def iter_chunks(self, source: UploadSource) -> Iterator[RowChunk]:
        encoding = self.encoding
        delimiter = self.delimiter
        if AUTO in (encoding.lower(), delimiter.lower()) or get_file_extension(source.name) == ".tsv":
            sample = self._read_sample(source)
            encoding = self._detect_encoding(sample)
            delimiter = self._detect_delimiter(source, sample, encoding)

        counter = CountingReader(source.open())
        text = io.TextIOWrapper(io.BufferedReader(counter), encoding=encoding, newline="")
        reader = csv.reader(text, delimiter=delimiter, quotechar=self.quote_char, strict=True)
        rows_seen = 0
        truncated_rows = 0

        try:
            records = (record for record in reader if record)
            header = next(records, None)
            if header is None:
                yield RowChunk(rows=[], bytes_consumed=counter.bytes_read, total_bytes=source.size)
                return
            names = self._field_names(header)
            width = len(names)

            while True:
                batch = list(islice(records, self.chunk_rows))
                if not batch:
                    break

                rows: List[Row] = []
                for values in batch:
                    if len(values) > width:
                        truncated_rows += 1
                    rows.append(dict(zip(names, values)))

                rows_seen += len(rows)
                yield RowChunk(rows=rows, bytes_consumed=counter.bytes_read, total_bytes=source.size)

        except (csv.Error, UnicodeDecodeError) as e:
            raise ParseError(
                f"Malformed input in '{source.name}' after {rows_seen} rows: {e}",
                rows_seen=rows_seen,
            ) from e

        finally:
            text.close()

        if truncated_rows:
            self.logger.warning(f"{truncated_rows} rows in '{source.name}' had more fields than the header; extras dropped")
