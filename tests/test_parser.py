"""
Tests for the chunked parsers in keyed_ingest.processors.
"""

import numpy as np
import pandas as pd
import pytest

from keyed_ingest.core.config import IngestSettings
from keyed_ingest.core.enums import FileKind
from keyed_ingest.core.exceptions import OversizeError, ParseError, UnsupportedFormatError
from keyed_ingest.processors import (
    CSVProcessor,
    ExcelProcessor,
    coerce_scalar,
    get_processor,
    is_supported_file,
    normalize_key,
)


def _rows(processor, source):
    return list(processor.iter_rows(source))


class TestDelimitedParser:
    """Streaming parser for .csv/.tsv/.txt input."""

    def test_header_defines_field_names(self, write_file):
        source = write_file("basic.csv", "id,qty\nA,5\nB,7\n")

        rows = _rows(CSVProcessor(chunk_rows=10), source)

        assert rows == [{"id": "A", "qty": "5"}, {"id": "B", "qty": "7"}]

    def test_missing_trailing_fields_are_absent(self, write_file):
        source = write_file("short.csv", "id,a,b\n1,x\n2,y,z\n")

        rows = _rows(CSVProcessor(), source)

        assert rows[0] == {"id": "1", "a": "x"}
        assert "b" not in rows[0]
        assert rows[1] == {"id": "2", "a": "y", "b": "z"}

    def test_empty_cells_stay_empty_strings(self, write_file):
        source = write_file("empty_cell.csv", "id,a,b\n1,,z\n")

        assert _rows(CSVProcessor(), source) == [{"id": "1", "a": "", "b": "z"}]

    def test_quoted_delimiters_and_newlines_are_respected(self, write_file):
        source = write_file("quoted.csv", 'id,name,note\n1,"Smith, J","line one\nline two"\n')

        rows = _rows(CSVProcessor(), source)

        assert rows == [{"id": "1", "name": "Smith, J", "note": "line one\nline two"}]

    def test_blank_lines_are_skipped(self, write_file):
        source = write_file("blank.csv", "id,qty\n\nA,1\n\n\nB,2\n")

        assert [row["id"] for row in _rows(CSVProcessor(), source)] == ["A", "B"]

    def test_extra_fields_are_dropped(self, write_file):
        source = write_file("wide.csv", "id,qty\nA,1,surplus\n")

        assert _rows(CSVProcessor(), source) == [{"id": "A", "qty": "1"}]

    def test_bom_is_stripped_from_header(self, write_file):
        source = write_file("bom.csv", "\ufeffid,qty\nA,1\n".encode("utf-8"))

        assert _rows(CSVProcessor(), source) == [{"id": "A", "qty": "1"}]

    def test_chunks_are_bounded_and_report_bytes(self, write_file):
        source = write_file("chunks.csv", "id\n" + "".join(f"K{i}\n" for i in range(5)))

        chunks = list(CSVProcessor(chunk_rows=2).iter_chunks(source))

        assert [len(chunk.rows) for chunk in chunks] == [2, 2, 1]
        assert all(chunk.total_bytes == source.size for chunk in chunks)
        assert chunks[-1].bytes_consumed == source.size
        assert chunks[-1].percent == 100

    def test_tsv_uses_tab_delimiter(self, write_file):
        source = write_file("tabs.tsv", "id\tname\nA\tSmith, J\n")

        assert _rows(CSVProcessor(), source) == [{"id": "A", "name": "Smith, J"}]

    def test_auto_delimiter_detection(self, write_file):
        source = write_file("semi.csv", "id;qty;note\nA;1;x\nB;2;y\nC;3;z\n")

        rows = _rows(CSVProcessor(delimiter="auto"), source)

        assert rows[0] == {"id": "A", "qty": "1", "note": "x"}

    def test_empty_stream_yields_no_rows(self, write_file):
        source = write_file("empty.csv", "")

        assert _rows(CSVProcessor(), source) == []

    def test_malformed_quoting_raises_parse_error(self, write_file):
        source = write_file("bad_quote.csv", 'id,name\n1,"abc"def\n')

        with pytest.raises(ParseError):
            _rows(CSVProcessor(), source)

    def test_invalid_bytes_raise_parse_error_with_partial_count(self, write_file):
        content = b"id,name\n" + b"".join(f"K{i},ok\n".encode() for i in range(4)) + b"K9,\xff\xfe\n"
        source = write_file("bad_bytes.csv", content)
        processor = CSVProcessor(chunk_rows=2)
        seen = []

        with pytest.raises(ParseError) as exc_info:
            for chunk in processor.iter_chunks(source):
                seen.extend(chunk.rows)

        assert exc_info.value.status_code == 422
        assert exc_info.value.rows_seen == len(seen)


class TestSpreadsheetParser:
    """Whole-document parser for .xlsx/.xls input."""

    def test_reads_first_sheet_only(self, write_workbook):
        source = write_workbook("book.xlsx", {
            "Inventory": [["id", "qty", "note"], ["A", 5, None], ["B", 7, "x"]],
            "Other": [["id"], ["Z"]],
        })

        rows = _rows(ExcelProcessor(), source)

        assert [row["id"] for row in rows] == ["A", "B"]
        assert rows[0]["qty"] == 5
        assert rows[0]["note"] is None
        assert rows[1]["note"] == "x"

    def test_chunks_report_row_progress(self, write_workbook):
        source = write_workbook("rows.xlsx", {"Sheet": [["id"]] + [[f"K{i}"] for i in range(5)]})

        chunks = list(ExcelProcessor(chunk_rows=2).iter_chunks(source))

        assert [chunk.rows_processed for chunk in chunks] == [2, 4, 5]
        assert all(chunk.total_rows == 5 for chunk in chunks)
        assert chunks[-1].percent == 100

    def test_oversize_document_rejected_before_parse(self, write_workbook):
        source = write_workbook("big.xlsx", {"Sheet": [["id"], ["A"]]})
        processor = ExcelProcessor(max_bytes=10)

        with pytest.raises(OversizeError) as exc_info:
            processor.check_source(source)

        assert exc_info.value.status_code == 413
        assert exc_info.value.limit == 10

    def test_corrupt_workbook_raises_parse_error(self, write_file):
        source = write_file("corrupt.xlsx", b"this is not a workbook")

        with pytest.raises(ParseError):
            _rows(ExcelProcessor(), source)


class TestProcessorFactory:

    def test_selects_processor_by_extension(self):
        assert isinstance(get_processor("a.csv"), CSVProcessor)
        assert isinstance(get_processor("a.TXT"), CSVProcessor)
        assert isinstance(get_processor("a.xlsx"), ExcelProcessor)
        assert get_processor("a.xls").kind == FileKind.SPREADSHEET

    def test_applies_settings(self):
        settings = IngestSettings(csv_chunk_rows=7, csv_delimiter=";", excel_max_bytes=1234)

        assert get_processor("a.csv", settings).delimiter == ";"
        assert get_processor("a.csv", settings).chunk_rows == 7
        assert get_processor("a.xlsx", settings).max_bytes == 1234

    def test_unsupported_extension(self):
        with pytest.raises(UnsupportedFormatError) as exc_info:
            get_processor("report.json")

        assert exc_info.value.error_code == "UNSUPPORTED_FORMAT"
        assert not is_supported_file("report.json")
        assert is_supported_file("report.csv")


class TestScalars:

    @pytest.mark.parametrize("value,expected", [
        (None, ""),
        ("  A1 ", "A1"),
        (5.0, "5"),
        (5.5, "5.5"),
        (12, "12"),
        (True, "true"),
    ])
    def test_normalize_key(self, value, expected):
        assert normalize_key(value) == expected

    def test_coerce_scalar(self):
        assert coerce_scalar(np.int64(3)) == 3
        assert isinstance(coerce_scalar(np.int64(3)), int)
        assert coerce_scalar(float("nan")) is None
        assert coerce_scalar(pd.NaT) is None
        assert coerce_scalar(np.bool_(True)) is True
        assert coerce_scalar(pd.Timestamp("2024-01-02 03:04:05")) == "2024-01-02T03:04:05"
        assert coerce_scalar("text") == "text"
