"""
Tests for keyed_ingest.services.ingestion_service

Covers the ingestion counters, last-write-wins across files, cascade delete,
failure handling, cancellation, queue sequencing and progress events.
"""

import asyncio
import logging

import pytest

from keyed_ingest.core.enums import FileStatus, IngestState, ProgressPhase, ReorderDirection
from keyed_ingest.core.exceptions import (
    ConflictError,
    DatabaseError,
    IngestionCancelledError,
    OversizeError,
    ParseError,
    StorageTransactionError,
    UnsupportedFormatError,
)
from keyed_ingest.infrastructure.db.repositories.record_repository import RecordRepository
from keyed_ingest.services.ingestion_service import make_revision_check
from keyed_ingest.utils.file_utils import UploadSource
from keyed_ingest.utils.progress import CancellationToken, ProgressChannel

MALFORMED = 'id,qty\nA,1\nB,2\nC,"x"y\n'


def _entry(workspace, file_id):
    return workspace.get_file(file_id)


class TestIngest:

    @pytest.mark.asyncio
    async def test_duplicate_keys_scenario(self, workspace, write_file):
        source = write_file("inventory.csv", "id,qty\nA,5\nB,7\nA,9\n")

        result = await workspace.ingest(source)

        assert result.rows_seen == 3
        assert result.rows_upserted == 3
        assert result.total_store_count == 2
        assert workspace.count() == 2
        assert workspace.get_record("A").payload["qty"] == "9"

        entry = _entry(workspace, source.file_id)
        assert entry.status == FileStatus.READY
        assert (entry.rows_seen, entry.rows_upserted) == (3, 3)
        assert workspace.coordinator.state == IngestState.READY

    @pytest.mark.asyncio
    async def test_empty_key_counts_as_seen_only(self, workspace, write_file):
        source = write_file("gaps.csv", "id,qty\nA,1\n,2\n  ,3\n")

        result = await workspace.ingest(source)

        assert result.rows_seen == 3
        assert result.rows_upserted == 1
        assert workspace.count() == 1

    @pytest.mark.asyncio
    async def test_missing_key_column(self, workspace, write_file):
        source = write_file("nokey.csv", "sku,qty\nA,1\n")

        result = await workspace.ingest(source)

        assert (result.rows_seen, result.rows_upserted, workspace.count()) == (1, 0, 0)

    @pytest.mark.asyncio
    async def test_key_field_override(self, workspace, write_file):
        source = write_file("sku.csv", "sku,qty\nA,1\nB,2\n")

        result = await workspace.ingest(source, key_field="sku")

        assert result.rows_upserted == 2
        assert workspace.get_record("B").payload == {"sku": "B", "qty": "2"}

    @pytest.mark.asyncio
    async def test_reingest_is_idempotent(self, workspace, write_file):
        source = write_file("same.csv", "id,qty\nA,1\nB,2\nC,3\n")

        await workspace.ingest(source)
        snapshot = [(r.key, r.payload) for r in workspace.preview(10)]
        result = await workspace.ingest(source)

        assert workspace.count() == 3
        assert [(r.key, r.payload) for r in workspace.preview(10)] == snapshot
        assert len(workspace.list_files()) == 1
        assert result.rows_seen == 3
        assert _entry(workspace, source.file_id).rows_seen == 3

    @pytest.mark.asyncio
    async def test_later_ingestion_wins_regardless_of_listing_order(self, workspace, write_file):
        first = write_file("a.csv", "id,v\nX,1\n")
        second = write_file("b.csv", "id,v\nX,2\n")

        await workspace.ingest(first)
        await workspace.ingest(second)
        workspace.reorder(second.file_id, ReorderDirection.UP)

        assert [e.id for e in workspace.list_files()] == [second.file_id, first.file_id]
        assert workspace.get_record("X").payload["v"] == "2"
        assert workspace.get_record("X").source_file_id == second.file_id

        await workspace.ingest(first)
        assert workspace.get_record("X").payload["v"] == "1"

    @pytest.mark.asyncio
    async def test_cascade_delete_has_no_fallback(self, workspace, write_file):
        first = write_file("a.csv", "id,v\nX,a\nY,a\n")
        second = write_file("b.csv", "id,v\nY,b\nZ,b\n")
        await workspace.ingest(first)
        await workspace.ingest(second)
        assert workspace.count() == 3

        removed = workspace.delete_cascade(second.file_id)

        assert removed == 2
        assert workspace.count() == 1
        assert workspace.get_record("Y") is None
        assert workspace.get_record("X").payload["v"] == "a"
        assert [e.id for e in workspace.list_files()] == [first.file_id]

    @pytest.mark.asyncio
    async def test_spreadsheet_ingestion(self, workspace, write_workbook):
        source = write_workbook("book.xlsx", {"Sheet": [["id", "qty"], [101, 5], [102, None], [101, 9]]})

        result = await workspace.ingest(source)

        assert (result.rows_seen, result.rows_upserted, result.total_store_count) == (3, 3, 2)
        assert workspace.get_record("101").payload == {"id": 101, "qty": 9}
        assert workspace.get_record("102").payload["qty"] is None


class TestFailures:

    @pytest.mark.asyncio
    async def test_parse_error_marks_entry_and_keeps_committed_batches(self, workspace, write_file):
        source = write_file("broken.csv", MALFORMED)
        channel = ProgressChannel(history=True)

        with pytest.raises(ParseError):
            await workspace.ingest(source, channel=channel)

        entry = _entry(workspace, source.file_id)
        assert entry.status == FileStatus.ERROR
        assert entry.error_detail
        assert entry.rows_seen == 2
        assert workspace.count() == 2
        assert workspace.coordinator.state == IngestState.ERROR

        last = channel.events[-1]
        assert last.phase == ProgressPhase.ERROR
        assert last.percent == 0
        assert last.detail == entry.error_detail

    @pytest.mark.asyncio
    async def test_unsupported_format_fails_before_registration(self, workspace, write_file):
        source = write_file("data.json", '{"id": 1}')
        channel = ProgressChannel(history=True)

        with pytest.raises(UnsupportedFormatError):
            await workspace.ingest(source, channel=channel)

        assert workspace.list_files() == []
        assert [e.phase for e in channel.events] == [ProgressPhase.ERROR]

    @pytest.mark.asyncio
    async def test_oversize_spreadsheet_fails_before_registration(self, db, settings, write_workbook):
        from keyed_ingest.services.workspace import UploadWorkspace

        settings.ingest.excel_max_bytes = 10
        workspace = UploadWorkspace(db, settings)
        source = write_workbook("big.xlsx", {"Sheet": [["id"], ["A"]]})

        with pytest.raises(OversizeError):
            await workspace.ingest(source)

        assert workspace.list_files() == []
        assert workspace.count() == 0

    @pytest.mark.asyncio
    async def test_rejected_batch_aborts_and_keeps_committed_batches(self, workspace, write_file, monkeypatch):
        source = write_file("rejected.csv", "id\nA\nB\nC\nD\nE\nF\n")
        channel = ProgressChannel(history=True)
        original_put_batch = RecordRepository.put_batch
        calls = []

        def put_batch(self, *args, **kwargs):
            calls.append(1)
            if len(calls) == 2:
                raise DatabaseError("disk I/O error", operation="upsert")
            return original_put_batch(self, *args, **kwargs)

        monkeypatch.setattr(RecordRepository, "put_batch", put_batch)

        with pytest.raises(StorageTransactionError):
            await workspace.ingest(source, channel=channel)

        assert len(calls) == 2
        entry = _entry(workspace, source.file_id)
        assert entry.status == FileStatus.ERROR
        assert "disk I/O error" in entry.error_detail
        assert (entry.rows_seen, entry.rows_upserted) == (2, 2)
        assert workspace.count() == 2
        assert workspace.get_record("C") is None
        assert channel.events[-1].phase == ProgressPhase.ERROR
        assert workspace.coordinator.state == IngestState.ERROR

    @pytest.mark.asyncio
    async def test_status_write_failure_still_reaches_error_state(self, workspace, write_file, monkeypatch):
        def set_status(file_id, status, error_detail=None):
            raise DatabaseError("database is locked", operation="update")

        monkeypatch.setattr(workspace.coordinator.files, "set_status", set_status)
        channel = ProgressChannel(history=True)
        with pytest.raises(ParseError):
            await workspace.ingest(write_file("broken.csv", MALFORMED), channel=channel)

        assert workspace.coordinator.state == IngestState.ERROR
        assert channel.events[-1].phase == ProgressPhase.ERROR

        monkeypatch.undo()
        result = await workspace.ingest(write_file("ok.csv", "id\nQ\n"))
        assert result.rows_upserted == 1

    @pytest.mark.asyncio
    async def test_next_ingest_starts_after_failure(self, workspace, write_file):
        with pytest.raises(ParseError):
            await workspace.ingest(write_file("broken.csv", MALFORMED))

        result = await workspace.ingest(write_file("ok.csv", "id\nQ\n"))

        assert result.rows_upserted == 1
        assert workspace.coordinator.state == IngestState.READY


class TestCancellation:

    @pytest.mark.asyncio
    async def test_cancelled_token_marks_entry_error(self, workspace, write_file):
        source = write_file("cancel.csv", "id\nA\nB\n")
        token = CancellationToken()
        token.cancel()

        with pytest.raises(IngestionCancelledError):
            await workspace.ingest(source, token=token)

        entry = _entry(workspace, source.file_id)
        assert entry.status == FileStatus.ERROR
        assert entry.error_detail == "Ingestion cancelled"

    @pytest.mark.asyncio
    async def test_consumer_closing_channel_cancels_midway(self, workspace, write_file):
        source = write_file("long.csv", "id\n" + "".join(f"K{i:03d}\n" for i in range(40)))
        token = CancellationToken()
        channel = ProgressChannel(token=token)

        async def consume():
            async for event in channel:
                if event.phase == ProgressPhase.PARSING:
                    await channel.aclose()

        consumer = asyncio.create_task(consume())
        with pytest.raises(IngestionCancelledError):
            await workspace.ingest(source, channel=channel)
        await consumer

        committed = workspace.count()
        assert 0 < committed < 40
        assert _entry(workspace, source.file_id).rows_upserted == committed


    @pytest.mark.asyncio
    async def test_host_timeout_marks_entry_error_and_frees_coordinator(self, workspace, write_file):
        source = write_file("slow.csv", "id\n" + "".join(f"K{i:04d}\n" for i in range(2000)))
        channel = ProgressChannel(history=True)

        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(workspace.ingest(source, channel=channel), timeout=0.001)

        entry = _entry(workspace, source.file_id)
        assert entry.status == FileStatus.ERROR
        assert entry.error_detail == "Ingestion cancelled"
        assert workspace.coordinator.state == IngestState.ERROR
        assert not workspace.coordinator.busy
        assert channel.events[-1].phase == ProgressPhase.ERROR
        assert channel.closed

        result = await workspace.ingest(write_file("after.csv", "id\nQ\n"))
        assert result.rows_upserted == 1
        assert workspace.coordinator.state == IngestState.READY


class TestConcurrency:

    @pytest.mark.asyncio
    async def test_second_ingest_is_rejected_while_busy(self, workspace, write_file):
        first = write_file("one.csv", "id\nA\nB\nC\n")
        second = write_file("two.csv", "id\nD\n")

        results = await asyncio.gather(
            workspace.ingest(first),
            workspace.ingest(second),
            return_exceptions=True,
        )

        assert results[0].rows_upserted == 3
        assert isinstance(results[1], ConflictError)
        assert not workspace.coordinator.busy


class TestQueue:

    @pytest.mark.asyncio
    async def test_stops_after_failure_without_decision(self, workspace, write_file):
        sources = [
            write_file("q1.csv", "id\nA\n"),
            write_file("q2.csv", MALFORMED),
            write_file("q3.csv", "id\nZ\n"),
        ]

        results = await workspace.ingest_queue(sources)

        assert [r.status for r in results] == ["ready", "error", "skipped"]
        assert results[1].error_code == "PARSE_ERROR"
        assert workspace.get_record("Z") is None

    @pytest.mark.asyncio
    async def test_decision_callback_continues(self, workspace, write_file):
        sources = [
            write_file("q1.csv", "id\nA\n"),
            write_file("q2.csv", MALFORMED),
            write_file("q3.csv", "id\nZ\n"),
        ]
        asked = []

        async def decide(source: UploadSource, error: Exception) -> bool:
            asked.append((source.name, type(error)))
            return True

        results = await workspace.ingest_queue(sources, decide=decide)

        assert [r.status for r in results] == ["ready", "error", "ready"]
        assert asked == [("q2.csv", ParseError)]
        assert [e.status for e in workspace.list_files()] == [FileStatus.READY, FileStatus.ERROR, FileStatus.READY]

    @pytest.mark.asyncio
    async def test_queue_order_decides_conflicts(self, workspace, write_file):
        sources = [write_file("old.csv", "id,v\nX,old\n"), write_file("new.csv", "id,v\nX,new\n")]

        await workspace.ingest_queue(sources)

        assert workspace.get_record("X").payload["v"] == "new"


class TestProgress:

    @pytest.mark.asyncio
    async def test_event_sequence(self, workspace, write_file):
        source = write_file("progress.csv", "id\n" + "".join(f"K{i}\n" for i in range(7)))
        channel = ProgressChannel(history=True)

        await workspace.ingest(source, channel=channel)

        events = channel.events
        assert events[0].phase == ProgressPhase.READING
        assert events[0].percent == 1
        assert events[-1].phase == ProgressPhase.DONE
        assert events[-1].percent == 100
        assert "7" in events[-1].detail

        parsing = [e for e in events if e.phase == ProgressPhase.PARSING]
        assert len(parsing) == 4
        assert [e.detail for e in parsing] == [f"Rows processed: {n}" for n in (2, 4, 6, 7)]
        assert all(e.percent <= 99 for e in parsing)
        assert [e.percent for e in parsing] == sorted(e.percent for e in parsing)
        assert all(e.file_id == source.file_id for e in events)
        assert channel.closed

    @pytest.mark.asyncio
    async def test_one_event_per_write_batch(self, db, settings, write_file):
        from keyed_ingest.services.workspace import UploadWorkspace

        settings.ingest.csv_chunk_rows = 6
        workspace = UploadWorkspace(db, settings)
        source = write_file("wide.csv", "id\n" + "".join(f"K{i}\n" for i in range(6)))
        channel = ProgressChannel(history=True)

        await workspace.ingest(source, channel=channel)

        parsing = [e for e in channel.events if e.phase == ProgressPhase.PARSING]
        assert [e.detail for e in parsing] == [f"Rows processed: {n}" for n in (2, 4, 6)]
        percents = [e.percent for e in parsing]
        assert percents == sorted(percents)
        assert 0 < percents[0] < percents[-1] <= 99

    @pytest.mark.asyncio
    async def test_log_lines_carry_file_id(self, workspace, write_file, caplog):
        caplog.set_level(logging.INFO, logger="keyed_ingest")
        source = write_file("logged.csv", "id\nA\n")

        await workspace.ingest(source)

        tagged = [r for r in caplog.records if getattr(r, "file_id", None) == source.file_id]
        assert any("ready" in r.getMessage() for r in tagged)

    @pytest.mark.asyncio
    async def test_channel_can_be_consumed_concurrently(self, workspace, write_file):
        source = write_file("stream.csv", "id\nA\nB\nC\n")
        channel = ProgressChannel()

        async def collect():
            return [event.phase async for event in channel]

        collector = asyncio.create_task(collect())
        await workspace.ingest(source, channel=channel)
        phases = await collector

        assert phases[0] == ProgressPhase.READING
        assert phases[-1] == ProgressPhase.DONE


class TestRevisionField:

    @pytest.mark.asyncio
    async def test_older_revision_does_not_overwrite(self, workspace, write_file):
        newer = write_file("newer.csv", "id,rev,v\nX,10,new\n")
        older = write_file("older.csv", "id,rev,v\nX,9,old\nY,1,y\n")

        await workspace.ingest(newer, revision_field="rev")
        result = await workspace.ingest(older, revision_field="rev")

        assert workspace.get_record("X").payload["v"] == "new"
        assert result.rows_seen == 2
        assert result.rows_upserted == 1
        assert workspace.count() == 2

    @pytest.mark.parametrize("incoming,stored,stale", [
        ("10", "9", False),
        ("9", "10", True),
        ("5", "5", False),
        ("2024-01-02", "2023-12-31", False),
        ("2023-12-31", "2024-01-02", True),
        ("2024-01-02T01:00:00+02:00", "2024-01-01T22:00:00", False),
        ("2024-01-01T20:00:00-05:00", "2024-01-02T02:00:00Z", True),
        ("b", "a", False),
        ("", "a", False),
    ])
    def test_revision_comparison(self, incoming, stored, stale):
        is_stale = make_revision_check("rev")

        assert is_stale({"rev": incoming}, {"rev": stored}) is stale
