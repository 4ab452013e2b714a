"""
Ingestion coordinator: streams one file at a time into the keyed record store.

Orchestrates the parser, the record store and the file registry, owns the
per-file state machine and publishes progress events.
"""

import asyncio
import inspect
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Union

from keyed_ingest.core.config import IngestSettings
from keyed_ingest.core.enums import FileStatus, IngestState, ProgressPhase
from keyed_ingest.core.exceptions import (
    AppException,
    ConflictError,
    DatabaseError,
    IngestionCancelledError,
    StorageTransactionError,
)
from keyed_ingest.core.logging import LoggerAdapter
from keyed_ingest.infrastructure.db.connection import DatabaseManager
from keyed_ingest.infrastructure.db.models.file_registry import FileEntry
from keyed_ingest.infrastructure.db.repositories.file_repository import FileRegistryRepository
from keyed_ingest.infrastructure.db.repositories.record_repository import (
    BatchWriteResult,
    PendingRecord,
    RecordRepository,
)
from keyed_ingest.processors import BaseProcessor, Row, get_processor, normalize_key
from keyed_ingest.schemas.file_upload import IngestResult
from keyed_ingest.schemas.progress import ProgressEvent
from keyed_ingest.services.base import BaseService
from keyed_ingest.services.file_service import FileService
from keyed_ingest.services.record_store import KeyedRecordStore
from keyed_ingest.utils.date_utils import get_current_timestamp, parse_datetime
from keyed_ingest.utils.file_utils import UploadSource
from keyed_ingest.utils.progress import CancellationToken, ProgressChannel

LOG_EVERY_BATCHES = 50

ALLOWED_TRANSITIONS = {
    IngestState.IDLE: {IngestState.READING},
    IngestState.READING: {IngestState.PARSING, IngestState.ERROR},
    IngestState.PARSING: {IngestState.DEDUPING, IngestState.READY, IngestState.ERROR},
    IngestState.DEDUPING: {IngestState.PARSING, IngestState.READY, IngestState.ERROR},
    IngestState.READY: {IngestState.IDLE},
    IngestState.ERROR: {IngestState.IDLE},
}


def _as_number(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    try:
        return float(str(value).strip())
    except ValueError:
        return None


def make_revision_check(revision_field: str) -> Callable[[Dict[str, Any], Dict[str, Any]], bool]:
    """
    Build an ``is_stale(incoming, stored)`` predicate on ``revision_field``.

    Both values numeric: numeric comparison. Both date-like: chronological.
    Otherwise string comparison. A row missing either revision is never
    stale, and an equal revision overwrites.
    """

    def is_stale(incoming: Dict[str, Any], stored: Dict[str, Any]) -> bool:
        new_value = incoming.get(revision_field)
        old_value = stored.get(revision_field)
        if new_value in (None, "") or old_value in (None, ""):
            return False

        new_number, old_number = _as_number(new_value), _as_number(old_value)
        if new_number is not None and old_number is not None:
            return new_number < old_number

        new_date, old_date = parse_datetime(new_value), parse_datetime(old_value)
        if new_date is not None and old_date is not None:
            return new_date < old_date

        return str(new_value) < str(old_value)

    return is_stale


@dataclass
class QueueItemResult:
    """Outcome of one file in ``ingest_queue``."""
    name: str
    file_id: Optional[str] = None
    status: str = "skipped"
    result: Optional[IngestResult] = None
    error: Optional[str] = None
    error_code: Optional[str] = None


@dataclass
class _FileRun:
    file_id: str
    rows_seen: int = 0
    rows_upserted: int = 0
    stale: int = 0
    batches: int = 0
    percent: int = 0


QueueDecision = Callable[[UploadSource, Exception], Union[bool, Awaitable[bool]]]


class IngestionCoordinator(BaseService):
    """
    Ingests files one at a time.

    States: ``IDLE -> READING -> PARSING -> [DEDUPING] -> READY`` with
    ``ERROR`` reachable from READING, PARSING and DEDUPING. Each write batch
    and the owning entry's counters commit together; a failure leaves
    committed batches in place and the entry in ``error`` with a message.
    Control is yielded to the event loop between parser chunks and between
    write batches.
    """

    def __init__(
        self,
        db: DatabaseManager,
        store: Optional[KeyedRecordStore] = None,
        files: Optional[FileService] = None,
        settings: Optional[IngestSettings] = None,
    ):
        super().__init__(db)
        self.settings = settings or IngestSettings()
        self.store = store or KeyedRecordStore(db, page_size=self.settings.scan_page_size)
        self.files = files or FileService(db)
        self.state = IngestState.IDLE
        self.current_file_id: Optional[str] = None
        self._busy = False

    def get_service_name(self) -> str:
        return "IngestionCoordinator"

    @property
    def busy(self) -> bool:
        return self._busy

    def _transition(self, new_state: IngestState) -> None:
        if new_state not in ALLOWED_TRANSITIONS[self.state]:
            raise ConflictError(
                f"Illegal ingestion state transition {self.state.value} -> {new_state.value}",
                resource="IngestionCoordinator",
            )
        self.logger.debug(f"Ingestion state {self.state.value} -> {new_state.value}")
        self.state = new_state

    def _publish(self, channel: Optional[ProgressChannel], phase: ProgressPhase, percent: int,
                 detail: str, file_id: Optional[str]) -> None:
        if channel is not None:
            channel.publish(ProgressEvent(phase=phase, percent=percent, detail=detail, file_id=file_id))

    def _fail(self, channel: Optional[ProgressChannel], file_id: str, message: str, registered: bool) -> None:
        """Mark the entry failed, enter ERROR and publish the error event."""
        try:
            if registered:
                self.files.set_status(file_id, FileStatus.ERROR, message)
        except AppException as e:
            self.logger.error(f"Could not mark {file_id} as failed: {e.message}")
        finally:
            self._transition(IngestState.ERROR)
            self._publish(channel, ProgressPhase.ERROR, 0, message, file_id)

    def _write_batch(
        self,
        run: _FileRun,
        rows: Sequence[Row],
        key_field: str,
        is_stale: Optional[Callable[[Dict[str, Any], Dict[str, Any]], bool]],
    ) -> BatchWriteResult:
        """Upsert one batch and bump the entry's counters in a single transaction."""
        pending = []
        for row in rows:
            key = normalize_key(row.get(key_field))
            if key:
                pending.append(PendingRecord(key, dict(row)))

        try:
            with self.db.get_session() as session:
                result = RecordRepository(session).put_batch(pending, run.file_id, is_stale=is_stale)
                FileRegistryRepository(session).add_counts(run.file_id, len(rows), result.written)
        except StorageTransactionError:
            raise
        except DatabaseError as e:
            raise StorageTransactionError(
                f"Write batch {run.batches + 1} rejected: {e.message}",
                details={"file_id": run.file_id, "batch": run.batches + 1},
            ) from e

        run.rows_seen += len(rows)
        run.rows_upserted += result.written
        run.stale += result.stale
        run.batches += 1
        return result

    async def ingest(
        self,
        source: UploadSource,
        channel: Optional[ProgressChannel] = None,
        token: Optional[CancellationToken] = None,
        key_field: Optional[str] = None,
        revision_field: Optional[str] = None,
    ) -> IngestResult:
        """
        Ingest one file into the store.

        Args:
            source: Upload to read
            channel: Optional progress channel; closed when ingestion ends
            token: Optional cancellation token, checked between chunks and batches
            key_field: Business key column, defaults to the configured one
            revision_field: Optional column deciding conflicts instead of
                ingestion order

        Returns:
            Rows seen, rows upserted and the store's total count

        Raises:
            ConflictError: If another ingestion is in flight
            UnsupportedFormatError: Unrecognized extension, before any I/O
            OversizeError: Spreadsheet above the ceiling, before parsing
            ParseError: Malformed stream
            StorageTransactionError: A write batch was rejected
            IngestionCancelledError: Cancellation was requested
        """
        if self._busy:
            if channel is not None:
                channel.close()
            raise ConflictError("Another ingestion is in progress", resource="IngestionCoordinator")

        if token is None and channel is not None:
            token = channel.token

        self._busy = True
        try:
            return await self._ingest(
                source,
                channel,
                token,
                key_field or self.settings.key_field,
                revision_field if revision_field is not None else self.settings.revision_field,
            )
        finally:
            if self.state not in (IngestState.IDLE, IngestState.READY, IngestState.ERROR):
                self.logger.warning(f"Ingestion ended in {self.state.value}; forcing error state")
                self.state = IngestState.ERROR
            self._busy = False
            self.current_file_id = None
            if channel is not None:
                channel.close()

    async def _ingest(
        self,
        source: UploadSource,
        channel: Optional[ProgressChannel],
        token: Optional[CancellationToken],
        key_field: str,
        revision_field: Optional[str],
    ) -> IngestResult:
        if self.state in (IngestState.READY, IngestState.ERROR):
            self._transition(IngestState.IDLE)

        file_id = source.file_id
        self.current_file_id = file_id
        log = LoggerAdapter(self.logger, {"file_id": file_id})
        registered = False
        self._transition(IngestState.READING)

        try:
            processor: BaseProcessor = get_processor(source.name, self.settings)
            processor.check_source(source)

            self._publish(channel, ProgressPhase.READING, 1, f"Preparing {source.name}", file_id)
            self.log_operation("ingest", {"file_id": file_id, "size": source.size, "key_field": key_field})

            self.files.register(FileEntry(
                id=file_id,
                original_name=source.name,
                display_name=source.name,
                size=source.size,
                last_modified=source.last_modified,
                kind=processor.kind,
                content_type=source.content_type,
                uploaded_at=get_current_timestamp(),
                status=FileStatus.PROCESSING,
            ))
            registered = True

            run = _FileRun(file_id=file_id)
            is_stale = make_revision_check(revision_field) if revision_field else None
            batch_size = self.settings.batch_size

            self._transition(IngestState.PARSING)
            await asyncio.sleep(0)

            for chunk in processor.iter_chunks(source):
                if token is not None:
                    token.raise_if_cancelled(file_id)

                chunk_start = run.percent
                chunk_end = max(run.percent, min(99, chunk.percent))
                total_rows = len(chunk.rows)

                for start in range(0, total_rows, batch_size):
                    if token is not None:
                        token.raise_if_cancelled(file_id)

                    end = min(start + batch_size, total_rows)
                    if is_stale is not None:
                        self._transition(IngestState.DEDUPING)
                    self._write_batch(run, chunk.rows[start:end], key_field, is_stale)
                    if is_stale is not None:
                        self._transition(IngestState.PARSING)

                    # Interpolate within the chunk so the percent stays monotonic
                    run.percent = chunk_start + (chunk_end - chunk_start) * end // total_rows
                    self._publish(channel, ProgressPhase.PARSING, run.percent,
                                  f"Rows processed: {run.rows_seen:,}", file_id)

                    if run.batches % LOG_EVERY_BATCHES == 0:
                        log.info(f"File {file_id}: {run.rows_seen} rows seen after {run.batches} batches")
                    await asyncio.sleep(0)

                if total_rows == 0:
                    run.percent = chunk_end
                    self._publish(channel, ProgressPhase.PARSING, run.percent,
                                  f"Rows processed: {run.rows_seen:,}", file_id)
                await asyncio.sleep(0)

            self.files.set_status(file_id, FileStatus.READY)
            self._transition(IngestState.READY)

        except asyncio.CancelledError:
            message = IngestionCancelledError(file_id).message
            log.warning(f"Ingestion of {file_id} cancelled by the host")
            self._fail(channel, file_id, message, registered)
            raise

        except Exception as e:
            message = e.message if isinstance(e, AppException) else (str(e) or "Upload failed.")
            log.error(f"Ingestion of {file_id} failed: {message}")
            self._fail(channel, file_id, message, registered)
            raise

        total = self.store.count()
        if run.stale:
            log.info(f"File {file_id}: {run.stale} rows skipped as older revisions")
        log.info(
            f"File {file_id} ready: rows_seen={run.rows_seen} rows_upserted={run.rows_upserted} total={total}"
        )
        self._publish(channel, ProgressPhase.DONE, 100, f"Done. Total deduped records: {total:,}", file_id)

        return IngestResult(
            file_id=file_id,
            rows_seen=run.rows_seen,
            rows_upserted=run.rows_upserted,
            total_store_count=total,
        )

    async def ingest_queue(
        self,
        sources: Sequence[UploadSource],
        decide: Optional[QueueDecision] = None,
        channel_factory: Optional[Callable[[UploadSource], Optional[ProgressChannel]]] = None,
        token: Optional[CancellationToken] = None,
        key_field: Optional[str] = None,
        revision_field: Optional[str] = None,
    ) -> List[QueueItemResult]:
        """
        Ingest files strictly one after another.

        A failure aborts only that file. ``decide(source, error)`` is then
        asked whether to continue; without it the queue stops and the
        remaining files are reported as skipped.
        """
        results = [QueueItemResult(name=source.name) for source in sources]
        self.log_operation("ingest_queue", {"files": len(sources)})

        for index, source in enumerate(sources):
            item = results[index]
            channel = channel_factory(source) if channel_factory else None
            try:
                item.file_id = source.file_id
                item.result = await self.ingest(
                    source,
                    channel=channel,
                    token=token,
                    key_field=key_field,
                    revision_field=revision_field,
                )
                item.status = "ready"
                continue

            except AppException as e:
                item.status = "error"
                item.error = e.message
                item.error_code = e.error_code
                error: Exception = e

            except Exception as e:
                item.status = "error"
                item.error = str(e)
                error = e

            if token is not None and token.cancelled:
                self.logger.warning("Queue cancelled; remaining files skipped")
                break

            proceed = False
            if decide is not None:
                proceed = decide(source, error)
                if inspect.isawaitable(proceed):
                    proceed = await proceed

            if not proceed:
                self.logger.warning(f"Queue stopped after {source.name} failed; remaining files skipped")
                break

        return results
