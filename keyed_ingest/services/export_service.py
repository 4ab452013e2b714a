"""
Exporter: streams the deduplicated store back out as delimited text.
"""

import asyncio
import csv
import io
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

import aiofiles

from keyed_ingest.core.config import ExportSettings
from keyed_ingest.services.record_store import KeyedRecordStore


def _render_value(value: Any) -> Any:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return value


@dataclass
class ExportArtifact:
    """A named downloadable blob whose content is produced lazily."""
    filename: str
    chunks: Callable[[], AsyncIterator[str]] = field(repr=False)
    media_type: str = "text/csv"
    encoding: str = "utf-8"

    def __aiter__(self) -> AsyncIterator[str]:
        return self.chunks()

    async def iter_bytes(self) -> AsyncIterator[bytes]:
        async for chunk in self.chunks():
            yield chunk.encode(self.encoding)

    async def write_to(self, path) -> int:
        """Stream the artifact to ``path``. Returns bytes written."""
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        written = 0
        async with aiofiles.open(target, "wb") as handle:
            async for data in self.iter_bytes():
                await handle.write(data)
                written += len(data)
        return written


class Exporter:
    """
    Serializes up to ``row_cap`` records against a header taken from the
    first record's field names. Fields a later record adds are dropped and
    fields it lacks render empty. One text chunk is produced per scan page.
    """

    def __init__(self, store: KeyedRecordStore, settings: Optional[ExportSettings] = None):
        self.store = store
        self.settings = settings or ExportSettings()
        self.logger = store.logger.getChild("Exporter")

    async def export(self, row_cap: Optional[int] = None) -> AsyncIterator[str]:
        cap = row_cap if row_cap is not None else self.settings.row_cap
        buffer = io.StringIO()
        writer: Optional[csv.DictWriter] = None
        exported = 0

        for page in self.store.scan_pages(cap):
            rows: List[Dict[str, Any]] = [record.payload for record in page]
            if writer is None:
                writer = csv.DictWriter(
                    buffer,
                    fieldnames=list(rows[0].keys()),
                    extrasaction="ignore",
                    restval="",
                    lineterminator="\r\n",
                )
                writer.writeheader()

            for payload in rows:
                writer.writerow({name: _render_value(value) for name, value in payload.items()})
            exported += len(rows)

            yield buffer.getvalue()
            buffer.seek(0)
            buffer.truncate(0)
            await asyncio.sleep(0)

        self.logger.info(f"Exported {exported} records (cap {cap})")

    def export_all(self, row_cap: Optional[int] = None, filename: Optional[str] = None) -> ExportArtifact:
        """Build a lazily produced CSV artifact of the store."""
        return ExportArtifact(
            filename=filename or self.settings.filename,
            chunks=lambda: self.export(row_cap),
        )
