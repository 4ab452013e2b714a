"""
Ingest one or more files, one after another.
"""

import asyncio
from pathlib import Path

from keyed_ingest.utils.file_utils import UploadSource
from keyed_ingest.utils.progress import ProgressChannel
from .base import BaseCommand


class Command(BaseCommand):
    description = "Ingest files into the keyed record store"

    def add_arguments(self, parser):
        parser.add_argument('paths', nargs='+', help='Files to ingest, in order')
        parser.add_argument('--key-field', dest='key_field', help='Business key column')
        parser.add_argument('--revision-field', dest='revision_field', help='Column deciding conflicts')
        parser.add_argument(
            '--continue-on-error',
            dest='continue_on_error',
            action='store_true',
            help='Keep going with the next file after a failure'
        )
        parser.add_argument('--quiet', action='store_true', help='Do not print progress events')

    def handle(self, **kwargs):
        paths = [Path(p) for p in kwargs['paths']]
        missing = [str(p) for p in paths if not p.is_file()]
        if missing:
            self.print_error(f"File not found: {', '.join(missing)}")
            return 1

        workspace = self.open_workspace(kwargs.get('database_url'))
        try:
            results = asyncio.run(self._ingest_all(workspace, paths, **kwargs))
        finally:
            workspace.db.disconnect()

        failed = 0
        for item in results:
            if item.status == "ready":
                result = item.result
                self.print_success(
                    f"{item.name}: {result.rows_seen} rows seen, {result.rows_upserted} upserted, "
                    f"{result.total_store_count} records in store"
                )
            elif item.status == "error":
                failed += 1
                self.print_error(f"{item.name}: {item.error}")
            else:
                self.print_warning(f"{item.name}: skipped")

        return 1 if failed else 0

    async def _ingest_all(self, workspace, paths, **kwargs):
        quiet = kwargs.get('quiet', False)
        continue_on_error = kwargs.get('continue_on_error', False)
        printers = []

        def channel_factory(source):
            if quiet:
                return None
            channel = ProgressChannel()
            printers.append(asyncio.ensure_future(self._print_progress(source.name, channel)))
            return channel

        results = await workspace.ingest_queue(
            [UploadSource.from_path(path) for path in paths],
            decide=lambda source, error: continue_on_error,
            channel_factory=channel_factory,
            key_field=kwargs.get('key_field'),
            revision_field=kwargs.get('revision_field'),
        )
        await asyncio.gather(*printers)
        return results

    async def _print_progress(self, name, channel):
        async for event in channel:
            self.print_info(f"{name} [{event.phase.value} {event.percent}%] {event.detail}")
