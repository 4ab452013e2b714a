"""
Export the deduplicated store to a CSV file.
"""

import asyncio
from pathlib import Path

from keyed_ingest.utils.file_utils import format_bytes
from .base import BaseCommand


class Command(BaseCommand):
    description = "Export deduplicated records to CSV"

    def add_arguments(self, parser):
        parser.add_argument('--output', '-o', help='Output path (defaults to the configured filename)')
        parser.add_argument('--row-cap', dest='row_cap', type=int, help='Maximum number of records')

    def handle(self, **kwargs):
        workspace = self.open_workspace(kwargs.get('database_url'))
        try:
            artifact = workspace.export_all(row_cap=kwargs.get('row_cap'))
            output = Path(kwargs.get('output') or artifact.filename)
            written = asyncio.run(artifact.write_to(output))
        finally:
            workspace.db.disconnect()

        self.print_success(f"Exported to {output} ({format_bytes(written)})")
