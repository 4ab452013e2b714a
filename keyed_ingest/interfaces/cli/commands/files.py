"""
Inspect and manage registered files.
"""

from keyed_ingest.core.enums import ReorderDirection
from keyed_ingest.utils.file_utils import format_bytes
from .base import BaseCommand


class Command(BaseCommand):
    description = "List, rename, reorder or delete registered files"

    def add_arguments(self, parser):
        subparsers = parser.add_subparsers(dest='action')
        subparsers.add_parser('list', help='List files by order')

        rename = subparsers.add_parser('rename', help='Change the display name')
        rename.add_argument('file_id')
        rename.add_argument('display_name')

        reorder = subparsers.add_parser('reorder', help='Move a file up or down')
        reorder.add_argument('file_id')
        reorder.add_argument('direction', choices=[d.value for d in ReorderDirection])

        delete = subparsers.add_parser('delete', help='Delete a file and the records it owns')
        delete.add_argument('file_id')

    def handle(self, **kwargs):
        action = kwargs.get('action') or 'list'
        workspace = self.open_workspace(kwargs.get('database_url'))
        try:
            if action == 'list':
                self._list(workspace)
            elif action == 'rename':
                if workspace.rename(kwargs['file_id'], kwargs['display_name']) is None:
                    self.print_warning(f"File not found: {kwargs['file_id']}")
                else:
                    self.print_success("File renamed")
            elif action == 'reorder':
                if workspace.reorder(kwargs['file_id'], kwargs['direction']):
                    self.print_success("File moved")
                else:
                    self.print_warning("Order unchanged")
            elif action == 'delete':
                removed = workspace.delete_cascade(kwargs['file_id'])
                if removed is None:
                    self.print_warning(f"File not found: {kwargs['file_id']}")
                else:
                    self.print_success(f"File deleted with {removed} records")
        finally:
            workspace.db.disconnect()

    def _list(self, workspace):
        entries = workspace.list_files()
        if not entries:
            self.print_info("No files registered.")
            return

        for entry in entries:
            line = (
                f"{entry.sort_order:>4}  {entry.status.value:<10} {entry.display_name:<40} "
                f"{format_bytes(entry.size):>10}  seen={entry.rows_seen} upserted={entry.rows_upserted}"
            )
            print(line)
            print(f"      id: {entry.id}")
            if entry.error_detail:
                print(f"      error: {entry.error_detail}")
        print(f"{workspace.count()} records in store")
