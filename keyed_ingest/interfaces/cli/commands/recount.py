"""
Rebuild the stored record counter from the records table.
"""

from .base import BaseCommand


class Command(BaseCommand):
    description = "Rebuild the distinct-key counter"

    def handle(self, **kwargs):
        workspace = self.open_workspace(kwargs.get('database_url'))
        try:
            before = workspace.count()
            after = workspace.recount()
        finally:
            workspace.db.disconnect()

        if before != after:
            self.print_warning(f"Counter corrected: {before} -> {after}")
        else:
            self.print_success(f"Counter is consistent: {after}")
