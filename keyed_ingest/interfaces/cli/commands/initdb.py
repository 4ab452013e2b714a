"""
Create the database schema.
"""

from .base import BaseCommand


class Command(BaseCommand):
    description = "Create database tables"

    def handle(self, **kwargs):
        workspace = self.open_workspace(kwargs.get('database_url'))
        try:
            self.print_success(f"Database ready ({workspace.count()} records)")
        finally:
            workspace.db.disconnect()
