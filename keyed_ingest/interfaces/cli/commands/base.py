"""
Base class for every CLI command.
"""

import argparse
from abc import ABC, abstractmethod
from typing import List, Optional

from keyed_ingest.core.config import Settings, get_settings
from keyed_ingest.core.logging import setup_logging
from keyed_ingest.infrastructure.db.connection import DatabaseManager
from keyed_ingest.services.workspace import UploadWorkspace


class BaseCommand(ABC):
    """Base class for every command"""

    description = "No description provided"

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.parser = self._create_parser()

    def _create_parser(self) -> argparse.ArgumentParser:
        parser = argparse.ArgumentParser(description=self.description)
        parser.add_argument(
            '--database-url',
            dest='database_url',
            help='Database URL (defaults to DB_URL from the environment)'
        )
        self.add_arguments(parser)
        return parser

    def add_arguments(self, parser: argparse.ArgumentParser):
        """Override to add command-specific arguments"""
        pass

    def open_workspace(self, database_url: Optional[str] = None) -> UploadWorkspace:
        """Connect to the database and build a workspace; caller disconnects."""
        db = DatabaseManager(database_url or self.settings.database.url, echo=self.settings.database.echo)
        db.connect()
        return UploadWorkspace(db, self.settings)

    @abstractmethod
    def handle(self, **kwargs) -> Optional[int]:
        """Main entry point implemented by every command"""
        pass

    def run(self, args: List[str]) -> Optional[int]:
        """Parse arguments and run the command"""
        setup_logging(self.settings.logging)
        parsed_args = self.parser.parse_args(args)
        return self.handle(**vars(parsed_args))

    def help(self):
        self.parser.print_help()

    def print_success(self, message: str):
        print(f"\033[92m✓ {message}\033[0m")

    def print_error(self, message: str):
        print(f"\033[91m✗ {message}\033[0m")

    def print_warning(self, message: str):
        print(f"\033[93m⚠ {message}\033[0m")

    def print_info(self, message: str):
        print(f"\033[94mℹ {message}\033[0m")
