"""
Base service class providing common functionality for all services.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from keyed_ingest.core.exceptions import AppException, DatabaseError
from keyed_ingest.core.logging import get_logger
from keyed_ingest.infrastructure.db.connection import DatabaseManager


class BaseService(ABC):
    """Base class for all services."""

    def __init__(self, db: DatabaseManager):
        self.db = db
        self.logger = get_logger(f"services.{self.__class__.__name__}")

    def log_operation(self, operation: str, details: Optional[Dict[str, Any]] = None) -> None:
        """Log service operation."""
        log_msg = f"Service operation: {operation}"
        if details:
            log_msg += f" - Details: {details}"
        self.logger.info(log_msg)

    def handle_error(self, error: Exception, operation: str) -> None:
        """Log and re-raise, wrapping anything that is not already an AppException."""
        error_msg = f"Error in {operation}: {str(error)}"
        self.logger.error(error_msg)
        if isinstance(error, AppException):
            raise error
        raise DatabaseError(error_msg, operation=operation) from error

    @abstractmethod
    def get_service_name(self) -> str:
        """Return the service name."""
        pass
