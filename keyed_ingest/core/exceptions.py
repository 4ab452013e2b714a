from typing import Any, Dict, Optional, Union

from starlette.status import HTTP_400_BAD_REQUEST


class AppException(Exception):
    def __init__(self, message: str,
                 error_code: Optional[str] = None,
                 status_code: int = HTTP_400_BAD_REQUEST,
                 details: Optional[Dict[str, Any]] = None,):
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)

    def __str__(self) -> str:
        return self.message

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(message='{self.message}', status_code={self.status_code})"


class NotFoundError(AppException):
    """Exception raised when a resource is not found."""

    def __init__(
        self,
        resource: str = "Resource",
        resource_id: Optional[Union[str, int]] = None,
        message: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.resource = resource
        self.resource_id = resource_id

        if not message:
            if resource_id:
                message = f"{resource} with ID '{resource_id}' not found"
            else:
                message = f"{resource} not found"

        exception_details = details or {}
        exception_details.update({
            "resource": resource,
            "resource_id": resource_id,
        })

        super().__init__(
            message=message,
            error_code="NOT_FOUND",
            details=exception_details,
            status_code=404,
        )


class ConflictError(AppException):
    """Exception raised when there's a conflict with current state."""

    def __init__(
        self,
        message: str = "Conflict with current state",
        resource: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.resource = resource

        exception_details = details or {}
        if resource:
            exception_details["resource"] = resource

        super().__init__(
            message=message,
            error_code="CONFLICT",
            details=exception_details,
            status_code=409,
        )


class BadRequestError(AppException):
    """Exception raised for bad requests."""

    def __init__(
        self,
        message: str = "Bad request",
        error_code: str = "BAD_REQUEST",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            details=details,
            status_code=400,
        )


class DatabaseError(AppException):
    """Exception raised for database-related errors."""

    def __init__(
        self,
        message: str = "Database error occurred",
        operation: Optional[str] = None,
        error_code: str = "DATABASE_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ):
        self.operation = operation

        exception_details = details or {}
        if operation:
            exception_details["operation"] = operation

        super().__init__(
            message=message,
            error_code=error_code,
            details=exception_details,
            status_code=500,
        )


class UnsupportedFormatError(BadRequestError):
    """Raised before any I/O when the file extension is not recognized."""

    def __init__(self, file_name: str, supported: Optional[list] = None):
        self.file_name = file_name
        details = {"file_name": file_name}
        if supported:
            details["supported_extensions"] = supported
        super().__init__(
            message=f"Unsupported file format: '{file_name}'",
            error_code="UNSUPPORTED_FORMAT",
            details=details,
        )


class OversizeError(AppException):
    """Raised before parsing when a document exceeds the in-memory ceiling."""

    def __init__(self, file_name: str, size: int, limit: int):
        self.file_name = file_name
        self.size = size
        self.limit = limit
        size_mb = round(size / 1024 / 1024, 1)
        limit_mb = round(limit / 1024 / 1024, 1)
        super().__init__(
            message=f"File too large ({size_mb}MB). Limit is {limit_mb}MB for '{file_name}'",
            error_code="OVERSIZE",
            details={"file_name": file_name, "size": size, "limit": limit},
            status_code=413,
        )


class ParseError(AppException):
    """Raised when the byte stream is malformed mid-parse."""

    def __init__(self, message: str, rows_seen: int = 0, details: Optional[Dict[str, Any]] = None):
        self.rows_seen = rows_seen
        exception_details = details or {}
        exception_details["rows_seen"] = rows_seen
        super().__init__(
            message=message,
            error_code="PARSE_ERROR",
            details=exception_details,
            status_code=422,
        )


class StorageTransactionError(DatabaseError):
    """Raised when a write batch is rejected by the store."""

    def __init__(self, message: str = "Write batch rejected", details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            operation="write_batch",
            error_code="STORAGE_TRANSACTION_ERROR",
            details=details,
        )


class IngestionCancelledError(AppException):
    """Raised when an in-flight ingestion observes a cancellation request."""

    def __init__(self, file_id: Optional[str] = None):
        self.file_id = file_id
        super().__init__(
            message="Ingestion cancelled",
            error_code="INGESTION_CANCELLED",
            details={"file_id": file_id},
            status_code=499,
        )
