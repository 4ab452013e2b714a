from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from keyed_ingest.utils.date_utils import get_current_timestamp


class BaseResponse(BaseModel):
    """Base response schema for all API responses."""
    success: bool = True
    message: str = "Operation completed successfully"
    timestamp: datetime = Field(default_factory=get_current_timestamp)


class ErrorResponse(BaseResponse):
    """Error response schema."""
    success: bool = False
    error_code: Optional[str] = None
    error_details: Optional[Dict[str, Any]] = None
