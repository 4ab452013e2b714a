from typing import Optional

from pydantic import BaseModel, Field

from keyed_ingest.core.enums import ProgressPhase


class ProgressEvent(BaseModel):
    """Progress update published while a file is ingested."""
    phase: ProgressPhase
    percent: int = Field(ge=0, le=100)
    detail: str = ""
    file_id: Optional[str] = None
