from enum import Enum


class FileKind(str, Enum):
    """Input kinds accepted for ingestion"""
    DELIMITED = "DELIMITED"
    SPREADSHEET = "SPREADSHEET"


class FileStatus(str, Enum):
    """Lifecycle status of a registered upload"""
    PROCESSING = "processing"
    READY = "ready"
    ERROR = "error"


class IngestState(str, Enum):
    """Coordinator state for the file currently being ingested"""
    IDLE = "IDLE"
    READING = "READING"
    PARSING = "PARSING"
    DEDUPING = "DEDUPING"
    READY = "READY"
    ERROR = "ERROR"


class ProgressPhase(str, Enum):
    READING = "reading"
    PARSING = "parsing"
    DONE = "done"
    ERROR = "error"


class ReorderDirection(str, Enum):
    UP = "up"
    DOWN = "down"
