from .file_registry import FileEntry
from .records import Record, StoreCounter

__all__ = ["FileEntry", "Record", "StoreCounter"]
