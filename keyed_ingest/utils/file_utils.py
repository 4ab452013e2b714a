"""
File utilities: upload handles, deterministic ids and format detection.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import BinaryIO, Callable, Dict, List, Optional

from keyed_ingest.core.enums import FileKind
from keyed_ingest.core.exceptions import UnsupportedFormatError

SUPPORTED_FILE_TYPES: Dict[FileKind, List[str]] = {
    FileKind.DELIMITED: [".csv", ".tsv", ".txt"],
    FileKind.SPREADSHEET: [".xlsx", ".xlsm", ".xls"],
}


def get_file_extension(filename: str) -> str:
    return Path(filename).suffix.lower()


def supported_extensions() -> List[str]:
    return [ext for extensions in SUPPORTED_FILE_TYPES.values() for ext in extensions]


def get_file_kind(filename: str) -> FileKind:
    """
    Resolve the parser kind from the file extension.

    Raises:
        UnsupportedFormatError: If the extension is not recognized
    """
    extension = get_file_extension(filename)
    for kind, extensions in SUPPORTED_FILE_TYPES.items():
        if extension in extensions:
            return kind
    raise UnsupportedFormatError(filename, supported_extensions())


def make_file_id(name: str, size: int, last_modified: int) -> str:
    """Deterministic id, so selecting an identical file again resolves to the same entry."""
    return f"{name}__{size}__{last_modified}"


def format_bytes(size: int) -> str:
    units = ["B", "KB", "MB", "GB"]
    value = float(size)
    index = 0
    while value >= 1024 and index < len(units) - 1:
        value /= 1024
        index += 1
    return f"{round(value, 1)} {units[index]}"


@dataclass
class UploadSource:
    """
    A byte-addressable upload: name, size, last-modified time (epoch ms) and
    a callable that opens a fresh readable binary stream.
    """
    name: str
    size: int
    last_modified: int
    opener: Callable[[], BinaryIO] = field(repr=False)
    content_type: Optional[str] = None

    @property
    def file_id(self) -> str:
        return make_file_id(self.name, self.size, self.last_modified)

    @property
    def kind(self) -> FileKind:
        return get_file_kind(self.name)

    def open(self) -> BinaryIO:
        return self.opener()

    @classmethod
    def from_path(cls, path, name: Optional[str] = None, content_type: Optional[str] = None) -> "UploadSource":
        file_path = Path(path)
        stat = os.stat(file_path)
        return cls(
            name=name or file_path.name,
            size=stat.st_size,
            last_modified=int(stat.st_mtime * 1000),
            opener=lambda: open(file_path, "rb"),
            content_type=content_type,
        )

    @classmethod
    def from_stream(
        cls,
        stream: BinaryIO,
        name: str,
        last_modified: int = 0,
        size: Optional[int] = None,
        content_type: Optional[str] = None,
    ) -> "UploadSource":
        """
        Wrap a seekable stream, e.g. the spooled file behind an HTTP upload.
        Each ``open`` rewinds the same stream.
        """
        if size is None:
            stream.seek(0, os.SEEK_END)
            size = stream.tell()
        stream.seek(0)

        def opener() -> BinaryIO:
            stream.seek(0)
            return _NonClosingStream(stream)

        return cls(name=name, size=size, last_modified=last_modified, opener=opener, content_type=content_type)


class _NonClosingStream:
    """Delegates to a shared stream but leaves it open when closed."""

    def __init__(self, stream: BinaryIO):
        self._stream = stream
        self.closed = False

    def read(self, size: int = -1) -> bytes:
        return self._stream.read(size)

    def readinto(self, buffer) -> int:
        data = self._stream.read(len(buffer))
        buffer[:len(data)] = data
        return len(data)

    def seek(self, offset: int, whence: int = os.SEEK_SET) -> int:
        return self._stream.seek(offset, whence)

    def tell(self) -> int:
        return self._stream.tell()

    def seekable(self) -> bool:
        return True

    def readable(self) -> bool:
        return True

    def close(self) -> None:
        self.closed = True

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()
