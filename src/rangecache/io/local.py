"""Local file collaborators: a positioned-I/O store and an mmap-backed source."""

import io
import logging
import mmap
import os
import threading
from pathlib import Path
from typing import BinaryIO, Union

from ..core.model import ReadResult

logger = logging.getLogger(__name__)


def _readinto_full(f: BinaryIO, view: memoryview) -> int:
    """readinto until the view is full or the file ends."""
    total = 0
    while total < len(view):
        n = f.readinto(view[total:])
        if not n:
            break
        total += n
    return total


class FileStore:
    """PersistentStore over a local file.

    A path is opened read/write (created if missing) and closed by `close()`.
    An already open binary file object is used as-is and left open.
    """

    def __init__(self, target: Union[Path, str, BinaryIO]):
        self._lock = threading.Lock()
        if hasattr(target, 'read'):
            self._file = target
            self._should_close_file = False
        else:
            path = Path(target)
            if not path.exists():
                path.touch()
            self._file = open(path, 'r+b')
            self._should_close_file = True

    def read_at(self, buffer, offset: int) -> ReadResult:
        if offset < 0:
            raise ValueError("Start offset cannot be negative")
        view = memoryview(buffer).cast('B')
        with self._lock:
            self._file.seek(offset)
            n = _readinto_full(self._file, view)
        return ReadResult.for_count(n, len(view))

    def write_at(self, data, offset: int) -> int:
        if offset < 0:
            raise ValueError("Start offset cannot be negative")
        with self._lock:
            self._file.seek(offset)
            self._file.write(data)
            self._file.flush()
        return len(data)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def close(self):
        """Close the file if we opened it."""
        if self._should_close_file and self._file is not None:
            self._file.close()
            self._file = None


class LocalSource:
    """RandomAccessSource over a local file using mmap."""

    def __init__(self, source: Union[Path, str, BinaryIO]):
        self.bytes_fetched = 0
        self.requests_made = 0
        self._file = None
        self._mmap = None
        self._data = None  # For in-memory and empty sources
        self._should_close_file = False

        if hasattr(source, 'read'):
            self._file = source
            if isinstance(source, io.BytesIO):
                self._data = source.getvalue()
        else:
            self._file = open(source, 'rb')
            self._should_close_file = True

    def _ensure_mmap(self):
        """Create mmap on first access."""
        if self._mmap is not None or self._data is not None:
            return
        if not self._file.seekable():
            raise IOError("File is not seekable, cannot use mmap")
        self._file.seek(0, os.SEEK_END)
        if self._file.tell() == 0:
            self._data = b''
            return
        try:
            self._mmap = mmap.mmap(self._file.fileno(), 0, access=mmap.ACCESS_READ)
        except (io.UnsupportedOperation, OSError):
            # No usable fileno(), read the whole thing once
            self._file.seek(0)
            self._data = self._file.read()

    @property
    def size(self) -> int:
        """Return the total size of the source in bytes."""
        self._ensure_mmap()
        return len(self._mmap if self._mmap is not None else self._data)

    def read_at(self, buffer, offset: int) -> ReadResult:
        if offset < 0:
            raise ValueError("Start offset cannot be negative")
        self.requests_made += 1
        self._ensure_mmap()
        source = self._mmap if self._mmap is not None else self._data

        view = memoryview(buffer).cast('B')
        chunk = source[offset:offset + len(view)]
        view[:len(chunk)] = chunk
        self.bytes_fetched += len(chunk)
        logger.debug("local read %d bytes at %d", len(chunk), offset)
        return ReadResult.for_count(len(chunk), len(view))

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def close(self):
        """Close mmap and file if we opened it."""
        if self._mmap is not None:
            self._mmap.close()
            self._mmap = None
        if self._should_close_file and self._file is not None:
            self._file.close()
            self._file = None


def open_file_store(target: Union[Path, str, BinaryIO]) -> FileStore:
    """Create a file-backed persistent store."""
    return FileStore(target)


def open_local_source(source: Union[Path, str, BinaryIO]) -> LocalSource:
    """Create a local random-access source."""
    return LocalSource(source)
