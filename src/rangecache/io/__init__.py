"""I/O layer for rangecache - upstream sources and persistent stores."""

# Re-export these for import convenience
from .base import RandomAccessSource, AsyncRandomAccessSource, PersistentStore, DEFAULT_TIMEOUT
from .local import FileStore, LocalSource, open_file_store, open_local_source
from .http_sync import RangeReader, open_range_reader
from .http_async import AsyncRangeReader, open_range_reader_async
