"""rangecache - random access over HTTP ranges with an optional paged disk cache."""

from .core.model import (                                              # re-export
    ReadResult, ReadStatus, ShortReadError, InvalidContentRangeError, RangeNotSupportedError,
)
from .core.pages import DEFAULT_PAGE_SIZE
from .io import RangeReader, AsyncRangeReader, FileStore, LocalSource
from .cache import NopCache, AsyncNopCache, PagedCache, AsyncPagedCache


def open_reader(url: str, *, cache_file=None, page_size: int | None = None, **options) -> RangeReader:
    """Open a range reader, caching pages in `cache_file` (path or binary file) when given.

    With a cache the resource size is probed first. A cache file given as a
    path is closed together with the reader.
    """
    reader = RangeReader(url, **options)
    if cache_file is not None:
        store = FileStore(cache_file)
        reader.close_with(store)
        try:
            reader.cache = PagedCache(store, reader.size(), page_size)
        except BaseException:
            reader.close()
            raise
    return reader


async def open_reader_async(url: str, *, cache_file=None, page_size: int | None = None,
                            **options) -> AsyncRangeReader:
    """Async twin of open_reader."""
    reader = AsyncRangeReader(url, **options)
    if cache_file is not None:
        store = FileStore(cache_file)
        reader.close_with(store)
        try:
            reader.cache = AsyncPagedCache(store, await reader.size(), page_size)
        except BaseException:
            await reader.close()
            raise
    return reader


__all__ = [
    "open_reader", "open_reader_async",
    "RangeReader", "AsyncRangeReader", "FileStore", "LocalSource",
    "NopCache", "AsyncNopCache", "PagedCache", "AsyncPagedCache",
    "ReadResult", "ReadStatus", "ShortReadError", "InvalidContentRangeError", "RangeNotSupportedError",
    "DEFAULT_PAGE_SIZE",
]
