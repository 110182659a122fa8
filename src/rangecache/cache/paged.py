"""Paged caching of upstream reads into a persistent store.

Every upstream fetch is aligned to fixed-size pages. Fetched pages are
written to the store and remembered in a residency bitmap, and every read
is finally served from the store. Residency only grows: there is no
eviction, and the store is never truncated or closed by the cache.

A read that touches several missing pages is coalesced into a single
upstream request spanning the first to the last missing page, even when
pages in between are already resident. That re-fetches some bytes but
keeps every read_at to at most one upstream round trip.
"""

from __future__ import annotations
import asyncio
import logging
import threading
from typing import TYPE_CHECKING, Optional

from ..core.model import ReadResult, ShortReadError
from ..core.pages import DEFAULT_PAGE_SIZE, PageLayout, PageSet

if TYPE_CHECKING:
    from ..io.base import PersistentStore, RandomAccessSource, AsyncRandomAccessSource

logger = logging.getLogger(__name__)


class _PagedCacheState:
    """Residency bookkeeping shared by the sync and async caches."""

    def __init__(self, store: PersistentStore, resource_size: int, page_size: Optional[int] = None):
        if page_size is None:
            page_size = DEFAULT_PAGE_SIZE
        self._layout = PageLayout(page_size, resource_size)
        self._store = store
        self._pages = PageSet(self._layout.page_count)
        self._hits = 0
        self._misses = 0
        self._bytes_fetched = 0

    @property
    def page_size(self) -> int:
        return self._layout.page_size

    @property
    def resource_size(self) -> int:
        return self._layout.resource_size

    @property
    def hits(self) -> int:
        return self._hits

    @property
    def misses(self) -> int:
        return self._misses

    @property
    def bytes_fetched(self) -> int:
        """Bytes received from upstream over the cache's lifetime."""
        return self._bytes_fetched

    @property
    def resident_pages(self) -> list[int]:
        return list(self._pages)

    def is_resident(self, page: int) -> bool:
        return 0 <= page < self._layout.page_count and page in self._pages

    def _plan(self, offset: int, length: int) -> tuple[int, int] | None:
        """Count a hit or a miss and return the (first, last) missing page span."""
        first, last = self._layout.pages_for_range(offset, length)
        span = self._pages.missing_span(first, last) if first <= last else None
        if span is None:
            self._hits += 1
            logger.debug("cache hit: %d bytes at %d", length, offset)
        else:
            self._misses += 1
        return span

    def _fetch_request(self, span: tuple[int, int]) -> tuple[int, bytearray]:
        first, last = span
        start = first * self.page_size
        size = self._layout.fetch_size(first, last)
        logger.debug("cache miss: fetching pages %d-%d (%d bytes at %d)", first, last, size, start)
        return start, bytearray(size)

    def _mark(self, first: int, n: int) -> None:
        for page in self._layout.completed_pages(first, n):
            self._pages.add(page)

    def __repr__(self) -> str:
        return (f"<{self.__class__.__name__} page_size={self.page_size} "
                f"resource_size={self.resource_size} resident={len(self._pages)}/{self._layout.page_count} "
                f"hits={self._hits} misses={self._misses} bytes_fetched={self._bytes_fetched}>")


class PagedCache(_PagedCacheState):
    """CacheHandler that persists page-aligned upstream reads to `store`.

    `resource_size` is the size in bytes of the upstream object. The fetch
    sequence (find missing pages, fetch, write, mark resident) runs under a
    lock, so overlapping misses from several threads fetch once.
    """

    def __init__(self, store: PersistentStore, resource_size: int, page_size: Optional[int] = None):
        super().__init__(store, resource_size, page_size)
        self._lock = threading.Lock()

    def get(self, buffer, offset: int, fetcher: RandomAccessSource) -> ReadResult:
        if offset < 0:
            raise ValueError("Start offset cannot be negative")
        view = memoryview(buffer).cast('B')
        if len(view) == 0:
            return ReadResult(0)

        with self._lock:
            span = self._plan(offset, len(view))
            if span is not None:
                self._fetch(span, fetcher)

        return self._store.read_at(view, offset)

    def _fetch(self, span: tuple[int, int], fetcher: RandomAccessSource) -> None:
        start, page_buf = self._fetch_request(span)
        try:
            result = fetcher.read_at(page_buf, start)
        except ShortReadError as e:
            # Keep whatever full pages made it before the failure
            self._persist(span[0], page_buf, e.n)
            raise
        self._persist(span[0], page_buf, result.n)

    def _persist(self, first: int, page_buf: bytearray, n: int) -> None:
        if n <= 0:
            return
        self._bytes_fetched += n
        self._store.write_at(memoryview(page_buf)[:n], first * self.page_size)
        self._mark(first, n)


class AsyncPagedCache(_PagedCacheState):
    """AsyncCacheHandler twin of PagedCache.

    Store calls are blocking and run in a worker thread.
    """

    def __init__(self, store: PersistentStore, resource_size: int, page_size: Optional[int] = None):
        super().__init__(store, resource_size, page_size)
        self._lock = asyncio.Lock()

    async def get(self, buffer, offset: int, fetcher: AsyncRandomAccessSource) -> ReadResult:
        if offset < 0:
            raise ValueError("Start offset cannot be negative")
        view = memoryview(buffer).cast('B')
        if len(view) == 0:
            return ReadResult(0)

        async with self._lock:
            span = self._plan(offset, len(view))
            if span is not None:
                await self._fetch(span, fetcher)

        return await asyncio.to_thread(self._store.read_at, view, offset)

    async def _fetch(self, span: tuple[int, int], fetcher: AsyncRandomAccessSource) -> None:
        start, page_buf = self._fetch_request(span)
        try:
            result = await fetcher.read_at(page_buf, start)
        except ShortReadError as e:
            await self._persist(span[0], page_buf, e.n)
            raise
        await self._persist(span[0], page_buf, result.n)

    async def _persist(self, first: int, page_buf: bytearray, n: int) -> None:
        if n <= 0:
            return
        self._bytes_fetched += n
        await asyncio.to_thread(self._store.write_at, memoryview(page_buf)[:n], first * self.page_size)
        self._mark(first, n)
