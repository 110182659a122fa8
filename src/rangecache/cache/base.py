"""Cache strategy extension point."""

from __future__ import annotations
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from ..core.model import ReadResult

if TYPE_CHECKING:  # io imports the caches
    from ..io.base import RandomAccessSource, AsyncRandomAccessSource


@runtime_checkable
class CacheHandler(Protocol):
    """Strategy consulted by a reader for every read_at.

    `get` receives the caller's buffer and offset. When the data is not
    available it may call `fetcher.read_at`, with ranges different from the
    original request and as many times as it needs.
    """

    def get(self, buffer, offset: int, fetcher: RandomAccessSource) -> ReadResult:
        ...


@runtime_checkable
class AsyncCacheHandler(Protocol):
    """Async twin of CacheHandler."""

    async def get(self, buffer, offset: int, fetcher: AsyncRandomAccessSource) -> ReadResult:
        ...


class NopCache:
    """Pass-through: every read goes upstream."""

    def get(self, buffer, offset: int, fetcher: RandomAccessSource) -> ReadResult:
        return fetcher.read_at(buffer, offset)


class AsyncNopCache:
    """Pass-through: every read goes upstream."""

    async def get(self, buffer, offset: int, fetcher: AsyncRandomAccessSource) -> ReadResult:
        return await fetcher.read_at(buffer, offset)
