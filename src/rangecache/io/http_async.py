"""Asynchronous HTTP range reader using httpx."""

import logging
from typing import Optional

import httpx

from ..cache.base import AsyncCacheHandler, AsyncNopCache
from ..core.model import ReadResult, ReadStatus, ShortReadError, RangeNotSupportedError
from ..core.util import IDENTITY, range_header, parse_content_range_total
from .base import DEFAULT_TIMEOUT, FunctionSource

logger = logging.getLogger(__name__)


# Global async client
_client: Optional[httpx.AsyncClient] = None


def _get_client() -> httpx.AsyncClient:
    """Get or create the global httpx AsyncClient."""
    global _client
    if _client is None:
        _client = httpx.AsyncClient(timeout=60.0)
    return _client


class AsyncRangeReader:
    """Asynchronous random access over an HTTP resource using the Range header."""

    def __init__(self, url: str, *, client: Optional[httpx.AsyncClient] = None,
                 cache: Optional[AsyncCacheHandler] = None, timeout: float = DEFAULT_TIMEOUT):
        self.url = url
        self.cache = cache
        self.timeout = timeout
        self.bytes_fetched = 0
        self.requests_made = 0
        self._client = client
        self._raw = FunctionSource(self._raw_read_at)
        self._on_close = []

    @property
    def client(self) -> httpx.AsyncClient:
        return self._client if self._client is not None else _get_client()

    async def _raw_read_at(self, buffer, offset: int) -> ReadResult:
        """One ranged GET straight into `buffer`."""
        if offset < 0:
            raise ValueError("Start offset cannot be negative")
        view = memoryview(buffer).cast('B')
        if len(view) == 0:
            return ReadResult(0)

        headers = {'Range': range_header(offset, len(view)), **IDENTITY}
        logger.debug("GET %s %s", self.url, headers['Range'])
        self.requests_made += 1
        try:
            async with self.client.stream('GET', self.url, headers=headers, timeout=self.timeout) as response:
                if response.status_code == 416:
                    return ReadResult(0, ReadStatus.EOF)
                if response.status_code == 200 and offset != 0:
                    raise RangeNotSupportedError("Server doesn't support ranges")
                if response.status_code not in (200, 206):
                    raise IOError(f"Range request failed with status {response.status_code}")
                n = await self._copy_body(response, view)
        except httpx.RequestError as e:
            raise IOError(f"Range request failed: {e}") from e

        return ReadResult.for_count(n, len(view))

    async def _copy_body(self, response: httpx.Response, view: memoryview) -> int:
        n = 0
        try:
            async for chunk in response.aiter_raw():
                take = min(len(chunk), len(view) - n)
                view[n:n + take] = chunk[:take]
                n += take
                if n == len(view):
                    break
        except httpx.HTTPError as e:
            self.bytes_fetched += n
            if n == 0:
                raise IOError(f"Range request failed: {e}") from e
            raise ShortReadError(n, f"Range request failed after {n} bytes: {e}") from e
        self.bytes_fetched += n
        return n

    async def read_at(self, buffer, offset: int) -> ReadResult:
        """Fill `buffer` from `offset`, through the cache if one is configured."""
        cache = self.cache if self.cache is not None else AsyncNopCache()
        return await cache.get(buffer, offset, self._raw)

    async def fetch(self, start: int, length: int) -> bytes:
        """Return exactly `length` bytes starting at absolute offset `start`."""
        if length <= 0:
            raise IOError("Length must be positive")
        buffer = bytearray(length)
        result = await self.read_at(buffer, start)
        if result.n < length:
            raise IOError(f"Not enough data: requested {length} bytes at offset {start}")
        return bytes(buffer)

    async def size(self) -> int:
        """Total size of the resource, from the Content-Range of a one-byte request."""
        self.requests_made += 1
        try:
            # Only the headers matter; the body is never read
            async with self.client.stream('GET', self.url, headers={'Range': 'bytes=0-0', **IDENTITY},
                                          timeout=self.timeout) as response:
                status = response.status_code
                content_range = response.headers.get('content-range')
        except httpx.RequestError as e:
            raise IOError(f"Size request failed: {e}") from e
        if status >= 400:
            raise IOError(f"Size request failed with status {status}")
        return parse_content_range_total(content_range)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    def close_with(self, resource):
        """Close `resource` when this reader is closed."""
        self._on_close.append(resource.close)

    async def close(self):
        """Release resources handed to this reader. The client may be shared and stays open."""
        while self._on_close:
            self._on_close.pop()()


def open_range_reader_async(url: str, **options) -> AsyncRangeReader:
    """Create an asynchronous HTTP range reader."""
    return AsyncRangeReader(url, **options)


async def close_global_client():
    """Close the global httpx client. Call this at application shutdown."""
    global _client
    if _client is not None:
        await _client.aclose()
        _client = None
