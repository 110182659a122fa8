"""Synchronous HTTP range reader using requests."""

import logging
from typing import Optional

import requests
import urllib3

from ..cache.base import CacheHandler, NopCache
from ..core.model import ReadResult, ReadStatus, ShortReadError, RangeNotSupportedError
from ..core.util import IDENTITY, range_header, parse_content_range_total
from .base import DEFAULT_TIMEOUT, FunctionSource

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024

# Module-level session for connection pooling
_session = None


def _get_session():
    """Get or create the global requests session."""
    global _session
    if _session is None:
        _session = requests.Session()
    return _session


class RangeReader:
    """Random access over an HTTP resource using the Range header.

    Reads go through `cache` when one is configured, otherwise straight
    to the server.
    """

    def __init__(self, url: str, *, session: Optional[requests.Session] = None,
                 cache: Optional[CacheHandler] = None, timeout: float = DEFAULT_TIMEOUT):
        self.url = url
        self.cache = cache
        self.timeout = timeout
        self.bytes_fetched = 0
        self.requests_made = 0
        self._session = session if session is not None else _get_session()
        self._raw = FunctionSource(self._raw_read_at)
        self._on_close = []

    def _raw_read_at(self, buffer, offset: int) -> ReadResult:
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
            response = self._session.get(self.url, headers=headers, timeout=self.timeout, stream=True)
        except requests.RequestException as e:
            raise IOError(f"Range request failed: {e}") from e

        with response:
            if response.status_code == 416:
                # Offset at or past the end of the resource
                return ReadResult(0, ReadStatus.EOF)
            if response.status_code == 200 and offset != 0:
                raise RangeNotSupportedError("Server doesn't support ranges")
            if response.status_code not in (200, 206):
                raise IOError(f"Range request failed with status {response.status_code}")
            n = self._copy_body(response, view)

        return ReadResult.for_count(n, len(view))

    def _copy_body(self, response: requests.Response, view: memoryview) -> int:
        n = 0
        try:
            for chunk in response.raw.stream(CHUNK_SIZE, decode_content=False):
                take = min(len(chunk), len(view) - n)
                view[n:n + take] = chunk[:take]
                n += take
                if n == len(view):
                    break
        except (requests.RequestException, urllib3.exceptions.HTTPError) as e:
            self.bytes_fetched += n
            if n == 0:
                raise IOError(f"Range request failed: {e}") from e
            raise ShortReadError(n, f"Range request failed after {n} bytes: {e}") from e
        self.bytes_fetched += n
        return n

    def read_at(self, buffer, offset: int) -> ReadResult:
        """Fill `buffer` from `offset`, through the cache if one is configured."""
        cache = self.cache if self.cache is not None else NopCache()
        return cache.get(buffer, offset, self._raw)

    def fetch(self, start: int, length: int) -> bytes:
        """Return exactly `length` bytes starting at absolute offset `start`."""
        if length <= 0:
            raise IOError("Length must be positive")
        buffer = bytearray(length)
        result = self.read_at(buffer, start)
        if result.n < length:
            raise IOError(f"Not enough data: requested {length} bytes at offset {start}")
        return bytes(buffer)

    def size(self) -> int:
        """Total size of the resource, from the Content-Range of a one-byte request."""
        self.requests_made += 1
        try:
            response = self._session.get(self.url, headers={'Range': 'bytes=0-0', **IDENTITY},
                                         timeout=self.timeout, stream=True)
        except requests.RequestException as e:
            raise IOError(f"Size request failed: {e}") from e
        # Only the headers matter; the body is never read
        with response:
            if response.status_code >= 400:
                raise IOError(f"Size request failed with status {response.status_code}")
            return parse_content_range_total(response.headers.get('Content-Range'))

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def close_with(self, resource):
        """Close `resource` when this reader is closed."""
        self._on_close.append(resource.close)

    def close(self):
        """Release resources handed to this reader. The session may be shared and stays open."""
        while self._on_close:
            self._on_close.pop()()


def open_range_reader(url: str, **options) -> RangeReader:
    """Create a synchronous HTTP range reader."""
    return RangeReader(url, **options)
