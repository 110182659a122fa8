"""Tests for HTTP I/O."""

import gzip
import random
from unittest.mock import MagicMock

import httpx
import pytest
import requests
import urllib3
from werkzeug import Request, Response

from rangecache import open_reader, open_reader_async
from rangecache.cache.paged import PagedCache
from rangecache.core.model import (
    ReadResult, ReadStatus, ShortReadError, InvalidContentRangeError, RangeNotSupportedError,
)
from rangecache.io.http_sync import RangeReader, open_range_reader
from rangecache.io import http_async
from rangecache.io.http_async import AsyncRangeReader, open_range_reader_async, close_global_client
from rangecache.io.local import FileStore


TEST_DATA = bytes(range(256)) * 40  # 10240 bytes

# A resource stored gzip-encoded; ranges address these bytes, not the decoded ones
STORED = gzip.compress(random.Random(0).randbytes(4096))


def _range_handler(data: bytes):
    """Serve `data` honouring single Range headers."""
    def handler(request: Request) -> Response:
        range_header = request.headers.get("Range")
        if not range_header:
            return Response(data, status=200)

        start, end = map(int, range_header.replace("bytes=", "").split("-"))
        if start >= len(data):
            return Response(status=416, headers={"Content-Range": f"bytes */{len(data)}"})
        end = min(end, len(data) - 1)
        return Response(
            data[start:end + 1],
            status=206,
            headers={"Content-Range": f"bytes {start}-{end}/{len(data)}"},
        )
    return handler


def _gzip_stored_handler(seen_encodings):
    """Serve STORED as a `Content-Encoding: gzip` resource, recording Accept-Encoding."""
    def handler(request: Request) -> Response:
        seen_encodings.append(request.headers.get("Accept-Encoding"))
        start, end = map(int, request.headers["Range"].replace("bytes=", "").split("-"))
        end = min(end, len(STORED) - 1)
        return Response(
            STORED[start:end + 1],
            status=206,
            headers={
                "Content-Encoding": "gzip",
                "Content-Range": f"bytes {start}-{end}/{len(STORED)}",
            },
        )
    return handler


def _ignore_range_handler(request: Request) -> Response:
    return Response(b"0123456789", status=200)


def _unknown_size_handler(request: Request) -> Response:
    return Response(b"0", status=206, headers={"Content-Range": "bytes 0-0/*"})


def _broken_body_session(chunks, error):
    """A requests session whose 206 body fails after yielding `chunks`."""
    def body(amt, decode_content=None):
        yield from chunks
        raise error

    response = MagicMock()
    response.status_code = 206
    response.__enter__.return_value = response
    response.__exit__.return_value = False
    response.raw.stream.side_effect = body

    session = MagicMock()
    session.get.return_value = response
    return session


@pytest.fixture
def data_url(httpserver):
    httpserver.expect_request("/data").respond_with_handler(_range_handler(TEST_DATA))
    return httpserver.url_for("/data")


@pytest.fixture
def session():
    with requests.Session() as s:
        yield s


class TestRangeReader:
    """Test synchronous HTTP range reader."""

    def test_read_at(self, data_url, session):
        reader = RangeReader(data_url, session=session)
        buffer = bytearray(10)
        result = reader.read_at(buffer, 5)

        assert result == ReadResult(10, ReadStatus.COMPLETE)
        assert bytes(buffer) == TEST_DATA[5:15]
        assert reader.bytes_fetched == 10
        assert reader.requests_made == 1

    def test_read_past_end_is_eof(self, data_url, session):
        reader = RangeReader(data_url, session=session)
        buffer = bytearray(100)
        result = reader.read_at(buffer, len(TEST_DATA) - 40)

        assert result == ReadResult(40, ReadStatus.EOF)
        assert bytes(buffer[:40]) == TEST_DATA[-40:]

    def test_read_beyond_end_is_empty_eof(self, data_url, session):
        reader = RangeReader(data_url, session=session)
        assert reader.read_at(bytearray(10), len(TEST_DATA) + 5) == ReadResult(0, ReadStatus.EOF)

    def test_zero_length_makes_no_request(self, data_url, session):
        reader = RangeReader(data_url, session=session)
        assert reader.read_at(bytearray(0), 5) == ReadResult(0)
        assert reader.requests_made == 0

    def test_size(self, data_url, session):
        reader = open_range_reader(data_url, session=session)
        assert reader.size() == len(TEST_DATA)
        assert reader.requests_made == 1

    def test_size_without_content_range(self, httpserver, session):
        httpserver.expect_request("/plain").respond_with_handler(_ignore_range_handler)
        reader = RangeReader(httpserver.url_for("/plain"), session=session)
        with pytest.raises(InvalidContentRangeError):
            reader.size()

    def test_size_unknown_total(self, httpserver, session):
        httpserver.expect_request("/stream").respond_with_handler(_unknown_size_handler)
        reader = RangeReader(httpserver.url_for("/stream"), session=session)
        with pytest.raises(InvalidContentRangeError):
            reader.size()

    def test_range_ignored_at_start_is_accepted(self, httpserver, session):
        httpserver.expect_request("/plain").respond_with_handler(_ignore_range_handler)
        reader = RangeReader(httpserver.url_for("/plain"), session=session)
        buffer = bytearray(4)
        assert reader.read_at(buffer, 0) == ReadResult(4)
        assert bytes(buffer) == b"0123"

    def test_range_ignored_elsewhere_is_an_error(self, httpserver, session):
        httpserver.expect_request("/plain").respond_with_handler(_ignore_range_handler)
        reader = RangeReader(httpserver.url_for("/plain"), session=session)
        with pytest.raises(RangeNotSupportedError):
            reader.read_at(bytearray(4), 3)

    def test_error_status(self, httpserver, session):
        httpserver.expect_request("/missing").respond_with_data("nope", status=404)
        reader = RangeReader(httpserver.url_for("/missing"), session=session)
        with pytest.raises(IOError, match="status 404"):
            reader.read_at(bytearray(4), 0)
        with pytest.raises(IOError, match="status 404"):
            reader.size()

    def test_fetch(self, data_url, session):
        reader = RangeReader(data_url, session=session)
        assert reader.fetch(256, 3) == TEST_DATA[256:259]
        with pytest.raises(IOError, match="Not enough data"):
            reader.fetch(len(TEST_DATA) - 2, 5)

    def test_transport_error(self):
        session = MagicMock()
        session.get.side_effect = requests.ConnectionError("refused")
        reader = RangeReader("http://example.invalid/data", session=session)
        with pytest.raises(IOError, match="Range request failed"):
            reader.read_at(bytearray(4), 0)

    def test_body_failure_reports_bytes_received(self):
        session = _broken_body_session([b"abcd"], urllib3.exceptions.ProtocolError("broken"))
        reader = RangeReader("http://example.invalid/data", session=session)
        buffer = bytearray(10)
        with pytest.raises(ShortReadError) as excinfo:
            reader.read_at(buffer, 0)
        assert excinfo.value.n == 4
        assert bytes(buffer[:4]) == b"abcd"

    def test_body_failure_before_any_byte(self):
        session = _broken_body_session([], requests.exceptions.ChunkedEncodingError("broken"))
        reader = RangeReader("http://example.invalid/data", session=session)
        with pytest.raises(IOError) as excinfo:
            reader.read_at(bytearray(10), 0)
        assert not isinstance(excinfo.value, ShortReadError)

    def test_context_manager(self, data_url, session):
        with RangeReader(data_url, session=session) as reader:
            assert reader.fetch(0, 4) == TEST_DATA[:4]

    def test_encoded_resource_returns_stored_bytes(self, httpserver, session):
        seen = []
        httpserver.expect_request("/blob.gz").respond_with_handler(_gzip_stored_handler(seen))
        reader = RangeReader(httpserver.url_for("/blob.gz"), session=session)

        buffer = bytearray(16)
        assert reader.read_at(buffer, 100) == ReadResult(16)
        assert bytes(buffer) == STORED[100:116]

        assert reader.read_at(buffer, 0) == ReadResult(16)
        assert bytes(buffer) == STORED[:16]
        assert seen == ["identity", "identity"]

    def test_size_does_not_read_the_body(self):
        response = MagicMock()
        response.status_code = 200
        response.headers = {"Content-Range": "bytes 0-0/10"}
        response.__enter__.return_value = response
        response.__exit__.return_value = False
        session = MagicMock()
        session.get.return_value = response

        reader = RangeReader("http://example.invalid/data", session=session)
        assert reader.size() == 10
        assert session.get.call_args.kwargs["stream"] is True
        response.__exit__.assert_called_once()
        response.iter_content.assert_not_called()
        response.raw.stream.assert_not_called()

    def test_close_with(self):
        resource = MagicMock()
        reader = RangeReader("http://example.invalid/data", session=MagicMock())
        reader.close_with(resource)
        resource.close.assert_not_called()

        reader.close()
        resource.close.assert_called_once()
        reader.close()
        resource.close.assert_called_once()


class TestRangeReaderWithCache:
    """Test the reader facade with a paged cache attached."""

    def test_cached_reads_skip_the_network(self, data_url, session, tmp_path):
        with open_reader(data_url, cache_file=tmp_path / "cache.bin", page_size=1024, session=session) as reader:
            assert reader.requests_made == 1  # size probe
            assert isinstance(reader.cache, PagedCache)
            assert reader.cache.resource_size == len(TEST_DATA)

            buffer = bytearray(100)
            reader.read_at(buffer, 1000)
            assert bytes(buffer) == TEST_DATA[1000:1100]
            assert reader.requests_made == 2
            assert reader.bytes_fetched == 2048

            buffer = bytearray(50)
            reader.read_at(buffer, 1500)
            assert bytes(buffer) == TEST_DATA[1500:1550]
            assert reader.requests_made == 2
            assert reader.cache.hits == 1
            assert reader.cache.misses == 1

    def test_tail_page_request(self, data_url, session, tmp_path):
        with open_reader(data_url, cache_file=tmp_path / "cache.bin", page_size=4096, session=session) as reader:
            buffer = bytearray(10)
            result = reader.read_at(buffer, len(TEST_DATA) - 5)
            assert result == ReadResult(5, ReadStatus.EOF)
            assert bytes(buffer[:5]) == TEST_DATA[-5:]
            # final page holds 10240 - 2*4096 bytes
            assert reader.bytes_fetched == len(TEST_DATA) - 2 * 4096

    def test_cache_file_outlives_reader(self, data_url, session, tmp_path):
        path = tmp_path / "cache.bin"
        with open_reader(data_url, cache_file=path, page_size=1024, session=session) as reader:
            reader.read_at(bytearray(10), 0)
        assert path.read_bytes() == TEST_DATA[:1024]

    def test_broken_body_keeps_complete_pages(self, tmp_path):
        session = _broken_body_session([b"abcdef"], requests.exceptions.ChunkedEncodingError("broken"))
        with FileStore(tmp_path / "cache.bin") as store:
            cache = PagedCache(store, 10, page_size=4)
            reader = RangeReader("http://example.invalid/data", session=session, cache=cache)
            with pytest.raises(ShortReadError):
                reader.read_at(bytearray(10), 0)
            assert cache.resident_pages == [0]

    def test_size_probe_failure_closes_store(self, httpserver, session, tmp_path):
        httpserver.expect_request("/plain").respond_with_handler(_ignore_range_handler)
        with pytest.raises(InvalidContentRangeError):
            open_reader(httpserver.url_for("/plain"), cache_file=tmp_path / "cache.bin", session=session)


class _BrokenStream(httpx.AsyncByteStream):
    async def __aiter__(self):
        yield b"abcd"
        raise httpx.ReadError("connection broken")


class _UnreadableStream(httpx.AsyncByteStream):
    async def __aiter__(self):
        raise AssertionError("body was read")
        yield b""


class TestAsyncRangeReader:
    """Test asynchronous HTTP range reader."""

    @pytest.mark.asyncio
    async def test_read_at_and_size(self, data_url):
        async with httpx.AsyncClient() as client:
            reader = AsyncRangeReader(data_url, client=client)
            buffer = bytearray(10)
            assert await reader.read_at(buffer, 300) == ReadResult(10)
            assert bytes(buffer) == TEST_DATA[300:310]
            assert await reader.size() == len(TEST_DATA)
            assert reader.requests_made == 2
            assert reader.bytes_fetched == 10

    @pytest.mark.asyncio
    async def test_eof_and_past_end(self, data_url):
        async with httpx.AsyncClient() as client:
            reader = AsyncRangeReader(data_url, client=client)
            buffer = bytearray(20)
            assert await reader.read_at(buffer, len(TEST_DATA) - 5) == ReadResult(5, ReadStatus.EOF)
            assert await reader.read_at(buffer, len(TEST_DATA)) == ReadResult(0, ReadStatus.EOF)

    @pytest.mark.asyncio
    async def test_fetch(self, data_url):
        async with httpx.AsyncClient() as client:
            reader = AsyncRangeReader(data_url, client=client)
            assert await reader.fetch(10, 2) == TEST_DATA[10:12]
            with pytest.raises(IOError, match="Not enough data"):
                await reader.fetch(len(TEST_DATA) - 1, 2)

    @pytest.mark.asyncio
    async def test_error_status(self, httpserver):
        httpserver.expect_request("/missing").respond_with_data("nope", status=500)
        async with httpx.AsyncClient() as client:
            reader = AsyncRangeReader(httpserver.url_for("/missing"), client=client)
            with pytest.raises(IOError, match="status 500"):
                await reader.read_at(bytearray(4), 0)

    @pytest.mark.asyncio
    async def test_body_failure_reports_bytes_received(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(206, stream=_BrokenStream()))
        async with httpx.AsyncClient(transport=transport) as client:
            reader = AsyncRangeReader("http://example.invalid/data", client=client)
            buffer = bytearray(10)
            with pytest.raises(ShortReadError) as excinfo:
                await reader.read_at(buffer, 0)
            assert excinfo.value.n == 4
            assert bytes(buffer[:4]) == b"abcd"

    @pytest.mark.asyncio
    async def test_cached_reads_skip_the_network(self, data_url, tmp_path):
        async with httpx.AsyncClient() as client:
            reader = await open_reader_async(data_url, cache_file=tmp_path / "cache.bin",
                                             page_size=1024, client=client)
            async with reader:
                buffer = bytearray(10)
                await reader.read_at(buffer, 2000)
                await reader.read_at(buffer, 2010)
                assert bytes(buffer) == TEST_DATA[2010:2020]
                assert reader.requests_made == 2  # size probe + one page fetch
                assert reader.cache.hits == 1
                assert reader.cache.misses == 1

    @pytest.mark.asyncio
    async def test_encoded_resource_returns_stored_bytes(self, httpserver):
        seen = []
        httpserver.expect_request("/blob.gz").respond_with_handler(_gzip_stored_handler(seen))
        async with httpx.AsyncClient() as client:
            reader = AsyncRangeReader(httpserver.url_for("/blob.gz"), client=client)

            buffer = bytearray(16)
            assert await reader.read_at(buffer, 100) == ReadResult(16)
            assert bytes(buffer) == STORED[100:116]

            assert await reader.read_at(buffer, 0) == ReadResult(16)
            assert bytes(buffer) == STORED[:16]
            assert seen == ["identity", "identity"]

    @pytest.mark.asyncio
    async def test_size_does_not_read_the_body(self):
        def handler(request):
            return httpx.Response(200, headers={"Content-Range": "bytes 0-0/10"}, stream=_UnreadableStream())

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            reader = AsyncRangeReader("http://example.invalid/data", client=client)
            assert await reader.size() == 10

    @pytest.mark.asyncio
    async def test_size_without_content_range(self, httpserver):
        httpserver.expect_request("/plain").respond_with_handler(_ignore_range_handler)
        async with httpx.AsyncClient() as client:
            reader = AsyncRangeReader(httpserver.url_for("/plain"), client=client)
            with pytest.raises(InvalidContentRangeError):
                await reader.size()

    @pytest.mark.asyncio
    async def test_close_with(self):
        resource = MagicMock()
        reader = AsyncRangeReader("http://example.invalid/data", client=MagicMock())
        reader.close_with(resource)
        async with reader:
            resource.close.assert_not_called()
        resource.close.assert_called_once()

    @pytest.mark.asyncio
    async def test_default_client(self, data_url):
        reader = open_range_reader_async(data_url)
        try:
            assert reader.client is http_async._get_client()
            assert await reader.fetch(0, 4) == TEST_DATA[:4]
        finally:
            await close_global_client()
        assert http_async._client is None
