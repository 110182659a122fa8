from __future__ import annotations
from .model import InvalidContentRangeError

# Ranges address the stored bytes, so never negotiate a content encoding
IDENTITY = {'Accept-Encoding': 'identity'}


def range_header(offset: int, length: int) -> str:
    """HTTP Range value for `length` bytes at `offset` (inclusive end)."""
    return f"bytes={offset}-{offset + length - 1}"


def parse_content_range_total(header: str | None) -> int:
    """Return the complete length from a `Content-Range: bytes a-b/total` header."""
    fields = (header or "").split()
    if len(fields) != 2 or fields[0].lower() != "bytes":
        raise InvalidContentRangeError("invalid Content-Range response")

    amounts = fields[1].split("/")
    if len(amounts) != 2 or amounts[1] == "*":
        raise InvalidContentRangeError("invalid Content-Range response")

    try:
        total = int(amounts[1])
    except ValueError:
        raise InvalidContentRangeError("invalid Content-Range response") from None
    if total < 0:
        raise InvalidContentRangeError("invalid Content-Range response")
    return total
