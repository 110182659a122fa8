from __future__ import annotations
import enum
from dataclasses import dataclass


class ReadStatus(enum.Enum):
    COMPLETE = "complete"      # buffer filled
    EOF = "eof"                # data ended before the buffer was filled


@dataclass(slots=True, frozen=True)
class ReadResult:
    n: int
    status: ReadStatus = ReadStatus.COMPLETE

    @property
    def eof(self) -> bool:
        return self.status is ReadStatus.EOF

    @classmethod
    def for_count(cls, n: int, wanted: int) -> "ReadResult":
        """Build a result, flagging EOF when fewer than `wanted` bytes arrived."""
        return cls(n, ReadStatus.COMPLETE if n >= wanted else ReadStatus.EOF)


class ShortReadError(IOError):
    """Raised when a read failed after `n` bytes were already copied into the buffer."""

    def __init__(self, n: int, message: str):
        super().__init__(message)
        self.n = n


class InvalidContentRangeError(IOError):
    """Raised when a size probe gets no usable Content-Range header back."""


class RangeNotSupportedError(RuntimeError):
    """Raised when the server ignores Range for a request that does not start at 0."""
