"""Base protocols and shared types for I/O layer."""

from typing import Protocol, runtime_checkable

from ..core.model import ReadResult


DEFAULT_TIMEOUT = 30.0  # seconds, per upstream request


@runtime_checkable
class RandomAccessSource(Protocol):
    """Protocol for positioned synchronous reads."""

    def read_at(self, buffer, offset: int) -> ReadResult:
        """Fill `buffer` with bytes starting at absolute `offset`.
        Fewer bytes than len(buffer) → ReadResult with EOF status.
        Failures raise IOError.
        """
        ...


@runtime_checkable
class AsyncRandomAccessSource(Protocol):
    """Protocol for positioned asynchronous reads."""

    async def read_at(self, buffer, offset: int) -> ReadResult:
        ...


@runtime_checkable
class PersistentStore(Protocol):
    """Protocol for a byte-addressable store with positioned read and write."""

    def read_at(self, buffer, offset: int) -> ReadResult:
        ...

    def write_at(self, data, offset: int) -> int:
        """Write all of `data` at `offset` and return the byte count."""
        ...


class FunctionSource:
    """Adapts a bare `read_at(buffer, offset)` callable to RandomAccessSource."""

    def __init__(self, read_at):
        self.read_at = read_at
