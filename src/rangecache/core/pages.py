from __future__ import annotations
from dataclasses import dataclass

DEFAULT_PAGE_SIZE = 1 << 16


@dataclass(slots=True, frozen=True)
class PageLayout:
    """Page arithmetic for one resource of known size."""
    page_size: int
    resource_size: int

    def __post_init__(self):
        if self.page_size <= 0:
            raise ValueError(f"Page size must be positive, got {self.page_size}")
        if self.resource_size < 0:
            raise ValueError(f"Resource size cannot be negative, got {self.resource_size}")

    @property
    def page_count(self) -> int:
        return -(-self.resource_size // self.page_size)

    @property
    def final_page(self) -> int:
        """Index of the last page, -1 for an empty resource."""
        return self.page_count - 1

    @property
    def tail_size(self) -> int:
        """Valid bytes held by the final page."""
        if self.resource_size == 0:
            return 0
        return self.resource_size - self.final_page * self.page_size

    def pages_for_range(self, offset: int, length: int) -> tuple[int, int]:
        """Inclusive (first, last) page range touched by a read, clamped to the resource.

        `last < first` means the read lies entirely past the end.
        """
        first = offset // self.page_size
        last = min((offset + length - 1) // self.page_size, self.final_page)
        return first, last

    def fetch_size(self, first: int, last: int) -> int:
        size = (last - first + 1) * self.page_size
        if last == self.final_page:
            size = size - self.page_size + self.tail_size
        return size

    def completed_pages(self, first: int, n: int) -> range:
        """Pages starting at `first` whose bytes are all inside the first `n` bytes read."""
        full = n // self.page_size
        if first + full == self.final_page and n - full * self.page_size >= self.tail_size:
            full += 1
        return range(first, first + full)


class PageSet:
    """Residency bitmap sized to the page count; membership only grows."""

    def __init__(self, page_count: int):
        self._bits = bytearray((page_count + 7) // 8)
        self._count = 0

    def __contains__(self, page: int) -> bool:
        return bool(self._bits[page >> 3] & (1 << (page & 7)))

    def add(self, page: int) -> None:
        mask = 1 << (page & 7)
        if not self._bits[page >> 3] & mask:
            self._bits[page >> 3] |= mask
            self._count += 1

    def __len__(self) -> int:
        return self._count

    def __iter__(self):
        for page in range(len(self._bits) * 8):
            if page in self:
                yield page

    def missing_span(self, first: int, last: int) -> tuple[int, int] | None:
        """(first_missing, last_missing) within [first, last], or None if all present."""
        first_missing = -1
        last_missing = -1
        for page in range(first, last + 1):
            if page in self:
                continue
            if first_missing < 0:
                first_missing = page
            last_missing = page
        if first_missing < 0:
            return None
        return first_missing, last_missing
