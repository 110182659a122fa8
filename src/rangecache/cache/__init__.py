"""Cache strategies a reader consults before going upstream."""

from .base import CacheHandler, AsyncCacheHandler, NopCache, AsyncNopCache
from .paged import PagedCache, AsyncPagedCache
