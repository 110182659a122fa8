"""Upstream traffic benchmark for the paged cache.

Replays a batch of small random reads against a local file, once straight
through and once through a PagedCache, and prints how many upstream
requests and bytes each run needed. Meant for manual runs.
"""

import random
import sys
import tempfile
import time

from rangecache import NopCache, PagedCache, FileStore, LocalSource

RESOURCE_SIZE = 8 * 1024 * 1024
READS = 2000
READ_SIZE = 512


def _run(cache, source, offsets):
    start = time.perf_counter()
    buffer = bytearray(READ_SIZE)
    for off in offsets:
        cache.get(buffer, off, source)
    return time.perf_counter() - start


def main(page_size: int = 64 * 1024):
    rng = random.Random(1234)
    # reads cluster in a few hot regions, like header and index lookups do
    hot = [rng.randrange(0, RESOURCE_SIZE - 1024 * 1024) for _ in range(8)]
    offsets = [rng.choice(hot) + rng.randrange(0, 1024 * 1024 - READ_SIZE) for _ in range(READS)]

    with tempfile.NamedTemporaryFile() as upstream, tempfile.NamedTemporaryFile() as cache_file:
        upstream.write(rng.randbytes(RESOURCE_SIZE))
        upstream.flush()

        with LocalSource(upstream.name) as source:
            elapsed = _run(NopCache(), source, offsets)
            print(f"no cache : {source.requests_made:6d} requests {source.bytes_fetched:10d} bytes {elapsed:.3f}s")

        with LocalSource(upstream.name) as source, FileStore(cache_file.name) as store:
            cache = PagedCache(store, RESOURCE_SIZE, page_size)
            elapsed = _run(cache, source, offsets)
            print(f"paged    : {source.requests_made:6d} requests {source.bytes_fetched:10d} bytes {elapsed:.3f}s")
            print(cache)


if __name__ == "__main__":
    print("rangecache upstream traffic benchmark")
    print("=" * 40)
    main(int(sys.argv[1]) if len(sys.argv) > 1 else 64 * 1024)
