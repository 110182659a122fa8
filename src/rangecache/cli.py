"""CLI implementation for rangecache."""

import base64
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, Optional

import typer

from . import open_reader, RangeReader

app = typer.Typer(add_completion=False, help="Random access reads over HTTP ranges, with an optional page cache.")


def parse_range(spec: str) -> tuple[int, int]:
    """Parse an OFFSET:LENGTH range argument."""
    try:
        offset_str, length_str = spec.split(":")
        offset, length = int(offset_str), int(length_str)
    except ValueError:
        raise typer.BadParameter(f"Expected OFFSET:LENGTH, got {spec!r}")
    if offset < 0 or length < 0:
        raise typer.BadParameter(f"Offset and length must be non-negative, got {spec!r}")
    return offset, length


def _configure_logging(verbose: bool) -> None:
    if verbose:
        logging.basicConfig(level=logging.DEBUG, stream=sys.stderr,
                            format="%(asctime)s %(name)s %(levelname)s %(message)s")


def _stats(reader: RangeReader) -> Dict[str, Any]:
    stats = {"requests_made": reader.requests_made, "bytes_fetched": reader.bytes_fetched}
    cache = reader.cache
    if cache is not None and hasattr(cache, "hits"):
        stats.update({"cache_hits": cache.hits, "cache_misses": cache.misses})
    return stats


def _emit(records: list[Dict[str, Any]], output: Optional[Path], jsonl: bool) -> None:
    # open output sink
    sink = open(output, "w", encoding="utf-8") if output else sys.stdout
    try:
        if len(records) == 1 and not jsonl:
            json.dump(records[0], sink, indent=2)
            sink.write("\n")
        else:
            for rec in records:
                sink.write(json.dumps(rec))
                sink.write("\n")
    finally:
        if output:
            sink.close()


@app.command()
def size(
    url: str = typer.Argument(..., help="URL of the resource"),
    output: Optional[Path] = typer.Option(None, "-o", "--output", help="Write to PATH instead of stdout"),
    verbose: bool = typer.Option(False, "-v", "--verbose", help="Log requests to stderr"),
):
    """Print the total size of a remote resource."""
    _configure_logging(verbose)
    try:
        with RangeReader(url) as reader:
            record = {"success": True, "url": url, "size": reader.size()}
    except Exception as e:
        record = {"success": False, "url": url, "error": str(e)}
    _emit([record], output, jsonl=False)
    if not record["success"]:
        raise typer.Exit(code=1)


@app.command()
def read(
    url: str = typer.Argument(..., help="URL of the resource"),
    ranges: list[str] = typer.Option(..., "-r", "--range", help="OFFSET:LENGTH to read, repeatable"),
    cache_file: Optional[Path] = typer.Option(None, "--cache-file", help="Cache pages in this file"),
    page_size: Optional[int] = typer.Option(None, "--page-size", min=1, help="Cache page size in bytes"),
    jsonl: bool = typer.Option(False, "--jsonl", help="Force JSON-lines output"),
    output: Optional[Path] = typer.Option(None, "-o", "--output", help="Write to PATH instead of stdout"),
    verbose: bool = typer.Option(False, "-v", "--verbose", help="Log requests to stderr"),
):
    """Read one or more byte ranges from a remote resource."""
    _configure_logging(verbose)
    wanted = [parse_range(spec) for spec in ranges]

    records: list[Dict[str, Any]] = []
    try:
        reader = open_reader(url, cache_file=cache_file, page_size=page_size)
    except Exception as e:
        records = [{"success": False, "offset": off, "length": length, "error": str(e)} for off, length in wanted]
    else:
        with reader:
            for off, length in wanted:
                buffer = bytearray(length)
                try:
                    result = reader.read_at(buffer, off)
                except Exception as e:
                    rec = {"success": False, "offset": off, "length": length, "error": str(e)}
                else:
                    rec = {
                        "success": True,
                        "offset": off,
                        "length": length,
                        "bytes_read": result.n,
                        "eof": result.eof,
                        "data_b64": base64.b64encode(buffer[:result.n]).decode("ascii"),
                    }
                rec.update(_stats(reader))
                records.append(rec)

    _emit(records, output, jsonl)

    # exit code
    if any(not rec["success"] for rec in records):
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
