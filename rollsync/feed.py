"""Feed access: stream rows from a delimited roll export, or fetch one over HTTP."""

import csv
import logging
from collections.abc import Iterator
from pathlib import Path

import httpx

from .exceptions import FeedError

logger = logging.getLogger(__name__)


def is_remote(feed_ref: str | Path) -> bool:
    return str(feed_ref).startswith(("http://", "https://"))


def iter_feed_rows(
    feed_path: str | Path,
    delimiter: str = ",",
    encoding: str = "utf-8-sig",
) -> Iterator[dict[str, str]]:
    """Yield feed rows one at a time as header → value mappings.

    The file is never read fully into memory. Extra columns pass through
    untouched; the normalizer decides what to use.
    """
    path = Path(feed_path)
    try:
        handle = path.open(newline="", encoding=encoding, errors="replace")
    except OSError as exc:
        raise FeedError(f"Cannot open feed {path}: {exc}", {"path": str(path)}) from exc

    with handle:
        reader = csv.DictReader(handle, delimiter=delimiter)
        if reader.fieldnames is None:
            raise FeedError(f"Feed {path} has no header row", {"path": str(path)})
        try:
            yield from reader
        except csv.Error as exc:
            raise FeedError(
                f"Malformed feed {path} at line {reader.line_num}: {exc}",
                {"path": str(path), "line": reader.line_num},
            ) from exc


def download_feed(url: str, dest: str | Path, timeout: float = 300.0) -> Path:
    """Download a feed export to a local file and return its path."""
    dest = Path(dest)
    dest.parent.mkdir(parents=True, exist_ok=True)

    logger.info("Downloading feed from %s", url)
    try:
        with httpx.stream("GET", url, timeout=timeout, follow_redirects=True) as response:
            response.raise_for_status()
            with dest.open("wb") as out:
                for chunk in response.iter_bytes():
                    out.write(chunk)
    except httpx.HTTPError as exc:
        raise FeedError(f"Feed download failed: {exc}", {"url": url}) from exc

    logger.info("Saved feed to %s (%d bytes)", dest, dest.stat().st_size)
    return dest
