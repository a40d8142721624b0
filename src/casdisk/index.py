"""
Key index for the content store.

Maps caller keys to integrity plus metadata. Each key hashes to a bucket
file under <cache>/index-v5; buckets are append-only logs of lines

    <sha1 hex of json>\t<json>\n

Inserts are single appends to the bucket, so concurrent writers never
rewrite each other's lines. Torn or interleaved lines fail their checksum
and are skipped when reading, and the newest valid entry for a key wins.
"""

from __future__ import annotations

import asyncio
import hashlib
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import orjson

from casdisk.exceptions import IndexEntryError
from casdisk.integrity import Integrity
from casdisk.logging import get_logger

logger = get_logger(__name__)

INDEX_VERSION = "5"


@dataclass(frozen=True)
class IndexEntry:
    """One index record as stored in a bucket."""

    key: str
    integrity: Integrity
    size: int
    time: int  # milliseconds since the epoch
    metadata: Any = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "integrity": str(self.integrity),
            "time": self.time,
            "size": self.size,
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> IndexEntry:
        return cls(
            key=data["key"],
            integrity=Integrity.parse(data["integrity"]),
            size=int(data["size"]),
            time=int(data["time"]),
            metadata=data.get("metadata"),
        )


def now_millis() -> int:
    return int(time.time() * 1000)


def bucket_path(cache: str | Path, key: str) -> Path:
    """Return the bucket file holding entries for key."""
    hashed = hashlib.sha256(key.encode("utf-8")).hexdigest()
    return (
        Path(cache)
        / f"index-v{INDEX_VERSION}"
        / hashed[0:2]
        / hashed[2:4]
        / hashed[4:]
    )


def _serialize(entry: IndexEntry) -> bytes:
    try:
        body = orjson.dumps(entry.to_dict())
    except TypeError as e:
        raise IndexEntryError(
            "Index entry is not JSON serializable", {"key": entry.key}
        ) from e
    return hashlib.sha1(body).hexdigest().encode("ascii") + b"\t" + body + b"\n"


def _parse_line(line: bytes) -> IndexEntry | None:
    checksum, sep, body = line.partition(b"\t")
    if not sep or hashlib.sha1(body).hexdigest().encode("ascii") != checksum:
        return None
    try:
        return IndexEntry.from_dict(orjson.loads(body))
    except (orjson.JSONDecodeError, KeyError, TypeError, ValueError):
        return None


def insert(
    cache: str | Path,
    key: str,
    sri: Integrity,
    size: int,
    metadata: Any = None,
    time: int | None = None,
) -> IndexEntry:
    """Append an entry for key to its bucket.

    Args:
        cache: Cache root.
        key: Caller-chosen key.
        sri: Integrity of the indexed content.
        size: Content size in bytes.
        metadata: JSON-serializable caller metadata.
        time: Entry timestamp in epoch milliseconds (default: now).

    Returns:
        The stored entry.

    Raises:
        IndexEntryError: If metadata cannot be serialized. Nothing is written.
        OSError: If the bucket cannot be written.
    """
    entry = IndexEntry(
        key=key,
        integrity=sri,
        size=size,
        time=now_millis() if time is None else time,
        metadata=metadata,
    )
    line = memoryview(_serialize(entry))

    bucket = bucket_path(cache, key)
    bucket.parent.mkdir(parents=True, exist_ok=True)
    with open(bucket, "ab", buffering=0) as f:
        while line:
            line = line[f.write(line):]

    logger.debug("Indexed entry", key=key, integrity=str(sri), size=size)
    return entry


def find(cache: str | Path, key: str) -> IndexEntry | None:
    """Return the newest valid entry for key, or None."""
    bucket = bucket_path(cache, key)
    try:
        raw = bucket.read_bytes()
    except FileNotFoundError:
        return None

    found: IndexEntry | None = None
    for line in raw.splitlines():
        entry = _parse_line(line)
        if entry is not None and entry.key == key:
            found = entry
    return found


async def insert_async(
    cache: str | Path,
    key: str,
    sri: Integrity,
    size: int,
    metadata: Any = None,
    time: int | None = None,
) -> IndexEntry:
    """Non-blocking insert(): the append runs in a worker thread."""
    return await asyncio.to_thread(insert, cache, key, sri, size, metadata, time)


async def find_async(cache: str | Path, key: str) -> IndexEntry | None:
    return await asyncio.to_thread(find, cache, key)
