"""
Tests for the key index.
"""

from __future__ import annotations

import hashlib
from pathlib import Path

import pytest

from casdisk import index
from casdisk.exceptions import IndexEntryError
from casdisk.integrity import Integrity


class TestIndexBuckets:
    """Tests for bucket layout."""

    def test_bucket_path_layout(self, cache_dir: Path) -> None:
        """Test that buckets are sharded by the sha256 of the key."""
        hashed = hashlib.sha256(b"my-key").hexdigest()
        assert index.bucket_path(cache_dir, "my-key") == (
            cache_dir / "index-v5" / hashed[0:2] / hashed[2:4] / hashed[4:]
        )

    def test_line_format(self, cache_dir: Path) -> None:
        """Test that each line is a sha1 checksum, a tab and the JSON entry."""
        index.insert(cache_dir, "k", Integrity.from_bytes(b"v"), 1, time=5)

        line = index.bucket_path(cache_dir, "k").read_bytes()
        checksum, body = line.rstrip(b"\n").split(b"\t", 1)
        assert checksum == hashlib.sha1(body).hexdigest().encode()
        assert b'"key":"k"' in body


class TestIndexInsertFind:
    """Tests for insert() and find()."""

    def test_insert_and_find(self, cache_dir: Path) -> None:
        """Test that an inserted entry can be found."""
        sri = Integrity.from_bytes(b"content")
        stored = index.insert(cache_dir, "key", sri, 7, metadata={"a": 1}, time=123)

        found = index.find(cache_dir, "key")
        assert found == stored
        assert found.integrity == sri
        assert found.size == 7
        assert found.time == 123
        assert found.metadata == {"a": 1}

    def test_time_defaults_to_now(self, cache_dir: Path) -> None:
        """Test that entries are timestamped in milliseconds."""
        before = index.now_millis()
        entry = index.insert(cache_dir, "key", Integrity.from_bytes(b"x"), 1)
        assert before <= entry.time <= index.now_millis()

    def test_find_missing(self, cache_dir: Path) -> None:
        """Test that unknown keys return None."""
        assert index.find(cache_dir, "missing") is None

    def test_newest_entry_wins(self, cache_dir: Path) -> None:
        """Test that a later insert replaces an earlier one."""
        index.insert(cache_dir, "key", Integrity.from_bytes(b"old"), 3)
        index.insert(cache_dir, "key", Integrity.from_bytes(b"new"), 3)

        assert index.find(cache_dir, "key").integrity == Integrity.from_bytes(b"new")

    def test_corrupt_lines_skipped(self, cache_dir: Path) -> None:
        """Test that torn or tampered lines are ignored."""
        sri = Integrity.from_bytes(b"good")
        index.insert(cache_dir, "key", sri, 4)

        bucket = index.bucket_path(cache_dir, "key")
        with open(bucket, "ab") as f:
            f.write(b"deadbeef\t{\"key\":\"key\",\"integrity\":\"sha1-AAAA\"}\n")
            f.write(b"no tab here\n")
            f.write(b'{"key":"key","integ')

        assert index.find(cache_dir, "key").integrity == sri

    def test_unserializable_metadata(self, cache_dir: Path) -> None:
        """Test that bad metadata raises before anything is written."""
        with pytest.raises(IndexEntryError) as exc_info:
            index.insert(cache_dir, "key", Integrity.from_bytes(b"x"), 1, metadata=object())

        assert exc_info.value.context == {"key": "key"}
        assert not index.bucket_path(cache_dir, "key").exists()

    @pytest.mark.asyncio
    async def test_async_insert_and_find(self, cache_dir: Path) -> None:
        """Test the worker-thread variants."""
        sri = Integrity.from_bytes(b"async")
        await index.insert_async(cache_dir, "async-key", sri, 5)

        found = await index.find_async(cache_dir, "async-key")
        assert found is not None
        assert found.integrity == sri
