"""
Tests for the asyncio put/commit controller.
"""

from __future__ import annotations

import asyncio
import errno
import gc
from pathlib import Path
from typing import Callable

import pytest

from casdisk import index
from casdisk.content.path import content_path
from casdisk.exceptions import IntegrityMismatchError, PutStateError, SizeMismatchError
from casdisk.integrity import Algorithm, Integrity
from casdisk.put import AsyncPut, PutOptions, PutState, data, data_async, open_async


class TestAsyncPutData:
    """Tests for data_async()."""

    @pytest.mark.asyncio
    async def test_hello_world(self, cache_dir: Path) -> None:
        """Test the one-shot async put."""
        sri = await data_async(cache_dir, "hello", b"hello world")

        assert sri == Integrity.from_bytes(b"hello world")
        assert content_path(cache_dir, sri).read_bytes() == b"hello world"

        entry = await index.find_async(cache_dir, "hello")
        assert entry is not None
        assert entry.integrity == sri
        assert entry.size == 11

    @pytest.mark.asyncio
    async def test_same_digest_as_blocking_put(
        self,
        cache_dir: Path,
        content_files: Callable[[Path], list[Path]],
    ) -> None:
        """Test that both controllers produce the same digest and blob."""
        payload = b"\x00\xff" * 50_000
        options = PutOptions(algorithm=Algorithm.SHA512)

        async_sri = await data_async(cache_dir, "async", payload, options)
        sync_sri = data(cache_dir, "sync", payload, options)

        assert async_sri == sync_sri
        assert len(content_files(cache_dir)) == 1

    @pytest.mark.asyncio
    async def test_concurrent_identical_puts(
        self,
        cache_dir: Path,
        staged_files: Callable[[Path], list[Path]],
        content_files: Callable[[Path], list[Path]],
    ) -> None:
        """Test that concurrent async writers of the same bytes all succeed."""
        payload = b"same" * 20_000

        results = await asyncio.gather(
            *(data_async(cache_dir, f"key-{i}", payload) for i in range(12))
        )

        assert len(set(results)) == 1
        assert content_files(cache_dir) == [content_path(cache_dir, results[0])]
        assert staged_files(cache_dir) == []
        for i in range(12):
            assert index.find(cache_dir, f"key-{i}").integrity == results[0]


class TestAsyncPutHandle:
    """Tests for open_async/write/commit."""

    @pytest.mark.asyncio
    async def test_chunked_writes(self, cache_dir: Path) -> None:
        """Test that individually awaited writes are counted and hashed."""
        handle = await open_async(cache_dir, "chunks", PutOptions(size=9))
        assert isinstance(handle, AsyncPut)

        for chunk in (b"abc", b"def", b"ghi"):
            assert await handle.write(chunk) == 3
        await handle.flush()

        assert handle.written == 9
        sri = await handle.commit()
        assert sri == Integrity.from_bytes(b"abcdefghi")
        assert handle.state is PutState.COMMITTED

    @pytest.mark.asyncio
    async def test_write_all_with_chunk_size(self, cache_dir: Path) -> None:
        """Test write_all with an explicit chunk size."""
        payload = bytes(range(256)) * 100
        handle = await PutOptions().open_async(cache_dir, "write-all")
        await handle.write_all(payload, chunk_size=1000)

        assert handle.written == len(payload)
        assert await handle.commit() == Integrity.from_bytes(payload)

    @pytest.mark.asyncio
    async def test_abandon_leaves_nothing_visible(
        self,
        cache_dir: Path,
        staged_files: Callable[[Path], list[Path]],
    ) -> None:
        """Test that leaving async with without commit publishes nothing."""
        async with await open_async(cache_dir, "abandoned") as handle:
            await handle.write(b"never committed")

        assert handle.state is PutState.ABANDONED
        assert not content_path(cache_dir, Integrity.from_bytes(b"never committed")).exists()
        assert staged_files(cache_dir) == []
        assert index.find(cache_dir, "abandoned") is None

    @pytest.mark.asyncio
    async def test_commit_twice_raises(self, cache_dir: Path) -> None:
        """Test that an async handle commits only once."""
        handle = await open_async(cache_dir, "once")
        await handle.write(b"x")
        await handle.commit()

        with pytest.raises(PutStateError):
            await handle.commit()
        with pytest.raises(PutStateError):
            await handle.write(b"y")


class TestAsyncCommitVerification:
    """Tests for the integrity and size checks in async commit()."""

    @pytest.mark.asyncio
    async def test_integrity_mismatch_not_indexed(self, cache_dir: Path) -> None:
        """Test that a mismatch raises and indexes nothing."""
        options = PutOptions(integrity=Integrity.from_bytes(b"expected"))

        with pytest.raises(IntegrityMismatchError):
            await data_async(cache_dir, "bad", b"actual", options)

        assert index.find(cache_dir, "bad") is None
        assert content_path(cache_dir, Integrity.from_bytes(b"actual")).exists()

    @pytest.mark.asyncio
    async def test_size_mismatch_not_indexed(self, cache_dir: Path) -> None:
        """Test that a size mismatch raises and indexes nothing."""
        handle = await open_async(cache_dir, "sized", PutOptions(size=3))
        await handle.write(b"four")

        with pytest.raises(SizeMismatchError):
            await handle.commit()

        assert handle.state is PutState.FAILED
        assert index.find(cache_dir, "sized") is None

    @pytest.mark.asyncio
    async def test_matching_expectations_commit(self, cache_dir: Path) -> None:
        """Test that matching integrity and size commit."""
        payload = b"verified"
        options = PutOptions(
            integrity=Integrity.from_bytes(payload, Algorithm.SHA384),
            size=len(payload),
            metadata={"verified": True},
        )

        sri = await data_async(cache_dir, "verified", payload, options)

        assert sri.pick_algorithm() is Algorithm.SHA384
        entry = index.find(cache_dir, "verified")
        assert entry is not None
        assert entry.metadata == {"verified": True}


class TestAsyncWriteFailures:
    """Tests for failed writes, bad arguments and dropped async handles."""

    @pytest.mark.asyncio
    async def test_write_error_fails_handle(
        self,
        cache_dir: Path,
        monkeypatch: pytest.MonkeyPatch,
        staged_files: Callable[[Path], list[Path]],
        content_files: Callable[[Path], list[Path]],
    ) -> None:
        """Test that a failed worker write raises OSError and fails the handle."""
        def disk_full(data: object) -> int:
            raise OSError(errno.ENOSPC, "No space left on device")

        handle = await open_async(cache_dir, "full")
        await handle.write(b"first")
        monkeypatch.setattr(handle.writer._file, "write", disk_full)

        with pytest.raises(OSError) as exc_info:
            await handle.write(b"second")

        assert exc_info.value.errno == errno.ENOSPC
        assert handle.state is PutState.FAILED
        assert handle.writer.closed
        assert staged_files(cache_dir) == []
        assert content_files(cache_dir) == []

        with pytest.raises(PutStateError):
            await handle.commit()
        assert index.find(cache_dir, "full") is None

    @pytest.mark.asyncio
    async def test_dropped_handle_discards(
        self,
        cache_dir: Path,
        staged_files: Callable[[Path], list[Path]],
        content_files: Callable[[Path], list[Path]],
    ) -> None:
        """Test that a handle dropped without abandon leaves no staging file."""
        handle = await open_async(cache_dir, "dropped")
        await handle.write(b"dropped")
        assert len(staged_files(cache_dir)) == 1

        del handle
        await asyncio.sleep(0)
        gc.collect()

        assert staged_files(cache_dir) == []
        assert content_files(cache_dir) == []
        assert index.find(cache_dir, "dropped") is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("chunk_size", [0, -1])
    async def test_write_all_rejects_bad_chunk_size(
        self, cache_dir: Path, chunk_size: int
    ) -> None:
        """Test that a chunk size below 1 raises and keeps the handle usable."""
        handle = await open_async(cache_dir, "chunked")

        with pytest.raises(ValueError):
            await handle.write_all(b"hello world", chunk_size=chunk_size)

        assert handle.written == 0
        assert handle.state is PutState.OPENED

        await handle.write_all(b"hello world", chunk_size=4)
        sri = await handle.commit()

        assert sri == Integrity.from_bytes(b"hello world")
        assert index.find(cache_dir, "chunked").size == 11
