"""
Put/commit controller.

Opening a put allocates a content writer; writes stream into it; commit()
publishes the content, checks it against the caller's expectations and only
then records the key in the index:

    with casdisk.put.open(cache, "my-key", PutOptions(size=11)) as handle:
        handle.write(b"hello world")
        sri = handle.commit()

A handle that is never committed writes nothing visible. If a check fails,
the content stays on disk without an index entry.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any

from casdisk import index
from casdisk.content.write import AsyncWriter, Writer, resolve_chunk_size
from casdisk.exceptions import IntegrityMismatchError, PutStateError, SizeMismatchError
from casdisk.integrity import DEFAULT_ALGORITHM, Algorithm, Integrity
from casdisk.logging import get_logger, log_context

logger = get_logger(__name__)


class PutState(str, Enum):
    """Lifecycle of a write handle."""

    OPENED = "opened"
    WRITING = "writing"
    COMMITTED = "committed"
    FAILED = "failed"
    ABANDONED = "abandoned"

    @property
    def terminal(self) -> bool:
        return self in (PutState.COMMITTED, PutState.FAILED, PutState.ABANDONED)


@dataclass(frozen=True)
class PutOptions:
    """Options for a single put.

    Attributes:
        algorithm: Hash algorithm for the content. When unset, the preferred
            algorithm of `integrity` is used, else DEFAULT_ALGORITHM.
        integrity: Integrity the written content must match.
        size: Exact number of bytes that must be written.
        metadata: JSON-serializable value stored with the index entry.
        time: Index entry timestamp in epoch milliseconds (default: commit time).
    """

    algorithm: Algorithm | None = None
    integrity: Integrity | None = None
    size: int | None = None
    metadata: Any = None
    time: int | None = None

    def __post_init__(self) -> None:
        if isinstance(self.integrity, str):
            object.__setattr__(self, "integrity", Integrity.parse(self.integrity))
        if self.algorithm is not None:
            object.__setattr__(self, "algorithm", Algorithm(self.algorithm))
        if self.size is not None and self.size < 0:
            raise ValueError("size must be non-negative")

    @property
    def effective_algorithm(self) -> Algorithm:
        if self.algorithm is not None:
            return self.algorithm
        if self.integrity is not None:
            return self.integrity.pick_algorithm()
        return DEFAULT_ALGORITHM

    def open(self, cache: str | Path, key: str) -> Put:
        """Open a blocking write handle with these options."""
        return Put(cache, key, self)

    async def open_async(self, cache: str | Path, key: str) -> AsyncPut:
        """Open an asyncio write handle with these options."""
        return await AsyncPut.create(cache, key, self)


class _BasePut:
    """State and commit checks shared by Put and AsyncPut."""

    def __init__(self, cache: str | Path, key: str, options: PutOptions) -> None:
        self.cache = Path(cache)
        self.key = key
        self.options = options
        self.written = 0
        self.state = PutState.OPENED

    def _check_writable(self) -> None:
        if self.state.terminal:
            raise PutStateError(
                "Write handle is no longer open",
                {"key": self.key, "state": self.state.value},
            )

    def _verify(self, sri: Integrity) -> None:
        expected_sri = self.options.integrity
        if expected_sri is not None and expected_sri.matches(sri) is None:
            logger.warning(
                "Integrity mismatch, content left unindexed",
                expected=str(expected_sri),
                actual=str(sri),
            )
            raise IntegrityMismatchError(
                "Written content does not match the expected integrity",
                {"key": self.key, "expected": str(expected_sri), "actual": str(sri)},
            )

        expected_size = self.options.size
        if expected_size is not None and expected_size != self.written:
            logger.warning(
                "Size mismatch, content left unindexed",
                expected=expected_size,
                actual=self.written,
            )
            raise SizeMismatchError(
                "Written size does not match the expected size",
                {"key": self.key, "expected": expected_size, "actual": self.written},
            )

    def _committed(self, sri: Integrity) -> Integrity:
        self.state = PutState.COMMITTED
        logger.info("Committed content", integrity=str(sri), size=self.written)
        return sri


class Put(_BasePut):
    """Blocking write handle for one key."""

    def __init__(
        self, cache: str | Path, key: str, options: PutOptions | None = None
    ) -> None:
        super().__init__(cache, key, options or PutOptions())
        self.writer = Writer(self.cache, self.options.effective_algorithm)

    def write(self, data: bytes) -> int:
        """Write data, returning the number of bytes accepted.

        Raises:
            PutStateError: If the handle was committed, failed or abandoned.
            OSError: On write failure. The handle is failed.
        """
        self._check_writable()
        try:
            n = self.writer.write(data)
        except Exception:
            self.state = PutState.FAILED
            self.writer.abort()
            raise
        self.written += n
        self.state = PutState.WRITING
        return n

    def write_all(self, data: bytes) -> None:
        view = memoryview(data)
        while view:
            view = view[self.write(view):]

    def flush(self) -> None:
        self._check_writable()
        self.writer.flush()

    def commit(self) -> Integrity:
        """Publish the content, verify it and index it under the key.

        Returns:
            Integrity of the written content.

        Raises:
            PutStateError: If the handle was already committed, failed or abandoned.
            IntegrityMismatchError: If options.integrity does not match.
            SizeMismatchError: If options.size does not match.
            IndexEntryError: If options.metadata cannot be serialized.
            OSError: If publishing or indexing fails.
        """
        self._check_writable()
        with log_context(cache=self.cache, key=self.key):
            try:
                sri = self.writer.close()
                self._verify(sri)
                index.insert(
                    self.cache,
                    self.key,
                    sri,
                    self.written,
                    metadata=self.options.metadata,
                    time=self.options.time,
                )
            except BaseException:
                self.state = PutState.FAILED
                raise
            return self._committed(sri)

    def abandon(self) -> None:
        """Discard everything written. No-op once the handle is terminal."""
        if self.state.terminal:
            return
        self.writer.abort()
        self.state = PutState.ABANDONED
        logger.debug("Abandoned put", key=self.key)

    def __enter__(self) -> Put:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.abandon()


class AsyncPut(_BasePut):
    """asyncio write handle for one key.

    Construct with ``await open_async(...)``.
    """

    def __init__(
        self, cache: str | Path, key: str, options: PutOptions, writer: AsyncWriter
    ) -> None:
        super().__init__(cache, key, options)
        self.writer = writer

    @classmethod
    async def create(
        cls, cache: str | Path, key: str, options: PutOptions | None = None
    ) -> AsyncPut:
        options = options or PutOptions()
        writer = await AsyncWriter.create(cache, options.effective_algorithm)
        return cls(cache, key, options, writer)

    async def write(self, data: bytes) -> int:
        """Write data, returning the number of bytes accepted.

        Raises:
            PutStateError: If the handle was committed, failed or abandoned.
            OSError: On write failure. The handle is failed.
        """
        self._check_writable()
        self.state = PutState.WRITING
        try:
            return await self.writer.write(data)
        except asyncio.CancelledError:
            raise
        except Exception:
            self.state = PutState.FAILED
            await self.writer.abort()
            raise
        finally:
            self.written = self.writer.written

    async def write_all(self, data: bytes, chunk_size: int | None = None) -> None:
        self._check_writable()
        chunk_size = resolve_chunk_size(chunk_size)
        self.state = PutState.WRITING
        try:
            await self.writer.write_all(data, chunk_size)
        except asyncio.CancelledError:
            raise
        except Exception:
            self.state = PutState.FAILED
            await self.writer.abort()
            raise
        finally:
            self.written = self.writer.written

    async def flush(self) -> None:
        self._check_writable()
        await self.writer.flush()

    async def commit(self) -> Integrity:
        """Publish the content, verify it and index it under the key.

        Same checks and errors as Put.commit(); the index append runs in a
        worker thread.
        """
        self._check_writable()
        with log_context(cache=self.cache, key=self.key):
            try:
                sri = await self.writer.close()
                self._verify(sri)
                await index.insert_async(
                    self.cache,
                    self.key,
                    sri,
                    self.written,
                    metadata=self.options.metadata,
                    time=self.options.time,
                )
            except BaseException:
                self.state = PutState.FAILED
                raise
            return self._committed(sri)

    async def abandon(self) -> None:
        """Discard everything written. No-op once the handle is terminal."""
        if self.state.terminal:
            return
        self.state = PutState.ABANDONED
        await self.writer.abort()
        logger.debug("Abandoned put", key=self.key)

    async def __aenter__(self) -> AsyncPut:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.abandon()


def open(cache: str | Path, key: str, options: PutOptions | None = None) -> Put:
    """Open a blocking write handle for key. Does not touch the index."""
    return Put(cache, key, options)


async def open_async(
    cache: str | Path, key: str, options: PutOptions | None = None
) -> AsyncPut:
    """Open an asyncio write handle for key. Does not touch the index."""
    return await AsyncPut.create(cache, key, options)


def data(
    cache: str | Path, key: str, content: bytes, options: PutOptions | None = None
) -> Integrity:
    """Write content to the cache and index it under key in one call."""
    with open(cache, key, options) as handle:
        handle.write_all(content)
        return handle.commit()


async def data_async(
    cache: str | Path, key: str, content: bytes, options: PutOptions | None = None
) -> Integrity:
    """asyncio version of data()."""
    async with await open_async(cache, key, options) as handle:
        await handle.write_all(content)
        return await handle.commit()
