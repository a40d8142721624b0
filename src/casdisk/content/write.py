"""
Content writers.

Bytes are streamed into a staging file under <cache>/tmp while being
hashed. Closing a writer finalizes the hash and publishes the staging file
at its canonical content path with a no-clobber hard link, so readers of
that path see either nothing or the complete blob. A blob that is already
present is left untouched: identical digests mean identical bytes.

Two writers share that finalize routine:
- Writer: blocking, runs entirely in the calling thread
- AsyncWriter: asyncio variant that runs file operations in worker threads
  so the event loop never blocks
"""

from __future__ import annotations

import asyncio
import errno
import os
import tempfile
import weakref
from pathlib import Path
from typing import Any, BinaryIO, Callable

from casdisk.config import get_settings
from casdisk.content.path import content_path
from casdisk.exceptions import WriterClosedError
from casdisk.integrity import DEFAULT_ALGORITHM, Algorithm, Hasher, Integrity
from casdisk.logging import get_logger

logger = get_logger(__name__)

TMP_DIR = "tmp"

# link() failures that mean "no hard links here" rather than a real I/O error
_NO_LINK_ERRNOS = frozenset(
    {errno.EPERM, errno.ENOTSUP, errno.EOPNOTSUPP, errno.EMLINK, errno.ENOSYS}
)


def staging_dir(cache: str | Path) -> Path:
    """Directory holding in-progress writes for cache."""
    return Path(cache) / TMP_DIR


def resolve_chunk_size(chunk_size: int | None) -> int:
    """Return chunk_size, or the CHUNK_SIZE setting when it is None."""
    if chunk_size is None:
        return get_settings().CHUNK_SIZE
    if chunk_size < 1:
        raise ValueError(f"chunk_size must be at least 1, got {chunk_size}")
    return chunk_size


def _open_staging(cache: Path) -> tuple[BinaryIO, Path]:
    tmp_dir = staging_dir(cache)
    tmp_dir.mkdir(parents=True, exist_ok=True)
    fd, name = tempfile.mkstemp(dir=tmp_dir, prefix="put-")
    try:
        return os.fdopen(fd, "wb"), Path(name)
    except BaseException:
        os.close(fd)
        os.unlink(name)
        raise


def _discard(file: BinaryIO, staging: Path) -> None:
    """Close and remove a staging file. Used as the writers' finalizer."""
    file.close()
    try:
        os.unlink(staging)
    except FileNotFoundError:
        pass


def publish(staging: Path, cache: str | Path, sri: Integrity) -> Path:
    """Publish a fully written staging file as the content for sri.

    The staging file is removed whether or not publishing succeeds.

    Args:
        staging: Closed staging file holding exactly the bytes hashed into sri.
        cache: Cache root.
        sri: Integrity of the staged bytes.

    Returns:
        The canonical content path.

    Raises:
        OSError: If the content cannot be put in place.
    """
    target = content_path(cache, sri)
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        try:
            os.link(staging, target)
        except FileExistsError:
            logger.debug("Content already present", integrity=str(sri))
        except OSError as e:
            if e.errno not in _NO_LINK_ERRNOS:
                raise
            os.replace(staging, target)
            logger.debug("Published content by rename", integrity=str(sri), path=str(target))
        else:
            logger.debug("Published content", integrity=str(sri), path=str(target))
    finally:
        try:
            os.unlink(staging)
        except FileNotFoundError:
            pass
    return target


def _finalize(
    file: BinaryIO, hasher: Hasher, cache: Path, staging: Path, fsync: bool
) -> Integrity:
    file.flush()
    if fsync:
        os.fsync(file.fileno())
    file.close()
    sri = hasher.result()
    publish(staging, cache, sri)
    return sri


class Writer:
    """Blocking content writer.

    Call close() to publish the content and get its integrity. Dropping the
    writer or calling abort() discards everything written so far.
    """

    def __init__(
        self,
        cache: str | Path,
        algorithm: Algorithm = DEFAULT_ALGORITHM,
        fsync: bool | None = None,
    ) -> None:
        """Open a staging file under cache.

        Args:
            cache: Cache root.
            algorithm: Hash algorithm naming the content.
            fsync: fsync before publishing (default: FSYNC setting).

        Raises:
            OSError: If the staging file cannot be created.
        """
        self.cache = Path(cache)
        self.algorithm = Algorithm(algorithm)
        self.written = 0
        self._fsync = get_settings().FSYNC if fsync is None else fsync
        self._hasher = Hasher(self.algorithm)
        self._file, self.staging = _open_staging(self.cache)
        self._finalizer = weakref.finalize(self, _discard, self._file, self.staging)
        self._closed = False
        logger.debug("Opened content writer", staging=str(self.staging), algorithm=str(self.algorithm))

    @property
    def closed(self) -> bool:
        return self._closed

    def _check_open(self) -> None:
        if self._closed:
            raise WriterClosedError("Content writer is closed", {"staging": str(self.staging)})

    def write(self, data: bytes) -> int:
        """Write data, returning the number of bytes accepted.

        Raises:
            WriterClosedError: If the writer was closed or aborted.
            OSError: On write failure. The writer is aborted.
        """
        self._check_open()
        view = memoryview(data)
        try:
            n = self._file.write(view)
        except OSError:
            self.abort()
            raise
        self._hasher.update(view[:n])
        self.written += n
        return n

    def write_all(self, data: bytes) -> None:
        view = memoryview(data)
        while view:
            view = view[self.write(view):]

    def flush(self) -> None:
        self._check_open()
        self._file.flush()

    def close(self) -> Integrity:
        """Finish writing and publish the content.

        Returns:
            Integrity of everything written.

        Raises:
            WriterClosedError: If the writer was already closed.
            OSError: If the content could not be published.
        """
        self._check_open()
        self._closed = True
        try:
            sri = _finalize(self._file, self._hasher, self.cache, self.staging, self._fsync)
        except BaseException:
            self._finalizer()
            raise
        self._finalizer.detach()
        return sri

    def abort(self) -> None:
        """Discard the staging file. No-op once closed."""
        self._closed = True
        self._finalizer()

    def __enter__(self) -> Writer:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        if not self._closed:
            self.abort()


class AsyncWriter:
    """Non-blocking content writer for asyncio.

    write(), flush() and close() are coroutines; each hands its file
    operation to a worker thread and suspends until it completes. At most
    one operation is in flight: a new operation first waits for the previous
    one. Chunks are copied when accepted and their worker-side write always
    runs to completion, even if the awaiting task is cancelled, so the file
    and the hash never disagree.

    Construct with ``await AsyncWriter.create(...)``.
    """

    def __init__(
        self,
        cache: Path,
        algorithm: Algorithm,
        file: BinaryIO,
        staging: Path,
        fsync: bool,
    ) -> None:
        self.cache = cache
        self.algorithm = algorithm
        self.staging = staging
        self.written = 0
        self._file = file
        self._fsync = fsync
        self._hasher = Hasher(algorithm)
        self._finalizer = weakref.finalize(self, _discard, file, staging)
        self._pending: asyncio.Future[Any] | None = None
        self._error: BaseException | None = None
        self._closed = False

    @classmethod
    async def create(
        cls,
        cache: str | Path,
        algorithm: Algorithm = DEFAULT_ALGORITHM,
        fsync: bool | None = None,
    ) -> AsyncWriter:
        """Open a staging file under cache without blocking the loop.

        Raises:
            OSError: If the staging file cannot be created.
        """
        cache = Path(cache)
        algorithm = Algorithm(algorithm)
        if fsync is None:
            fsync = get_settings().FSYNC
        file, staging = await asyncio.to_thread(_open_staging, cache)
        logger.debug("Opened async content writer", staging=str(staging), algorithm=str(algorithm))
        return cls(cache, algorithm, file, staging, fsync)

    @property
    def closed(self) -> bool:
        return self._closed

    def _check_open(self) -> None:
        if self._error is not None:
            raise WriterClosedError(
                "Content writer failed", {"staging": str(self.staging)}
            ) from self._error
        if self._closed:
            raise WriterClosedError("Content writer is closed", {"staging": str(self.staging)})

    def _on_done(self, fut: asyncio.Future[Any]) -> None:
        if not fut.cancelled() and fut.exception() is not None:
            self._error = fut.exception()

    async def _settle(self) -> None:
        """Wait for the in-flight operation, whatever its outcome."""
        if self._pending is not None and not self._pending.done():
            await asyncio.wait([self._pending])

    async def _submit(self, func: Callable[..., Any], *args: Any) -> Any:
        """Run func in a worker thread as the single in-flight operation."""
        fut = asyncio.get_running_loop().run_in_executor(None, func, *args)
        fut.add_done_callback(self._on_done)
        self._pending = fut
        return await asyncio.shield(fut)

    def _write_chunk(self, chunk: bytes) -> None:
        self._file.write(chunk)
        self._hasher.update(chunk)

    async def write(self, data: bytes) -> int:
        """Write data, returning the number of bytes accepted.

        Raises:
            WriterClosedError: If the writer was closed, aborted or failed.
            OSError: On write failure.
        """
        chunk = bytes(data)
        await self._settle()
        self._check_open()
        # Accepted from here: the submitted write completes even if we are cancelled
        self.written += len(chunk)
        await self._submit(self._write_chunk, chunk)
        return len(chunk)

    async def write_all(self, data: bytes, chunk_size: int | None = None) -> None:
        """Write data as a series of individually awaited chunks.

        Raises:
            ValueError: If chunk_size is less than 1.
        """
        size = resolve_chunk_size(chunk_size)
        view = memoryview(data)
        for start in range(0, len(view), size):
            await self.write(view[start:start + size])

    async def flush(self) -> None:
        await self._settle()
        self._check_open()
        await self._submit(self._file.flush)

    async def close(self) -> Integrity:
        """Finish writing and publish the content.

        Returns:
            Integrity of everything written.

        Raises:
            WriterClosedError: If the writer was already closed or failed.
            OSError: If the content could not be published.
        """
        await self._settle()
        self._check_open()
        self._closed = True
        try:
            sri = await self._submit(
                _finalize, self._file, self._hasher, self.cache, self.staging, self._fsync
            )
        except BaseException:
            self._discard_when_idle()
            raise
        self._finalizer.detach()
        return sri

    def _discard_when_idle(self) -> None:
        finalizer = self._finalizer
        if self._pending is not None and not self._pending.done():
            self._pending.add_done_callback(lambda _fut: finalizer())
        else:
            finalizer()

    async def abort(self) -> None:
        """Discard the staging file once any in-flight operation settles."""
        self._closed = True
        await self._settle()
        if self._finalizer.alive:
            await asyncio.to_thread(self._finalizer)

    async def __aenter__(self) -> AsyncWriter:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        if not self._closed:
            await self.abort()
