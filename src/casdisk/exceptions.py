"""
Exception hierarchy for the content-addressable store.

All library errors inherit from CasError, which carries optional context
for structured error handling and logging. Low-level storage failures are
not wrapped: they surface as the OSError raised by the filesystem.
"""

from __future__ import annotations

from typing import Any


class CasError(Exception):
    """Base exception for all casdisk errors.

    Attributes:
        message: Human-readable error message.
        context: Optional structured context for logging/debugging.
    """

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self) -> str:
        if self.context:
            ctx_str = ", ".join(f"{k}={v!r}" for k, v in self.context.items())
            return f"{self.message} ({ctx_str})"
        return self.message

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, context={self.context!r})"


class IntegrityMismatchError(CasError):
    """Raised when written content does not match the expected integrity.

    The content itself has already been published and is left on disk
    without an index entry.

    Context should include:
        - key: The key being committed
        - expected: The expected integrity string
        - actual: The integrity computed from the written bytes
    """

    pass


class SizeMismatchError(CasError):
    """Raised when the number of bytes written differs from the expected size.

    Context should include:
        - key: The key being committed
        - expected: The expected size in bytes
        - actual: The number of bytes actually written
    """

    pass


class IntegrityParseError(CasError, ValueError):
    """Raised when an integrity string cannot be parsed.

    Context should include:
        - value: The offending text
    """

    pass


class IndexEntryError(CasError):
    """Raised when an index entry cannot be serialized.

    Context should include:
        - key: The key being indexed
    """

    pass


class PutStateError(CasError):
    """Raised when a write handle is used after it reached a terminal state.

    Context should include:
        - key: The key of the handle
        - state: The handle's current state
    """

    pass


class WriterClosedError(CasError):
    """Raised when writing to a content writer that is already closed."""

    pass
