"""
casdisk - content-addressable disk cache.

Content is stored once under a path derived from its own digest and indexed
under caller-chosen keys:

    import casdisk

    sri = casdisk.put.data(cache, "hello", b"hello world")
    casdisk.content_path(cache, sri)  # <cache>/content-v2/sha256/b9/4d/...
"""

from __future__ import annotations

from casdisk import index, put
from casdisk.content.path import content_path
from casdisk.exceptions import (
    CasError,
    IndexEntryError,
    IntegrityMismatchError,
    IntegrityParseError,
    PutStateError,
    SizeMismatchError,
    WriterClosedError,
)
from casdisk.integrity import DEFAULT_ALGORITHM, Algorithm, Hash, Integrity
from casdisk.put import AsyncPut, Put, PutOptions, PutState

__version__ = "0.1.0"

__all__ = [
    # Put API
    "index",
    "put",
    "Put",
    "AsyncPut",
    "PutOptions",
    "PutState",
    # Digests and paths
    "Algorithm",
    "DEFAULT_ALGORITHM",
    "Hash",
    "Integrity",
    "content_path",
    # Errors
    "CasError",
    "IndexEntryError",
    "IntegrityMismatchError",
    "IntegrityParseError",
    "PutStateError",
    "SizeMismatchError",
    "WriterClosedError",
]
