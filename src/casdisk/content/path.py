"""
Canonical content paths.

Layout of a content file:

    sha256-uU0nuZNNPgilLlLX2n2r+sSE7+N6U4DukIj3rOLvzek= ->
    <cache>/content-v2/sha256/b9/4d/27b9934d3e08a52e52d7da7dabfac484efe37a5380ee9088f7ace2efcde9

The two leading shards only bound directory fan-out.
"""

from __future__ import annotations

from pathlib import Path

from casdisk.integrity import Integrity

CONTENT_VERSION = "2"

# Short digests live beside the two-character shard directories
SHORT_PREFIX = "short-"


def content_dir(cache: str | Path) -> Path:
    """Root of the versioned content tree."""
    return Path(cache) / f"content-v{CONTENT_VERSION}"


def content_path(cache: str | Path, sri: Integrity) -> Path:
    """Return where the content named by sri lives under cache.

    Uses the highest-priority hash of sri. Performs no I/O.
    """
    algorithm, hex_digest = sri.to_hex()
    base = content_dir(cache) / algorithm.value
    if len(hex_digest) <= 4:
        return base / f"{SHORT_PREFIX}{hex_digest}"
    return base / hex_digest[0:2] / hex_digest[2:4] / hex_digest[4:]
