"""
Content storage for the cache.

This package provides:
- path.py: Canonical location of a blob derived from its integrity
- write.py: Blocking and asyncio writers that hash, stage and publish blobs
"""
