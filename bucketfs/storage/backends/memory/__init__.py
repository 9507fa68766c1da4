"""In-memory bucket backend.

Process-local storage for tests and ephemeral pipelines.
"""

from .backend import MemoryBucket, MemoryStore, get_store

__all__ = ["MemoryBucket", "MemoryStore", "get_store"]
