"""Bucket protocol and normalized data structures.

This module defines:
- Protocol interface that all bucket adapters must implement
- Normalized data structures for cross-backend compatibility
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Protocol

from bucketfs.storage.path import normalize_metadata

if TYPE_CHECKING:
    from types import TracebackType

    from bucketfs.storage.iterator import ObjectIterator
    from bucketfs.storage.reader import ObjectReader
    from bucketfs.storage.writer import StagedWriter

# ============================================================================
# Normalized Data Structures
# ============================================================================


@dataclass(frozen=True)
class MetaInfo:
    """Normalized object description across all bucket backends.

    Attributes:
        name: Object name relative to the bucket prefix
        size: Object size in bytes
        mod_time: Last modification timestamp (timezone-aware)
        content_type: MIME type, empty when unknown
        metadata: Custom metadata with canonical key casing
    """

    name: str
    size: int
    mod_time: datetime
    content_type: str = ""
    metadata: dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.size < 0:
            msg = f"Object size cannot be negative: {self.size}"
            raise ValueError(msg)
        object.__setattr__(self, "metadata", normalize_metadata(self.metadata))
        object.__setattr__(self, "content_type", self.content_type or "")


@dataclass(frozen=True)
class WriteOptions:
    """Options applied when a staged writer publishes its object.

    Attributes:
        content_type: MIME type; backends pick their default when empty
        metadata: Custom metadata stored with the object
    """

    content_type: str = ""
    metadata: dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "metadata", normalize_metadata(self.metadata))


# ============================================================================
# Bucket Protocol
# ============================================================================


class Bucket(Protocol):
    """Protocol interface for bucket adapters.

    All adapters (local filesystem, S3, GCS, in-memory) implement this
    protocol. Uses structural typing (Protocol) rather than inheritance.

    Every relative name is resolved beneath ``prefix``; names containing
    ``..`` segments are collapsed and can never reach keys outside it.

    Example:
        ```python
        async with create_bucket(settings) as bucket:
            async with bucket.create("reports/2024.csv") as writer:
                await writer.write(b"id,total\\n")

            async for info in bucket.glob("reports/*.csv"):
                print(info.name, info.size)
        ```
    """

    @property
    def backend_name(self) -> str:
        """Backend name identifier (e.g., 's3', 'file')."""
        ...

    @property
    def prefix(self) -> str:
        """Normalized namespace prefix, empty or ending in ``/``."""
        ...

    @property
    def is_ready(self) -> bool:
        """Whether native clients are initialized."""
        ...

    # ========================================================================
    # Lifecycle
    # ========================================================================

    async def startup(self) -> None:
        """Initialize native clients. Repeated calls are no-ops."""
        ...

    async def close(self) -> None:
        """Release native clients. Repeated calls are no-ops."""
        ...

    async def __aenter__(self) -> Bucket: ...

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None: ...

    # ========================================================================
    # Object Operations
    # ========================================================================

    def glob(self, pattern: str, *, timeout: float | None = None) -> ObjectIterator:
        """Iterate objects whose relative name matches a glob pattern.

        Args:
            pattern: Glob expression (``*``, ``**``, ``?``, classes, ``{a,b}``)
            timeout: Deadline in seconds for each listing page fetch

        Returns:
            Lazy async iterator of MetaInfo

        Raises:
            StorageValidationError: If the pattern is malformed (no backend call is made)
        """
        ...

    async def head(self, name: str, *, timeout: float | None = None) -> MetaInfo:
        """Describe a single object.

        Raises:
            StorageFileNotFoundError: If the object does not exist
        """
        ...

    async def open(self, name: str, *, timeout: float | None = None) -> ObjectReader:
        """Open an object for reading, bounded by its reported size.

        Raises:
            StorageFileNotFoundError: If the object does not exist
        """
        ...

    def create(self, name: str, options: WriteOptions | None = None) -> StagedWriter:
        """Start a staged write; nothing is visible until the writer commits."""
        ...

    async def remove(self, name: str, *, timeout: float | None = None) -> None:
        """Delete an object. Removing an absent object succeeds."""
        ...

    async def copy(self, src: str, dst: str, *, timeout: float | None = None) -> None:
        """Copy an object within this bucket.

        Raises:
            StorageFileNotFoundError: If ``src`` does not exist
        """
        ...
