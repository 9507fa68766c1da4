"""Staged writes with a one-shot commit or discard.

Every bucket stages written bytes into a private temporary file regardless
of backend, and only hands them to the backend's publish primitive on
commit. The first of ``commit()``/``discard()`` wins; any later finalize
call raises ``StorageWriterFinalizedError`` without touching the backend or
the staging file.

Example:
    ```python
    async with bucket.create("exports/data.json", WriteOptions("application/json")) as w:
        await w.write(payload)
    # committed here, or discarded if the block raised
    ```
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from enum import StrEnum
import logging
import os
from pathlib import Path
import tempfile
import threading
from typing import TYPE_CHECKING, BinaryIO

from .backends.protocol import WriteOptions
from .exceptions import (
    ErrorMapper,
    StorageNotConfiguredError,
    StorageWriterFinalizedError,
    map_generic_error,
    map_os_error,
)
from .instrumentation import track_operation

if TYPE_CHECKING:
    from types import TracebackType

logger = logging.getLogger(__name__)

# Receives the staged content opened for reading, its size, the write options
# and the commit deadline as event loop time (None when unbounded)
PublishFn = Callable[[BinaryIO, int, WriteOptions, float | None], Awaitable[None]]


class WriterState(StrEnum):
    """Lifecycle state of a staged writer."""

    OPEN = "open"
    COMMITTED = "committed"
    DISCARDED = "discarded"


class StagedWriter:
    """Write handle that publishes its object atomically on commit.

    A writer is owned by a single task. Its finalize gate is still
    thread-safe, so concurrent commit/discard calls resolve to whichever
    acquires the gate first.

    Attributes:
        name: Relative object name
        key: Backend key the object is published under
        options: Content type and metadata applied on publish
    """

    def __init__(
        self,
        name: str,
        key: str,
        publish: PublishFn,
        *,
        backend: str,
        options: WriteOptions | None = None,
        staging_dir: Path | str | None = None,
        mapper: ErrorMapper = map_generic_error,
    ) -> None:
        self.name = name
        self.key = key
        self.options = options or WriteOptions()
        self.backend = backend
        self._publish = publish
        self._mapper = mapper
        self._gate = threading.Lock()
        self._finalized = False
        self._state = WriterState.OPEN
        self._size = 0

        try:
            self._file = tempfile.NamedTemporaryFile(  # noqa: SIM115
                prefix="bucketfs-",
                suffix=".part",
                dir=staging_dir,
                delete=False,
            )
        except OSError as e:
            raise StorageNotConfiguredError(
                f"Cannot create staging file: {e}",
                metadata={
                    "key": key,
                    "staging_dir": str(staging_dir) if staging_dir else tempfile.gettempdir(),
                    "errno": e.errno,
                },
            ) from e
        self._path = Path(self._file.name)

    def __repr__(self) -> str:
        return f"StagedWriter(key={self.key!r}, state={self._state.value!r}, size={self._size})"

    @property
    def state(self) -> WriterState:
        return self._state

    @property
    def size(self) -> int:
        """Number of bytes staged so far."""
        return self._size

    @property
    def staging_path(self) -> Path:
        return self._path

    async def write(self, data: bytes | bytearray | memoryview) -> int:
        """Append bytes to the staged content.

        Returns:
            Number of bytes written

        Raises:
            StorageWriterFinalizedError: If commit or discard already started
        """
        if self._finalized:
            raise StorageWriterFinalizedError(metadata={"key": self.key, "state": self._state.value})
        try:
            written = await asyncio.to_thread(self._file.write, data)
        except OSError as e:
            raise map_os_error(e, "write", self.key) from e
        self._size += written
        return written

    def _claim(self) -> None:
        with self._gate:
            if self._finalized:
                raise StorageWriterFinalizedError(
                    metadata={"key": self.key, "state": self._state.value}
                )
            self._finalized = True

    async def commit(self, *, timeout: float | None = None) -> None:
        """Publish the staged content under the writer's key.

        The staging file is removed whether or not publishing succeeds. On
        failure (including cancellation) the writer ends up DISCARDED and the
        error propagates.

        Args:
            timeout: Deadline in seconds for the upload

        Raises:
            StorageWriterFinalizedError: If the writer was already finalized
            StorageError: If publishing fails
        """
        self._claim()
        committed = False
        try:
            async with track_operation(
                "commit",
                backend=self.backend,
                key=self.key,
                timeout=timeout,
                mapper=self._mapper,
            ) as ctx:
                await asyncio.to_thread(self._file.close)
                reader = await asyncio.to_thread(self._path.open, "rb")
                try:
                    await self._publish(reader, self._size, self.options, ctx["deadline"])
                finally:
                    reader.close()
                ctx["size_bytes"] = self._size
            committed = True
        finally:
            self._state = WriterState.COMMITTED if committed else WriterState.DISCARDED
            self._release()

        logger.debug(
            "Object committed",
            extra={"backend": self.backend, "key": self.key, "size_bytes": self._size},
        )

    async def discard(self) -> None:
        """Drop the staged content without contacting the backend.

        Raises:
            StorageWriterFinalizedError: If the writer was already finalized
        """
        self._claim()
        self._state = WriterState.DISCARDED
        self._release()

    def _release(self) -> None:
        """Best-effort removal of the staging file."""
        try:
            self._file.close()
            os.unlink(self._path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(
                "Failed to remove staging file",
                extra={"path": str(self._path), "key": self.key, "error": str(e)},
            )

    async def __aenter__(self) -> StagedWriter:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        if self._finalized:
            return
        if exc_type is None:
            await self.commit()
        else:
            await self.discard()
