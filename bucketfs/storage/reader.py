"""Readable byte stream bounded by an object's reported size."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
import inspect
from typing import TYPE_CHECKING, Any, BinaryIO

from .exceptions import ErrorMapper, map_generic_error, normalize_error

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from types import TracebackType

DEFAULT_CHUNK_SIZE = 64 * 1024

ReadFn = Callable[[int], Awaitable[bytes]]


class ObjectReader:
    """Async reader over an object's content.

    Never yields more than ``size`` bytes: once the reported content length
    has been delivered every read returns ``b""``, even if the underlying
    transport still has data.

    Example:
        ```python
        async with await bucket.open("a/x.txt") as reader:
            head = await reader.read(16)
            rest = await reader.read()
        ```
    """

    def __init__(
        self,
        read: ReadFn,
        size: int,
        *,
        key: str,
        close: Callable[[], Any] | None = None,
        mapper: ErrorMapper = map_generic_error,
    ) -> None:
        self.size = size
        self.key = key
        self._read = read
        self._close = close
        self._mapper = mapper
        self._position = 0
        self._closed = False

    @classmethod
    def from_file(
        cls,
        fileobj: BinaryIO,
        size: int,
        *,
        key: str,
        mapper: ErrorMapper = map_generic_error,
        offload: bool = True,
    ) -> ObjectReader:
        """Wrap a blocking binary file object.

        With ``offload`` the reads and the close run in a worker thread.
        """
        if offload:

            async def read(n: int) -> bytes:
                return await asyncio.to_thread(fileobj.read, n)

            async def close() -> None:
                await asyncio.to_thread(fileobj.close)

            return cls(read, size, key=key, close=close, mapper=mapper)

        async def read_inline(n: int) -> bytes:
            return fileobj.read(n)

        return cls(read_inline, size, key=key, close=fileobj.close, mapper=mapper)

    @property
    def position(self) -> int:
        """Bytes delivered so far."""
        return self._position

    @property
    def closed(self) -> bool:
        return self._closed

    async def read(self, size: int = -1) -> bytes:
        """Read up to ``size`` bytes, or everything that remains when negative."""
        if self._closed:
            msg = "I/O operation on closed reader"
            raise ValueError(msg)

        remaining = self.size - self._position
        want = remaining if size is None or size < 0 else min(size, remaining)
        if want <= 0:
            return b""

        chunks: list[bytes] = []
        collected = 0
        try:
            while collected < want:
                chunk = await self._read(want - collected)
                if not chunk:
                    break
                chunks.append(chunk)
                collected += len(chunk)
                if size is not None and size >= 0:
                    break
        except Exception as e:
            error = normalize_error(e, "read", self.key, self._mapper)
            if error is e:
                raise
            raise error from e

        data = b"".join(chunks)[:want]
        self._position += len(data)
        return data

    async def iter_chunks(self, chunk_size: int = DEFAULT_CHUNK_SIZE) -> AsyncIterator[bytes]:
        while chunk := await self.read(chunk_size):
            yield chunk

    def __aiter__(self) -> AsyncIterator[bytes]:
        return self.iter_chunks()

    async def close(self) -> None:
        """Release the underlying stream. Repeated calls are no-ops."""
        if self._closed:
            return
        self._closed = True
        if self._close is None:
            return
        result = self._close()
        if inspect.isawaitable(result):
            await result

    async def __aenter__(self) -> ObjectReader:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()
