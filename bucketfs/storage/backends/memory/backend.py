"""Process-local in-memory bucket.

Objects live in a :class:`MemoryStore`. Buckets resolved by name share one
store per process, so ``mem://scratch`` connected twice sees the same
objects. Intended for tests and ephemeral pipelines.
"""

from __future__ import annotations

import asyncio
from bisect import bisect_right
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from functools import partial
from io import BytesIO
import logging
import threading
from typing import TYPE_CHECKING, Any, BinaryIO

from bucketfs.core.settings import BucketBackendType, BucketSettings
from bucketfs.storage.exceptions import StorageFileNotFoundError
from bucketfs.storage.instrumentation import track_operation
from bucketfs.storage.iterator import ListedObject, ObjectIterator
from bucketfs.storage.path import Namespace
from bucketfs.storage.pattern import compile_pattern
from bucketfs.storage.reader import ObjectReader
from bucketfs.storage.writer import StagedWriter

from ..protocol import MetaInfo, WriteOptions

if TYPE_CHECKING:
    from types import TracebackType

logger = logging.getLogger(__name__)

_stores: dict[str, MemoryStore] = {}
_stores_lock = threading.Lock()


@dataclass(frozen=True)
class StoredObject:
    """An object held by a memory store."""

    data: bytes
    mod_time: datetime
    content_type: str = ""
    metadata: dict[str, str] = field(default_factory=dict)


class MemoryStore:
    """Thread-safe key/value map of stored objects."""

    def __init__(self) -> None:
        self._objects: dict[str, StoredObject] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._objects)

    def get(self, key: str) -> StoredObject | None:
        with self._lock:
            return self._objects.get(key)

    def put(self, key: str, obj: StoredObject) -> None:
        with self._lock:
            self._objects[key] = obj

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._objects.pop(key, None) is not None

    def keys(self) -> list[str]:
        with self._lock:
            return sorted(self._objects)

    def page(self, prefix: str, after: str | None, limit: int) -> tuple[list[tuple[str, StoredObject]], bool]:
        """Return up to ``limit`` entries under ``prefix`` sorted by key, after ``after``.

        The flag is true when more entries follow.
        """
        with self._lock:
            keys = sorted(k for k in self._objects if k.startswith(prefix))
            start = bisect_right(keys, after) if after is not None else 0
            selected = keys[start : start + limit]
            entries = [(k, self._objects[k]) for k in selected]
            return entries, start + limit < len(keys)


def get_store(name: str) -> MemoryStore:
    """Return the process-wide store registered under ``name``, creating it on first use."""
    with _stores_lock:
        store = _stores.get(name)
        if store is None:
            store = _stores[name] = MemoryStore()
        return store


class MemoryObjectIterator(ObjectIterator):
    """Pages over sorted keys; the token is the last key returned."""

    def __init__(self, store: MemoryStore, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._store = store

    async def _fetch_page(self, token: str | None) -> tuple[list[ListedObject], str | None]:
        entries, has_more = self._store.page(self.list_prefix, token, self.page_size)
        listed = [
            ListedObject(
                key=key,
                size=len(obj.data),
                mod_time=obj.mod_time,
                content_type=obj.content_type,
                metadata=obj.metadata,
            )
            for key, obj in entries
        ]
        next_token = entries[-1][0] if has_more and entries else None
        return listed, next_token


class MemoryBucket:
    """In-memory bucket.

    Attributes:
        settings: Bucket settings; ``bucket`` names the shared store
        backend_name: Name identifier for this backend ("mem")

    Example:
        bucket = MemoryBucket(BucketSettings(backend="mem", bucket="scratch"))
        await bucket.startup()
        async with bucket.create("a.txt") as w:
            await w.write(b"hello")
    """

    def __init__(self, settings: BucketSettings, *, store: MemoryStore | None = None) -> None:
        self.settings = settings
        self.store = store if store is not None else get_store(settings.bucket)
        self._namespace = Namespace(settings.prefix)
        self._ready = False

    @property
    def backend_name(self) -> str:
        return BucketBackendType.MEMORY.value

    @property
    def prefix(self) -> str:
        return self._namespace.prefix

    @property
    def is_ready(self) -> bool:
        return self._ready

    def __repr__(self) -> str:
        return f"MemoryBucket(bucket={self.settings.bucket!r}, prefix={self.prefix!r})"

    async def startup(self) -> None:
        if self._ready:
            return
        self._ready = True
        logger.info(
            "Memory bucket ready",
            extra={"bucket": self.settings.bucket, "prefix": self.prefix},
        )

    async def close(self) -> None:
        self._ready = False

    async def __aenter__(self) -> MemoryBucket:
        await self.startup()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()

    def glob(self, pattern: str, *, timeout: float | None = None) -> ObjectIterator:
        return MemoryObjectIterator(
            self.store,
            compile_pattern(pattern),
            self._namespace,
            backend=self.backend_name,
            page_size=self.settings.list_page_size,
            timeout=timeout,
        )

    def _lookup(self, key: str, operation: str) -> StoredObject:
        obj = self.store.get(key)
        if obj is None:
            raise StorageFileNotFoundError(
                f"Object not found: {key}",
                metadata={"key": key, "operation": operation},
            )
        return obj

    async def head(self, name: str, *, timeout: float | None = None) -> MetaInfo:
        key = self._namespace.with_prefix(name)
        async with track_operation("head", backend=self.backend_name, key=key, timeout=timeout):
            obj = self._lookup(key, "head")
        return MetaInfo(
            name=name,
            size=len(obj.data),
            mod_time=obj.mod_time,
            content_type=obj.content_type,
            metadata=obj.metadata,
        )

    async def open(self, name: str, *, timeout: float | None = None) -> ObjectReader:
        key = self._namespace.with_prefix(name)
        async with track_operation("open", backend=self.backend_name, key=key, timeout=timeout):
            obj = self._lookup(key, "open")
        return ObjectReader.from_file(BytesIO(obj.data), len(obj.data), key=key, offload=False)

    def create(self, name: str, options: WriteOptions | None = None) -> StagedWriter:
        key = self._namespace.with_prefix(name)
        return StagedWriter(
            name,
            key,
            partial(self._publish, key),
            backend=self.backend_name,
            options=options,
            staging_dir=self.settings.staging_dir,
        )

    async def _publish(
        self,
        key: str,
        reader: BinaryIO,
        size: int,
        options: WriteOptions,
        deadline: float | None,
    ) -> None:
        # The store is updated on the event loop, so a cancelled commit never reaches it
        data = await asyncio.to_thread(reader.read)
        self.store.put(
            key,
            StoredObject(
                data=data,
                mod_time=datetime.now(UTC),
                content_type=options.content_type,
                metadata=dict(options.metadata),
            ),
        )

    async def remove(self, name: str, *, timeout: float | None = None) -> None:
        key = self._namespace.with_prefix(name)
        async with track_operation("remove", backend=self.backend_name, key=key, timeout=timeout):
            self.store.delete(key)

    async def copy(self, src: str, dst: str, *, timeout: float | None = None) -> None:
        src_key = self._namespace.with_prefix(src)
        dst_key = self._namespace.with_prefix(dst)
        async with track_operation(
            "copy", backend=self.backend_name, key=src_key, timeout=timeout
        ) as ctx:
            obj = self._lookup(src_key, "copy")
            self.store.put(dst_key, replace(obj, mod_time=datetime.now(UTC), metadata=dict(obj.metadata)))
            ctx["size_bytes"] = len(obj.data)
