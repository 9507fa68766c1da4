"""Local filesystem bucket.

The configured bucket is a root directory and object keys are paths
beneath it. Commits publish atomically: content is written to a hidden
sibling file which then replaces the destination with ``os.replace``, so an
existing object is overwritten in one step and readers never observe a
partial file.
"""

from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass
from datetime import UTC, datetime
from functools import partial
import logging
import mimetypes
import os
from pathlib import Path
import re
import shutil
import stat
import tempfile
import time
from typing import TYPE_CHECKING, Any, BinaryIO

from bucketfs.core.settings import BucketBackendType, BucketSettings
from bucketfs.storage.exceptions import (
    StorageFileNotFoundError,
    StorageValidationError,
    map_os_error,
)
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

# Publish leaves these behind only while a commit is in flight
_TEMP_PREFIX = ".bucketfs-"
_TEMP_SUFFIX = ".tmp"
# mkstemp inserts eight characters from [a-z0-9_] between prefix and suffix
_TEMP_NAME = re.compile(re.escape(_TEMP_PREFIX) + r"[a-z0-9_]{8}" + re.escape(_TEMP_SUFFIX))

_COPY_BUFFER_SIZE = 1024 * 1024


def _is_temp_name(name: str) -> bool:
    return _TEMP_NAME.fullmatch(name) is not None


def _guess_content_type(path: Path) -> str:
    return mimetypes.guess_type(path.name)[0] or ""


def _atomic_write(target: Path, source: BinaryIO, deadline: float | None = None) -> int:
    """Stream ``source`` into ``target`` via a sibling temp file and ``os.replace``.

    ``deadline`` is a monotonic clock reading (the event loop's clock). When
    it has passed by the time the content is staged, the temp file is dropped
    and the target is left untouched.
    """
    target.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=_TEMP_PREFIX, suffix=_TEMP_SUFFIX, dir=target.parent)
    try:
        with os.fdopen(fd, "wb") as tmp:
            shutil.copyfileobj(source, tmp, _COPY_BUFFER_SIZE)
            size = tmp.tell()
        if deadline is not None and time.monotonic() >= deadline:
            raise TimeoutError(f"Deadline passed before publishing {target.name}")
        os.replace(tmp_name, target)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise
    return size


@dataclass(frozen=True, slots=True)
class _ScanCursor:
    """Position of a depth-first walk between two listing pages.

    Attributes:
        pending: Directories not opened yet; the last one is visited next
        directory: Directory currently being read, if any
        names: Its entries not visited yet, in sorted order
        subdirs: Its subdirectories found so far
    """

    pending: tuple[Path, ...]
    directory: Path | None = None
    names: tuple[str, ...] = ()
    subdirs: tuple[Path, ...] = ()


class LocalObjectIterator(ObjectIterator):
    """Walks the tree depth first, at most ``page_size`` files per page.

    The continuation token is a :class:`_ScanCursor`. Only names are held for
    the directory being read; files are stat'ed as they are paged out.
    """

    def __init__(self, root: Path, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._root = root

    async def _fetch_page(
        self, token: _ScanCursor | None
    ) -> tuple[list[ListedObject], _ScanCursor | None]:
        return await asyncio.to_thread(self._scan, token)

    def _scan(self, token: _ScanCursor | None) -> tuple[list[ListedObject], _ScanCursor | None]:
        if token is None:
            # list_prefix is a directory path ending in "/" or empty
            start = self._root / self.list_prefix if self.list_prefix else self._root
            token = _ScanCursor(pending=(start,))

        pending = list(token.pending)
        directory = token.directory
        names = deque(token.names)
        subdirs = list(token.subdirs)
        entries: list[ListedObject] = []

        while len(entries) < self.page_size:
            if not names:
                pending.extend(sorted(subdirs, reverse=True))
                subdirs = []
                if not pending:
                    directory = None
                    break
                directory = pending.pop()
                names.extend(_list_names(directory))
                continue

            name = names.popleft()
            if _is_temp_name(name):
                continue
            path = directory / name
            try:
                st = path.lstat()
                if stat.S_ISDIR(st.st_mode):
                    subdirs.append(path)
                    continue
                if stat.S_ISLNK(st.st_mode):
                    st = path.stat()
            except (FileNotFoundError, NotADirectoryError):
                # Removed since the directory was read, or a dangling link
                continue
            if stat.S_ISREG(st.st_mode):
                entries.append(
                    ListedObject(
                        key=path.relative_to(self._root).as_posix(),
                        size=st.st_size,
                        mod_time=datetime.fromtimestamp(st.st_mtime, tz=UTC),
                        content_type=_guess_content_type(path),
                    )
                )

        if not names:
            pending.extend(sorted(subdirs, reverse=True))
            subdirs = []
            directory = None
        if directory is None and not pending:
            return entries, None
        return entries, _ScanCursor(tuple(pending), directory, tuple(names), tuple(subdirs))


def _list_names(directory: Path) -> list[str]:
    try:
        return sorted(os.listdir(directory))
    except (FileNotFoundError, NotADirectoryError):
        # Directory vanished or never existed: nothing to list there
        return []


class LocalBucket:
    """Local filesystem bucket.

    Attributes:
        settings: Bucket settings; ``bucket`` is the root directory
        root: Absolute root directory
        backend_name: Name identifier for this backend ("file")

    Example:
        bucket = LocalBucket(BucketSettings(backend="file", bucket="/var/data"))
        await bucket.startup()
        info = await bucket.head("reports/2024.csv")
    """

    def __init__(self, settings: BucketSettings) -> None:
        self.settings = settings
        self.root = Path(settings.bucket).expanduser().absolute()
        self._namespace = Namespace(settings.prefix)
        self._ready = False

    @property
    def backend_name(self) -> str:
        return BucketBackendType.FILE.value

    @property
    def prefix(self) -> str:
        return self._namespace.prefix

    @property
    def is_ready(self) -> bool:
        return self._ready

    def __repr__(self) -> str:
        return f"LocalBucket(root={str(self.root)!r}, prefix={self.prefix!r})"

    # ========================================================================
    # Lifecycle Management
    # ========================================================================

    async def startup(self) -> None:
        """Ensure the root directory exists."""
        if self._ready:
            return
        try:
            await asyncio.to_thread(self.root.mkdir, parents=True, exist_ok=True)
        except OSError as e:
            raise map_os_error(e, "startup", str(self.root)) from e
        self._ready = True
        logger.info(
            "Local bucket initialized",
            extra={"root": str(self.root), "prefix": self.prefix},
        )

    async def close(self) -> None:
        self._ready = False

    async def __aenter__(self) -> LocalBucket:
        await self.startup()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()

    def _resolve(self, name: str) -> tuple[str, Path]:
        key = self._namespace.with_prefix(name)
        return key, self.root / key

    # ========================================================================
    # Object Operations
    # ========================================================================

    def glob(self, pattern: str, *, timeout: float | None = None) -> ObjectIterator:
        return LocalObjectIterator(
            self.root,
            compile_pattern(pattern),
            self._namespace,
            backend=self.backend_name,
            page_size=self.settings.list_page_size,
            timeout=timeout,
            mapper=map_os_error,
        )

    async def head(self, name: str, *, timeout: float | None = None) -> MetaInfo:
        key, path = self._resolve(name)
        async with track_operation(
            "head", backend=self.backend_name, key=key, timeout=timeout, mapper=map_os_error
        ):
            st = await asyncio.to_thread(path.stat)
            if not stat.S_ISREG(st.st_mode):
                raise StorageFileNotFoundError(
                    f"Object not found: {key}",
                    metadata={"key": key, "operation": "head"},
                )
        return MetaInfo(
            name=name,
            size=st.st_size,
            mod_time=datetime.fromtimestamp(st.st_mtime, tz=UTC),
            content_type=_guess_content_type(path),
        )

    async def open(self, name: str, *, timeout: float | None = None) -> ObjectReader:
        key, path = self._resolve(name)
        async with track_operation(
            "open", backend=self.backend_name, key=key, timeout=timeout, mapper=map_os_error
        ):
            fileobj = await asyncio.to_thread(path.open, "rb")
            try:
                size = os.fstat(fileobj.fileno()).st_size
            except OSError:
                fileobj.close()
                raise
        return ObjectReader.from_file(fileobj, size, key=key, mapper=map_os_error)

    def create(self, name: str, options: WriteOptions | None = None) -> StagedWriter:
        key, path = self._resolve(name)
        if _is_temp_name(path.name):
            raise StorageValidationError(
                f"Object name is reserved for in-flight publishes: {name}",
                metadata={"name": name},
            )
        return StagedWriter(
            name,
            key,
            partial(self._publish, path),
            backend=self.backend_name,
            options=options,
            staging_dir=self.settings.staging_dir,
            mapper=map_os_error,
        )

    async def _publish(
        self,
        path: Path,
        reader: BinaryIO,
        size: int,
        options: WriteOptions,
        deadline: float | None,
    ) -> None:
        # Content type and metadata have no place on a plain file
        await asyncio.to_thread(_atomic_write, path, reader, deadline)

    async def remove(self, name: str, *, timeout: float | None = None) -> None:
        key, path = self._resolve(name)
        async with track_operation(
            "remove", backend=self.backend_name, key=key, timeout=timeout, mapper=map_os_error
        ):
            try:
                await asyncio.to_thread(path.unlink)
            except (FileNotFoundError, NotADirectoryError, IsADirectoryError):
                logger.debug("Object already absent", extra={"key": key})

    async def copy(self, src: str, dst: str, *, timeout: float | None = None) -> None:
        src_key, src_path = self._resolve(src)
        _, dst_path = self._resolve(dst)
        async with track_operation(
            "copy", backend=self.backend_name, key=src_key, timeout=timeout, mapper=map_os_error
        ) as ctx:
            ctx["size_bytes"] = await asyncio.to_thread(
                self._copy_file, src_path, dst_path, ctx["deadline"]
            )

    @staticmethod
    def _copy_file(src_path: Path, dst_path: Path, deadline: float | None) -> int:
        with src_path.open("rb") as source:
            return _atomic_write(dst_path, source, deadline)
