"""Lazy, paginated, pattern-filtered object iteration.

Each adapter supplies one ``_fetch_page`` primitive; paging, prefix
stripping, matching, error stickiness and close semantics live here and are
shared by every backend.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
import logging
from typing import TYPE_CHECKING, Any

from .backends.protocol import MetaInfo
from .exceptions import ErrorMapper, StorageError, map_generic_error
from .instrumentation import track_operation

if TYPE_CHECKING:
    from types import TracebackType

    from .path import Namespace
    from .pattern import GlobPattern

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 1000


@dataclass(frozen=True, slots=True)
class ListedObject:
    """One raw entry of a backend listing page.

    Attributes:
        key: Full backend key, namespace prefix included
        size: Object size in bytes
        mod_time: Last modification timestamp
        content_type: MIME type when the listing reports it
        metadata: Custom metadata when the listing reports it
    """

    key: str
    size: int
    mod_time: datetime
    content_type: str = ""
    metadata: dict[str, str] = field(default_factory=dict)

    def to_meta(self, name: str) -> MetaInfo:
        return MetaInfo(
            name=name,
            size=self.size,
            mod_time=self.mod_time,
            content_type=self.content_type,
            metadata=self.metadata,
        )


class ObjectIterator(ABC):
    """Async iterator over the objects of a bucket matching a glob pattern.

    Pages are fetched one at a time and only matching entries are buffered.
    The iterator is finite and not restartable. The first fetch error is
    recorded in :attr:`error`, raised once, and afterwards iteration simply
    stops without retrying.

    Example:
        ```python
        async with bucket.glob("a/**") as objects:
            async for info in objects:
                print(info.name)
        ```
    """

    def __init__(
        self,
        pattern: GlobPattern,
        namespace: Namespace,
        *,
        backend: str,
        page_size: int = DEFAULT_PAGE_SIZE,
        timeout: float | None = None,
        mapper: ErrorMapper = map_generic_error,
    ) -> None:
        self.pattern = pattern
        self.namespace = namespace
        self.backend = backend
        self.page_size = page_size
        self.error: StorageError | None = None
        self._timeout = timeout
        self._mapper = mapper
        self._buffer: deque[MetaInfo] = deque()
        self._token: Any = None
        self._deadline: float | None = None
        self._last_page = False
        self._closed = False
        self._error_raised = False

    @property
    def list_prefix(self) -> str:
        """Backend key prefix every listing request is narrowed to."""
        return self.namespace.prefix + self.pattern.static_prefix

    @property
    def closed(self) -> bool:
        return self._closed

    @abstractmethod
    async def _fetch_page(self, token: Any) -> tuple[list[ListedObject], Any]:
        """Fetch one listing page.

        Args:
            token: ``None`` for the first page, otherwise the token returned
                by the previous call.

        Returns:
            The raw entries of the page and the continuation token, or
            ``None`` when this was the last page.

        Adapters whose calls block a worker thread bound each request with
        ``time_left(self._deadline, ...)``, since the page deadline cannot
        interrupt the thread.
        """

    def __aiter__(self) -> ObjectIterator:
        return self

    async def __anext__(self) -> MetaInfo:
        while True:
            if self._closed:
                raise StopAsyncIteration
            if self.error is not None:
                if self._error_raised:
                    raise StopAsyncIteration
                self._error_raised = True
                raise self.error
            if self._buffer:
                return self._buffer.popleft()
            if self._last_page:
                self._closed = True
                raise StopAsyncIteration
            await self._load_next_page()

    async def _load_next_page(self) -> None:
        try:
            async with track_operation(
                "list",
                backend=self.backend,
                key=self.list_prefix,
                timeout=self._timeout,
                mapper=self._mapper,
            ) as ctx:
                self._deadline = ctx["deadline"]
                entries, next_token = await self._fetch_page(self._token)
                ctx["count"] = len(entries)
        except StorageError as e:
            if not self._closed:
                self.error = e
            return

        if self._closed:
            # Closed while the page was in flight
            return

        self._token = next_token
        self._last_page = next_token is None
        for entry in entries:
            if not self.namespace.contains(entry.key):
                continue
            name = self.namespace.strip_prefix(entry.key)
            if name and self.pattern.match(name):
                self._buffer.append(entry.to_meta(name))

        logger.debug(
            "Fetched listing page",
            extra={
                "backend": self.backend,
                "prefix": self.list_prefix,
                "count": len(entries),
                "matched": len(self._buffer),
                "has_more": not self._last_page,
            },
        )

    def close(self) -> None:
        """Stop iteration. Safe to call repeatedly and while a fetch is pending."""
        self._closed = True
        self._buffer.clear()

    async def aclose(self) -> None:
        self.close()

    async def __aenter__(self) -> ObjectIterator:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.close()
