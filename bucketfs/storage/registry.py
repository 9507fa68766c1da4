"""Process-wide registry mapping URL schemes to bucket resolvers.

Registration happens once per scheme, normally at import time. The registry
is append-only: there is no removal API, and registering a scheme twice is a
programming error that raises :class:`DuplicateSchemeError`.

Example:
    ```python
    from bucketfs.storage.registry import connect

    bucket = await connect("s3://my-bucket/tenant-a?region=eu-west-1")
    try:
        info = await bucket.head("report.csv")
    finally:
        await bucket.close()
    ```
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
import logging
import threading
from typing import TYPE_CHECKING
from urllib.parse import SplitResult, urlsplit

from .exceptions import StorageNotConfiguredError

if TYPE_CHECKING:
    from .backends.protocol import Bucket

logger = logging.getLogger(__name__)

Resolver = Callable[[SplitResult], Awaitable["Bucket"]]

_registry: dict[str, Resolver] = {}
_registry_lock = threading.Lock()


class DuplicateSchemeError(RuntimeError):
    """Raised when a URL scheme is registered more than once."""


def register(scheme: str, resolver: Resolver) -> None:
    """Register a resolver for a URL scheme.

    Args:
        scheme: URL scheme, e.g. ``"s3"``
        resolver: Coroutine function building a started bucket from a parsed URL

    Raises:
        DuplicateSchemeError: If the scheme is already registered
    """
    scheme = scheme.lower()
    with _registry_lock:
        if scheme in _registry:
            msg = f"bucketfs: scheme {scheme!r} is already registered"
            raise DuplicateSchemeError(msg)
        _registry[scheme] = resolver
    logger.debug("Registered bucket scheme", extra={"scheme": scheme})


def registered_schemes() -> list[str]:
    """Return the registered schemes in sorted order."""
    with _registry_lock:
        return sorted(_registry)


async def resolve(url: SplitResult) -> Bucket:
    """Build a bucket from a parsed URL.

    Raises:
        StorageNotConfiguredError: If no resolver is registered for the scheme
    """
    # Importing the factory registers the built-in schemes
    from .backends import factory  # noqa: F401

    with _registry_lock:
        resolver = _registry.get(url.scheme.lower())
    if resolver is None:
        raise StorageNotConfiguredError(
            f"Unknown bucket URL scheme {url.scheme!r}",
            metadata={"scheme": url.scheme, "registered": registered_schemes()},
        )
    return await resolver(url)


async def connect(url: str) -> Bucket:
    """Build a bucket from a URL string.

    Example:
        bucket = await connect("file:///var/data?prefix=exports")
    """
    return await resolve(urlsplit(url))
