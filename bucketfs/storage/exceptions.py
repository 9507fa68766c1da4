"""Bucket error taxonomy and backend error normalization.

Every adapter funnels native failures through one of the ``map_*_error``
functions at its operation boundary so callers only ever see:

- ``StorageFileNotFoundError``: the object does not exist
- ``StorageCanceledError``: the operation hit its deadline or was canceled
  by the backend
- ``StorageValidationError``: malformed glob pattern or object name
- ``StorageBackendError``: anything else, with the native error kept in
  ``original`` (and ``__cause__``) for inspection

Example:
    ```python
    from bucketfs.storage.exceptions import StorageFileNotFoundError

    try:
        info = await bucket.head("reports/2024.csv")
    except StorageFileNotFoundError:
        info = None
    ```
"""

from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from bucketfs.core.exceptions import BucketFSException

if TYPE_CHECKING:
    from botocore.exceptions import ClientError

ErrorMapper = Callable[[Exception, str, "str | None"], "StorageError"]

_BOTO_NOT_FOUND_CODES = frozenset({"NoSuchKey", "NotFound", "404"})
_BOTO_CANCELED_CODES = frozenset({"RequestCanceled"})


class StorageError(BucketFSException):
    """Base exception for all bucket errors.

    Attributes:
        code: Error code identifier for programmatic error handling.
        message: Human-readable error message.
        status_code: HTTP-equivalent status code for the error.
        extra: Additional context (operation, key, backend codes).
    """

    def __init__(
        self,
        message: str,
        code: str,
        status_code: int = 500,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Initialize storage error.

        Args:
            message: Human-readable error message.
            code: Error code for programmatic handling.
            status_code: HTTP-equivalent status code (default: 500).
            metadata: Additional error context.
        """
        self.code = code
        self.message = message
        super().__init__(
            status_code=status_code,
            detail=message,
            type=code.lower().replace("_", "-"),
            extra=metadata or {},
        )


class StorageNotConfiguredError(StorageError):
    """Raised when a bucket cannot be built from the given settings or URL."""

    def __init__(
        self,
        message: str = "Bucket is not configured",
        metadata: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            message=message,
            code="STORAGE_NOT_CONFIGURED",
            status_code=503,
            metadata=metadata,
        )


class StorageFileNotFoundError(StorageError):
    """Raised when a requested object does not exist.

    Example:
        ```python
        raise StorageFileNotFoundError(
            f"Object not found: {name}",
            metadata={"key": key, "operation": "head"}
        )
        ```
    """

    def __init__(
        self,
        message: str,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            message=message,
            code="STORAGE_NOT_FOUND",
            status_code=404,
            metadata=metadata,
        )


class StorageCanceledError(StorageError):
    """Raised when an operation exceeded its deadline or was canceled by the backend.

    Task cancellation itself is never converted: ``asyncio.CancelledError``
    propagates unchanged.
    """

    def __init__(
        self,
        message: str,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            message=message,
            code="STORAGE_CANCELED",
            status_code=499,
            metadata=metadata,
        )


class StorageValidationError(StorageError):
    """Raised when a glob pattern or object name is rejected before any backend call.

    Example:
        ```python
        raise StorageValidationError(
            "Unterminated character class in pattern",
            metadata={"pattern": "a/[bc", "position": 2}
        )
        ```
    """

    def __init__(
        self,
        message: str,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            message=message,
            code="STORAGE_VALIDATION_ERROR",
            status_code=400,
            metadata=metadata,
        )


class StorageWriterFinalizedError(StorageError):
    """Raised on a second commit or discard, or a write after either."""

    def __init__(
        self,
        message: str = "Writer already finalized",
        metadata: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            message=message,
            code="STORAGE_WRITER_FINALIZED",
            status_code=409,
            metadata=metadata,
        )


class StorageBackendError(StorageError):
    """Opaque backend failure.

    The native exception is kept in ``original`` so callers can still inspect
    backend-specific detail.
    """

    def __init__(
        self,
        message: str,
        original: BaseException | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        self.original = original
        super().__init__(
            message=message,
            code="STORAGE_BACKEND_ERROR",
            status_code=500,
            metadata=metadata,
        )


def _base_metadata(operation: str, key: str | None) -> dict[str, Any]:
    metadata: dict[str, Any] = {"operation": operation}
    if key:
        metadata["key"] = key
    return metadata


def map_boto_error(
    error: ClientError,
    operation: str,
    key: str | None = None,
) -> StorageError:
    """Map a botocore ClientError to the bucket error taxonomy.

    Args:
        error: The botocore ClientError to map.
        operation: The bucket operation being performed (e.g. "head", "commit").
        key: Optional backend key being operated on.

    Returns:
        StorageError: NotFound, Canceled, or an opaque StorageBackendError.

    Error Code Mappings:
        - HTTP 404, NoSuchKey, NotFound -> StorageFileNotFoundError
        - RequestCanceled -> StorageCanceledError
        - Others -> StorageBackendError
    """
    response = getattr(error, "response", None) or {}
    error_info = response.get("Error", {})
    error_code = str(error_info.get("Code", "Unknown"))
    error_message = error_info.get("Message", str(error))
    http_status = response.get("ResponseMetadata", {}).get("HTTPStatusCode")

    metadata = _base_metadata(operation, key)
    metadata.update(
        {
            "aws_error_code": error_code,
            "aws_error_message": error_message,
            "request_id": response.get("ResponseMetadata", {}).get("RequestId"),
        }
    )

    if http_status == 404 or error_code in _BOTO_NOT_FOUND_CODES:
        return StorageFileNotFoundError(
            message=f"{operation.capitalize()} failed: object not found",
            metadata=metadata,
        )

    if error_code in _BOTO_CANCELED_CODES:
        return StorageCanceledError(
            message=f"{operation.capitalize()} canceled: {error_message}",
            metadata=metadata,
        )

    return StorageBackendError(
        message=f"{operation.capitalize()} failed: {error_message}",
        original=error,
        metadata=metadata,
    )


def map_gcs_error(
    error: Exception,
    operation: str,
    key: str | None = None,
) -> StorageError:
    """Map a google-api-core exception to the bucket error taxonomy.

    Error Mappings:
        - NotFound -> StorageFileNotFoundError
        - DeadlineExceeded, Cancelled -> StorageCanceledError
        - Others -> StorageBackendError
    """
    from google.api_core import exceptions as gexc

    metadata = _base_metadata(operation, key)

    if isinstance(error, gexc.NotFound):
        return StorageFileNotFoundError(
            message=f"{operation.capitalize()} failed: object not found",
            metadata=metadata,
        )

    if isinstance(error, gexc.DeadlineExceeded | gexc.Cancelled):
        return StorageCanceledError(
            message=f"{operation.capitalize()} canceled: {error}",
            metadata=metadata,
        )

    if isinstance(error, gexc.GoogleAPICallError):
        metadata["gcs_status_code"] = error.code
    return StorageBackendError(
        message=f"{operation.capitalize()} failed: {error}",
        original=error,
        metadata=metadata,
    )


def map_os_error(
    error: Exception,
    operation: str,
    key: str | None = None,
) -> StorageError:
    """Map a filesystem error to the bucket error taxonomy.

    Error Mappings:
        - FileNotFoundError, NotADirectoryError, IsADirectoryError on lookups
          -> StorageFileNotFoundError
        - Others -> StorageBackendError
    """
    metadata = _base_metadata(operation, key)

    if isinstance(error, FileNotFoundError | NotADirectoryError | IsADirectoryError):
        return StorageFileNotFoundError(
            message=f"{operation.capitalize()} failed: object not found",
            metadata=metadata,
        )

    if isinstance(error, OSError) and error.errno is not None:
        metadata["errno"] = error.errno
    return StorageBackendError(
        message=f"{operation.capitalize()} failed: {error}",
        original=error,
        metadata=metadata,
    )


def map_generic_error(
    error: Exception,
    operation: str,
    key: str | None = None,
) -> StorageError:
    """Wrap an error that has no backend-specific meaning as opaque."""
    return StorageBackendError(
        message=f"{operation.capitalize()} failed: {error}",
        original=error,
        metadata=_base_metadata(operation, key),
    )


def normalize_error(
    error: Exception,
    operation: str,
    key: str | None = None,
    mapper: ErrorMapper = map_generic_error,
) -> StorageError:
    """Normalize any exception raised at an operation boundary.

    Taxonomy errors pass through untouched, deadline expiry becomes
    ``StorageCanceledError``, and everything else goes through the
    backend's mapper.

    Args:
        error: The exception raised by the backend call.
        operation: The bucket operation being performed.
        key: Optional backend key being operated on.
        mapper: Backend-specific mapping function.

    Returns:
        A StorageError from the shared taxonomy.
    """
    if isinstance(error, StorageError):
        return error
    if isinstance(error, TimeoutError):
        return StorageCanceledError(
            message=f"{operation.capitalize()} exceeded its deadline",
            metadata=_base_metadata(operation, key),
        )
    return mapper(error, operation, key)
