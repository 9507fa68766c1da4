"""Bucket operation boundary with deadlines, error normalization and telemetry.

Every adapter wraps each backend call in :func:`track_operation`, which:
- Applies the per-call deadline (``asyncio.timeout``)
- Normalizes native errors into the shared taxonomy
- Opens an OpenTelemetry span and records Prometheus metrics
- Logs failures with structured context
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
import logging
import time
from typing import TYPE_CHECKING, Any

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode

from . import metrics
from .exceptions import (
    ErrorMapper,
    StorageBackendError,
    map_generic_error,
    normalize_error,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

logger = logging.getLogger(__name__)

_tracer = trace.get_tracer(__name__)

# Floor for a per-request timeout handed to a blocking SDK call
MIN_CALL_TIMEOUT = 0.001


def time_left(deadline: float | None, default: float) -> float:
    """Seconds until ``deadline`` (event loop time), capped at ``default``.

    Blocking SDK calls run in worker threads that ``asyncio.timeout`` cannot
    interrupt, so they receive this value as their own request timeout.
    """
    if deadline is None:
        return default
    remaining = deadline - asyncio.get_running_loop().time()
    return max(min(remaining, default), MIN_CALL_TIMEOUT)


@asynccontextmanager
async def track_operation(
    operation: str,
    *,
    backend: str,
    key: str | None = None,
    timeout: float | None = None,
    mapper: ErrorMapper = map_generic_error,
) -> AsyncIterator[dict[str, Any]]:
    """Run one backend call inside the operation boundary.

    The yielded context dict can be updated by the caller; a ``size_bytes``
    entry is recorded as published bytes on success. It is pre-filled with
    ``deadline``, the absolute event loop time the call must finish by (or
    ``None``), for use with :func:`time_left`.

    Args:
        operation: Operation name (head, open, commit, copy, remove, list)
        backend: Backend name used as metric label
        key: Backend key being operated on
        timeout: Deadline in seconds; ``None`` waits indefinitely
        mapper: Backend-specific error mapper

    Yields:
        A context dictionary for result attributes

    Raises:
        StorageError: The normalized error when the body fails.
        asyncio.CancelledError: Task cancellation is always propagated as-is.

    Example:
        async with track_operation("head", backend="s3", key=key, mapper=map_s3_error):
            response = await client.head_object(Bucket=bucket, Key=key)
    """
    start_time = time.perf_counter()
    context: dict[str, Any] = {}
    span_attributes: dict[str, Any] = {
        "bucketfs.backend": backend,
        "bucketfs.operation": operation,
    }
    if key:
        span_attributes["bucketfs.key"] = key
    if timeout is not None:
        span_attributes["bucketfs.timeout_seconds"] = timeout

    in_progress = metrics.bucket_operations_in_progress.labels(backend=backend)
    in_progress.inc()

    with _tracer.start_as_current_span(
        f"bucketfs.{operation}",
        attributes=span_attributes,
        record_exception=False,
        set_status_on_exception=False,
    ) as span:
        try:
            async with asyncio.timeout(timeout) as deadline:
                context["deadline"] = deadline.when()
                yield context

        except asyncio.CancelledError as e:
            metrics.record_operation_error(
                backend=backend,
                operation=operation,
                error_type="CancelledError",
                duration_seconds=time.perf_counter() - start_time,
            )
            span.record_exception(e)
            span.set_status(Status(StatusCode.ERROR, "cancelled"))
            raise

        except Exception as e:
            error = normalize_error(e, operation, key, mapper)
            metrics.record_operation_error(
                backend=backend,
                operation=operation,
                error_type=type(error).__name__,
                duration_seconds=time.perf_counter() - start_time,
            )
            span.record_exception(error)
            span.set_status(Status(StatusCode.ERROR, str(error)))
            log_extra = {
                "backend": backend,
                "operation": operation,
                "key": key,
                "error": str(e),
            }
            if isinstance(error, StorageBackendError):
                logger.exception("Bucket operation failed", extra=log_extra)
            else:
                logger.debug("Bucket operation failed", extra=log_extra)

            if error is e:
                raise
            raise error from e

        else:
            duration = time.perf_counter() - start_time
            size_bytes = context.get("size_bytes")
            if size_bytes is not None:
                span.set_attribute("bucketfs.size_bytes", size_bytes)
            span.set_status(Status(StatusCode.OK))
            metrics.record_operation_success(
                backend=backend,
                operation=operation,
                duration_seconds=duration,
                size_bytes=size_bytes,
            )
            logger.debug(
                "Bucket operation completed",
                extra={
                    "backend": backend,
                    "operation": operation,
                    "key": key,
                    "duration_seconds": round(duration, 4),
                },
            )

        finally:
            in_progress.dec()
