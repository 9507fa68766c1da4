"""Bucket metrics for Prometheus monitoring.

This module provides metrics for monitoring bucket operations including:
- Operation counters and timing per backend (head, open, commit, copy, remove, list)
- Error tracking by normalized error type
- Bytes published by commits and copies
- In-flight operation gauge

All metrics are registered with the library's own ``REGISTRY`` so that
embedding applications decide whether and how to expose them.

Usage:
    from prometheus_client import generate_latest

    from bucketfs.storage.metrics import REGISTRY

    payload = generate_latest(REGISTRY)
"""

from __future__ import annotations

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram

REGISTRY = CollectorRegistry(auto_describe=True)

# Covers latency from 5ms to 30s for network operations
BUCKET_LATENCY_BUCKETS = (0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0)

bucket_operations_total = Counter(
    "bucketfs_operations_total",
    "Total bucket operations",
    ["backend", "operation", "status"],  # status: success/error
    registry=REGISTRY,
)

bucket_operation_duration_seconds = Histogram(
    "bucketfs_operation_duration_seconds",
    "Bucket operation duration in seconds",
    ["backend", "operation"],
    buckets=BUCKET_LATENCY_BUCKETS,
    registry=REGISTRY,
)

bucket_errors_total = Counter(
    "bucketfs_errors_total",
    "Bucket operation errors by type",
    ["backend", "operation", "error_type"],  # error_type: StorageFileNotFoundError, ...
    registry=REGISTRY,
)

bucket_bytes_total = Counter(
    "bucketfs_bytes_total",
    "Bytes published by commit and copy operations",
    ["backend", "operation"],
    registry=REGISTRY,
)

bucket_operations_in_progress = Gauge(
    "bucketfs_operations_in_progress",
    "Number of bucket operations currently running",
    ["backend"],
    registry=REGISTRY,
)


def record_operation_success(
    backend: str,
    operation: str,
    duration_seconds: float,
    size_bytes: int | None = None,
) -> None:
    """Record a successful bucket operation.

    Args:
        backend: Backend name (e.g., 's3', 'file')
        operation: The operation type (e.g., 'commit', 'head', 'remove')
        duration_seconds: Operation duration in seconds
        size_bytes: Optional number of bytes published

    Example:
        >>> record_operation_success("s3", "commit", 1.5, size_bytes=1048576)
        >>> record_operation_success("file", "remove", 0.002)
    """
    bucket_operations_total.labels(backend=backend, operation=operation, status="success").inc()
    bucket_operation_duration_seconds.labels(backend=backend, operation=operation).observe(
        duration_seconds
    )
    if size_bytes:
        bucket_bytes_total.labels(backend=backend, operation=operation).inc(size_bytes)


def record_operation_error(
    backend: str,
    operation: str,
    error_type: str,
    duration_seconds: float,
) -> None:
    """Record a failed bucket operation.

    Args:
        backend: Backend name (e.g., 's3', 'gs')
        operation: The operation type (e.g., 'open', 'list')
        error_type: The normalized error class name (e.g., 'StorageCanceledError')
        duration_seconds: Operation duration in seconds before failure

    Example:
        >>> record_operation_error("s3", "head", "StorageFileNotFoundError", 0.05)
    """
    bucket_operations_total.labels(backend=backend, operation=operation, status="error").inc()
    bucket_operation_duration_seconds.labels(backend=backend, operation=operation).observe(
        duration_seconds
    )
    bucket_errors_total.labels(backend=backend, operation=operation, error_type=error_type).inc()
