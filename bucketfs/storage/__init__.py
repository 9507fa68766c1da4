"""Uniform access to object buckets.

This package provides:
- A single Bucket protocol over local filesystem, S3, GCS and in-memory backends
- Namespace prefix scoping that no relative name can escape
- Lazy, paginated glob iteration
- Staged writers that publish atomically on commit
- A shared error taxonomy for every backend
- Prometheus metrics for every backend call

Quick Start:
    from bucketfs.storage import connect

    bucket = await connect("mem://scratch/tenant-a")

    async with bucket.create("reports/2024.csv") as writer:
        await writer.write(b"id,total\\n1,42\\n")

    async for info in bucket.glob("reports/*.csv"):
        print(info.name, info.size)

    await bucket.close()
"""

from __future__ import annotations

# Core settings
from bucketfs.core.settings import BucketBackendType, BucketSettings

# Exceptions
from .exceptions import (
    StorageBackendError,
    StorageCanceledError,
    StorageError,
    StorageFileNotFoundError,
    StorageNotConfiguredError,
    StorageValidationError,
    StorageWriterFinalizedError,
)
from .path import Namespace
from .pattern import GlobPattern, compile_pattern

# Backends
from .backends import Bucket, MetaInfo, WriteOptions, create_bucket
from .iterator import ListedObject, ObjectIterator
from .reader import ObjectReader
from .writer import StagedWriter, WriterState
from .registry import (
    DuplicateSchemeError,
    connect,
    register,
    registered_schemes,
    resolve,
)

__all__ = [
    "Bucket",
    "BucketBackendType",
    "BucketSettings",
    "DuplicateSchemeError",
    "GlobPattern",
    "ListedObject",
    "MetaInfo",
    "Namespace",
    "ObjectIterator",
    "ObjectReader",
    "StagedWriter",
    "StorageBackendError",
    "StorageCanceledError",
    "StorageError",
    "StorageFileNotFoundError",
    "StorageNotConfiguredError",
    "StorageValidationError",
    "StorageWriterFinalizedError",
    "WriteOptions",
    "WriterState",
    "compile_pattern",
    "connect",
    "create_bucket",
    "register",
    "registered_schemes",
    "resolve",
]
