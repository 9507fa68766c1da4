"""Backend factory for creating buckets dynamically."""

from __future__ import annotations

from typing import TYPE_CHECKING

from pydantic import ValidationError

from bucketfs.core.settings import BucketBackendType, BucketSettings
from bucketfs.storage.exceptions import StorageNotConfiguredError
from bucketfs.storage.registry import register

if TYPE_CHECKING:
    from urllib.parse import SplitResult

    from .protocol import Bucket


async def create_bucket(settings: BucketSettings) -> Bucket:
    """Factory function to create and start the appropriate bucket.

    Args:
        settings: Bucket configuration settings

    Returns:
        Started bucket implementing the Bucket protocol

    Raises:
        StorageNotConfiguredError: If backend type unsupported or startup fails

    Example:
        settings = get_bucket_settings()
        bucket = await create_bucket(settings)
        info = await bucket.head("file.txt")
        await bucket.close()
    """
    backend_type = settings.backend

    match backend_type:
        case BucketBackendType.FILE:
            from .local.backend import LocalBucket

            bucket: Bucket = LocalBucket(settings)

        case BucketBackendType.S3:
            from .s3.backend import S3Bucket

            bucket = S3Bucket(settings)

        case BucketBackendType.GCS:
            from .gcs.backend import GCSBucket

            bucket = GCSBucket(settings)

        case BucketBackendType.MEMORY:
            from .memory.backend import MemoryBucket

            bucket = MemoryBucket(settings)

        case _:
            msg = (
                f"Unsupported bucket backend: {backend_type}. "
                f"Supported backends: {', '.join([t.value for t in BucketBackendType])}"
            )
            raise StorageNotConfiguredError(msg)

    await bucket.startup()
    return bucket


async def resolve_url(url: SplitResult) -> Bucket:
    """Resolver shared by the built-in schemes."""
    try:
        settings = BucketSettings.from_url(url)
    except ValidationError as e:
        raise StorageNotConfiguredError(
            f"Invalid bucket URL for scheme {url.scheme!r}: {e}",
            metadata={"scheme": url.scheme, "netloc": url.netloc},
        ) from e
    return await create_bucket(settings)


for _backend in BucketBackendType:
    register(_backend.value, resolve_url)
