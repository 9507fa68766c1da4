"""Pydantic Settings v2 configuration for buckets.

Import settings via the cached loader:
    from bucketfs.core.settings import get_bucket_settings

Configuration precedence (highest to lowest):
    1. init kwargs (URLs, testing/overrides)
    2. Environment variables (BUCKETFS_*)
    3. .env file (development only)
"""

from __future__ import annotations

from functools import lru_cache

from .bucket import BucketBackendType, BucketSettings


@lru_cache(maxsize=1)
def get_bucket_settings() -> BucketSettings:
    """Get cached bucket settings.

    Returns:
        Validated and frozen BucketSettings instance.
    """
    return BucketSettings()


__all__ = [
    "BucketBackendType",
    "BucketSettings",
    "get_bucket_settings",
]
