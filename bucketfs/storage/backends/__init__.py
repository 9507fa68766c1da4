"""Bucket backends package.

Provides protocol-based abstraction over multiple bucket backends.
"""

from bucketfs.core.settings import BucketBackendType

from .factory import create_bucket
from .protocol import Bucket, MetaInfo, WriteOptions

__all__ = [
    "Bucket",
    "BucketBackendType",
    "MetaInfo",
    "WriteOptions",
    "create_bucket",
]
