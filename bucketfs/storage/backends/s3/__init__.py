"""S3-compatible bucket backend.

Supports AWS S3, MinIO, LocalStack, and other S3-compatible services.
"""

from .backend import S3Bucket, map_s3_error

__all__ = ["S3Bucket", "map_s3_error"]
