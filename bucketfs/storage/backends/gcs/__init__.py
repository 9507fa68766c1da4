"""Google Cloud Storage bucket backend."""

from .backend import GCSBucket

__all__ = ["GCSBucket"]
