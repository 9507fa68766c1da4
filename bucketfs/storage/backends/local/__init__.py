"""Local filesystem bucket backend.

The bucket name is the root directory; object keys map to paths beneath it.
"""

from .backend import LocalBucket

__all__ = ["LocalBucket"]
