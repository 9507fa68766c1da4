"""bucketfs: one async interface over local, S3, GCS and in-memory object buckets."""

__version__ = "0.1.0"
