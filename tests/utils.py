"""Test utilities and in-memory fakes for backend SDK clients.

The fakes implement just enough of the aioboto3 S3 client and the
google-cloud-storage client for the bucket adapters to run against them,
raising the real SDK exception types so error normalization is exercised.

Usage:
    from tests.utils import FakeS3Client, glob_names, write_object

    await write_object(bucket, "a/x.txt", b"hello")
    assert await glob_names(bucket, "a/*") == {"a/x.txt"}
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
import io
import time
from typing import TYPE_CHECKING, Any

from botocore.exceptions import ClientError
from google.api_core import exceptions as gexc

if TYPE_CHECKING:
    from bucketfs.storage.backends.protocol import Bucket, WriteOptions


# ============================================================================
# Helpers
# ============================================================================


async def write_object(
    bucket: Bucket,
    name: str,
    data: bytes,
    options: WriteOptions | None = None,
) -> None:
    """Create, write and commit one object."""
    writer = bucket.create(name, options)
    await writer.write(data)
    await writer.commit()


async def read_object(bucket: Bucket, name: str) -> bytes:
    async with await bucket.open(name) as reader:
        return await reader.read()


async def glob_names(bucket: Bucket, pattern: str) -> set[str]:
    """Collect the names a glob yields; listing order is not contractual."""
    async with bucket.glob(pattern) as objects:
        return {info.name async for info in objects}


def client_error(code: str, status: int, operation: str = "GetObject") -> ClientError:
    """Build a botocore ClientError the way the S3 client raises it."""
    return ClientError(
        {
            "Error": {"Code": code, "Message": f"{code} raised by fake"},
            "ResponseMetadata": {"HTTPStatusCode": status, "RequestId": "req-0001"},
        },
        operation,
    )


# ============================================================================
# S3
# ============================================================================


@dataclass
class FakeS3Object:
    body: bytes
    last_modified: datetime
    content_type: str = "binary/octet-stream"
    metadata: dict[str, str] = field(default_factory=dict)
    extra_args: dict[str, Any] = field(default_factory=dict)


class FakeS3Body:
    """Async streaming body; ``trailing`` bytes simulate a transport sending too much."""

    def __init__(self, data: bytes, trailing: bytes = b"") -> None:
        self._buffer = io.BytesIO(data + trailing)
        self.closed = False

    async def read(self, amt: int | None = None) -> bytes:
        return self._buffer.read(-1 if amt is None else amt)

    def close(self) -> None:
        self.closed = True


class FakeS3Client:
    """In-memory stand-in for an aioboto3 S3 client.

    Also acts as the client context manager returned by ``Session.client``.
    """

    def __init__(self) -> None:
        self.objects: dict[tuple[str, str], FakeS3Object] = {}
        self.calls: list[str] = []
        self.uploads = 0
        self.exited = False

    async def __aenter__(self) -> FakeS3Client:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        self.exited = True

    def _get(self, bucket: str, key: str, operation: str) -> FakeS3Object:
        obj = self.objects.get((bucket, key))
        if obj is None:
            code = "404" if operation == "HeadObject" else "NoSuchKey"
            raise client_error(code, 404, operation)
        return obj

    async def head_object(self, *, Bucket: str, Key: str) -> dict[str, Any]:  # noqa: N803
        self.calls.append("head_object")
        obj = self._get(Bucket, Key, "HeadObject")
        return {
            "ContentLength": len(obj.body),
            "LastModified": obj.last_modified,
            "ContentType": obj.content_type,
            "Metadata": dict(obj.metadata),
        }

    async def get_object(self, *, Bucket: str, Key: str) -> dict[str, Any]:  # noqa: N803
        self.calls.append("get_object")
        obj = self._get(Bucket, Key, "GetObject")
        return {
            "Body": FakeS3Body(obj.body),
            "ContentLength": len(obj.body),
            "LastModified": obj.last_modified,
            "ContentType": obj.content_type,
        }

    async def upload_fileobj(
        self,
        Fileobj: Any,  # noqa: N803
        Bucket: str,  # noqa: N803
        Key: str,  # noqa: N803
        ExtraArgs: dict[str, Any] | None = None,  # noqa: N803
    ) -> None:
        self.calls.append("upload_fileobj")
        self.uploads += 1
        extra = dict(ExtraArgs or {})
        self.objects[(Bucket, Key)] = FakeS3Object(
            body=Fileobj.read(),
            last_modified=datetime.now(UTC),
            content_type=extra.get("ContentType", "binary/octet-stream"),
            metadata={k.lower(): v for k, v in extra.get("Metadata", {}).items()},
            extra_args=extra,
        )

    async def delete_object(self, *, Bucket: str, Key: str) -> dict[str, Any]:  # noqa: N803
        self.calls.append("delete_object")
        self.objects.pop((Bucket, Key), None)
        return {}

    async def copy_object(
        self,
        *,
        CopySource: dict[str, str],  # noqa: N803
        Bucket: str,  # noqa: N803
        Key: str,  # noqa: N803
        **kwargs: Any,
    ) -> dict[str, Any]:
        self.calls.append("copy_object")
        src = self._get(CopySource["Bucket"], CopySource["Key"], "CopyObject")
        self.objects[(Bucket, Key)] = FakeS3Object(
            body=src.body,
            last_modified=datetime.now(UTC),
            content_type=src.content_type,
            metadata=dict(src.metadata),
            extra_args=kwargs,
        )
        return {}

    async def list_objects_v2(
        self,
        *,
        Bucket: str,  # noqa: N803
        Prefix: str = "",  # noqa: N803
        MaxKeys: int = 1000,  # noqa: N803
        ContinuationToken: str | None = None,  # noqa: N803
    ) -> dict[str, Any]:
        self.calls.append("list_objects_v2")
        keys = sorted(k for b, k in self.objects if b == Bucket and k.startswith(Prefix))
        start = int(ContinuationToken) if ContinuationToken else 0
        end = start + MaxKeys
        response: dict[str, Any] = {
            "Contents": [
                {
                    "Key": key,
                    "Size": len(self.objects[(Bucket, key)].body),
                    "LastModified": self.objects[(Bucket, key)].last_modified,
                }
                for key in keys[start:end]
            ],
            "IsTruncated": end < len(keys),
        }
        if end < len(keys):
            response["NextContinuationToken"] = str(end)
        return response


# ============================================================================
# Google Cloud Storage
# ============================================================================


@dataclass
class FakeGCSObject:
    data: bytes
    updated: datetime
    content_type: str | None = None
    metadata: dict[str, str] | None = None
    predefined_acl: str | None = None


class FakeBlob:
    def __init__(self, bucket: FakeGCSBucket, name: str, stored: FakeGCSObject | None = None) -> None:
        self.bucket = bucket
        self.name = name
        self.metadata: dict[str, str] | None = None
        self.size: int | None = None
        self.updated: datetime | None = None
        self.content_type: str | None = None
        if stored is not None:
            self.size = len(stored.data)
            self.updated = stored.updated
            self.content_type = stored.content_type
            self.metadata = dict(stored.metadata) if stored.metadata else None

    def upload_from_file(
        self,
        file_obj: Any,
        size: int | None = None,
        content_type: str | None = None,
        predefined_acl: str | None = None,
        timeout: float = 60,
    ) -> None:
        self.bucket.timeouts.append(("upload_from_file", timeout))
        data = file_obj.read()
        if self.bucket.upload_delay:
            # Honor the request timeout the way the HTTP transport does
            time.sleep(min(self.bucket.upload_delay, timeout))
            if self.bucket.upload_delay > timeout:
                raise TimeoutError(f"Upload of {self.name} timed out after {timeout}s")
        self.bucket.uploads += 1
        self.bucket.store[self.name] = FakeGCSObject(
            data=data,
            updated=datetime.now(UTC),
            content_type=content_type or "application/octet-stream",
            metadata=dict(self.metadata) if self.metadata else None,
            predefined_acl=predefined_acl,
        )

    def open(self, mode: str = "rb", timeout: float = 60) -> io.BytesIO:
        self.bucket.timeouts.append(("open", timeout))
        stored = self.bucket.store.get(self.name)
        if stored is None:
            raise gexc.NotFound(f"No such object: {self.bucket.name}/{self.name}")
        return io.BytesIO(stored.data)


class FakeGCSBucket:
    def __init__(self, name: str) -> None:
        self.name = name
        self.store: dict[str, FakeGCSObject] = {}
        self.uploads = 0
        self.upload_delay = 0.0
        self.timeouts: list[tuple[str, float]] = []

    def blob(self, name: str) -> FakeBlob:
        return FakeBlob(self, name)

    def get_blob(self, name: str, timeout: float = 60) -> FakeBlob | None:
        self.timeouts.append(("get_blob", timeout))
        stored = self.store.get(name)
        if stored is None:
            return None
        return FakeBlob(self, name, stored)

    def delete_blob(self, name: str, timeout: float = 60) -> None:
        self.timeouts.append(("delete_blob", timeout))
        if self.store.pop(name, None) is None:
            raise gexc.NotFound(f"No such object: {self.name}/{name}")

    def copy_blob(
        self,
        blob: FakeBlob,
        destination_bucket: FakeGCSBucket,
        new_name: str,
        timeout: float = 60,
    ) -> FakeBlob:
        self.timeouts.append(("copy_blob", timeout))
        stored = self.store.get(blob.name)
        if stored is None:
            raise gexc.NotFound(f"No such object: {self.name}/{blob.name}")
        destination_bucket.store[new_name] = FakeGCSObject(
            data=stored.data,
            updated=datetime.now(UTC),
            content_type=stored.content_type,
            metadata=dict(stored.metadata) if stored.metadata else None,
        )
        return FakeBlob(destination_bucket, new_name, destination_bucket.store[new_name])


class FakeBlobPages:
    """Mimics the HTTPIterator returned by ``Client.list_blobs`` for one page."""

    def __init__(self, blobs: list[FakeBlob], next_page_token: str | None) -> None:
        self.pages = iter([blobs])
        self.next_page_token = next_page_token


class FakeGCSClient:
    def __init__(self) -> None:
        self.buckets: dict[str, FakeGCSBucket] = {}
        self.list_calls = 0
        self.closed = False

    def bucket(self, name: str) -> FakeGCSBucket:
        return self.buckets.setdefault(name, FakeGCSBucket(name))

    def list_blobs(
        self,
        bucket_name: str,
        prefix: str | None = None,
        page_token: str | None = None,
        max_results: int | None = None,
        timeout: float = 60,
    ) -> FakeBlobPages:
        self.list_calls += 1
        bucket = self.bucket(bucket_name)
        bucket.timeouts.append(("list_blobs", timeout))
        keys = sorted(k for k in bucket.store if k.startswith(prefix or ""))
        start = int(page_token) if page_token else 0
        end = start + (max_results or len(keys))
        blobs = [FakeBlob(bucket, key, bucket.store[key]) for key in keys[start:end]]
        return FakeBlobPages(blobs, str(end) if end < len(keys) else None)

    def close(self) -> None:
        self.closed = True
