"""Backend-specific behavior not covered by the shared bucket contract."""

import asyncio
import io
import time
from unittest.mock import AsyncMock, MagicMock

import pytest

from bucketfs.core.settings import BucketSettings
from bucketfs.storage.backends.gcs.backend import GCSBucket
from bucketfs.storage.backends.local.backend import LocalBucket, _atomic_write
from bucketfs.storage.backends.memory.backend import MemoryBucket, MemoryStore, get_store
from bucketfs.storage.backends.protocol import WriteOptions
from bucketfs.storage.backends.s3.backend import DEFAULT_ACL, S3Bucket
from bucketfs.storage.exceptions import (
    StorageBackendError,
    StorageCanceledError,
    StorageFileNotFoundError,
    StorageNotConfiguredError,
    StorageValidationError,
)
from bucketfs.storage.writer import WriterState
from tests.utils import (
    FakeS3Client,
    client_error,
    glob_names,
    read_object,
    write_object,
)


async def started_s3(settings: BucketSettings, fake: FakeS3Client) -> S3Bucket:
    bucket = S3Bucket(settings)
    bucket._session = MagicMock()
    bucket._session.client.return_value = fake
    await bucket.startup()
    return bucket


class TestS3Bucket:
    """Test S3-specific request shaping."""

    @pytest.mark.asyncio
    async def test_default_acl(self, make_settings, fake_s3):
        """Test writes and copies fall back to bucket-owner-full-control."""
        bucket = await started_s3(make_settings(backend="s3", bucket="b"), fake_s3)

        await write_object(bucket, "a.txt", b"x", WriteOptions(content_type="text/plain"))
        await bucket.copy("a.txt", "b.txt")

        uploaded = fake_s3.objects[("b", "a.txt")]
        assert uploaded.extra_args["ACL"] == DEFAULT_ACL
        assert uploaded.content_type == "text/plain"
        assert fake_s3.objects[("b", "b.txt")].extra_args == {"ACL": DEFAULT_ACL}

    @pytest.mark.asyncio
    async def test_grant_and_encryption(self, make_settings, fake_s3):
        """Test an explicit grant replaces the default ACL and SSE is applied."""
        settings = make_settings(
            backend="s3",
            bucket="b",
            grant_full_control="id=abc",
            server_side_encryption="AES256",
        )
        bucket = await started_s3(settings, fake_s3)

        await write_object(bucket, "a.txt", b"x")

        extra = fake_s3.objects[("b", "a.txt")].extra_args
        assert "ACL" not in extra
        assert extra["GrantFullControl"] == "id=abc"
        assert extra["ServerSideEncryption"] == "AES256"

    @pytest.mark.asyncio
    async def test_metadata_sent(self, make_settings, fake_s3):
        bucket = await started_s3(make_settings(backend="s3", bucket="b"), fake_s3)

        await write_object(bucket, "a.txt", b"x", WriteOptions(metadata={"owner": "me"}))

        assert fake_s3.objects[("b", "a.txt")].extra_args["Metadata"] == {"Owner": "me"}
        assert (await bucket.head("a.txt")).metadata == {"Owner": "me"}

    @pytest.mark.asyncio
    async def test_malformed_glob_makes_no_request(self, make_settings, fake_s3):
        """Test pattern validation happens before any listing call."""
        bucket = await started_s3(make_settings(backend="s3", bucket="b"), fake_s3)

        with pytest.raises(StorageValidationError):
            bucket.glob("a/[bc")

        assert "list_objects_v2" not in fake_s3.calls

    @pytest.mark.asyncio
    async def test_listing_narrowed_to_static_prefix(self, make_settings, fake_s3):
        bucket = await started_s3(make_settings(backend="s3", bucket="b", prefix="t"), fake_s3)
        await write_object(bucket, "logs/1.gz", b"1")
        await write_object(bucket, "other/2.gz", b"2")

        assert await glob_names(bucket, "logs/*.gz") == {"logs/1.gz"}

    @pytest.mark.asyncio
    async def test_remove_propagates_other_errors(self, make_settings, fake_s3):
        """Test only not-found errors are ignored by remove."""
        bucket = await started_s3(make_settings(backend="s3", bucket="b"), fake_s3)
        fake_s3.delete_object = AsyncMock(side_effect=client_error("AccessDenied", 403, "DeleteObject"))

        with pytest.raises(StorageBackendError) as exc_info:
            await bucket.remove("a.txt")

        assert exc_info.value.extra["aws_error_code"] == "AccessDenied"

    @pytest.mark.asyncio
    async def test_operations_require_startup(self, make_settings):
        bucket = S3Bucket(make_settings(backend="s3", bucket="b"))

        with pytest.raises(StorageNotConfiguredError):
            await bucket.head("a.txt")

    @pytest.mark.asyncio
    async def test_lifecycle(self, make_settings, fake_s3):
        """Test startup is idempotent and close releases the client."""
        bucket = await started_s3(make_settings(backend="s3", bucket="b"), fake_s3)
        await bucket.startup()

        assert bucket._session.client.call_count == 1

        await bucket.close()
        await bucket.close()

        assert fake_s3.exited
        assert not bucket.is_ready

    @pytest.mark.asyncio
    async def test_async_context_manager(self, make_settings, fake_s3):
        bucket = S3Bucket(make_settings(backend="s3", bucket="b"))
        bucket._session = MagicMock()
        bucket._session.client.return_value = fake_s3

        async with bucket:
            assert bucket.is_ready

        assert not bucket.is_ready


class TestGCSBucket:
    """Test GCS-specific request shaping."""

    @pytest.mark.asyncio
    async def test_predefined_acl(self, make_settings, fake_gcs):
        """Test the configured ACL is applied to uploads."""
        bucket = GCSBucket(make_settings(backend="gs", bucket="b", acl="publicRead"), client=fake_gcs)

        await write_object(bucket, "a.txt", b"x", WriteOptions(content_type="text/plain"))

        stored = fake_gcs.bucket("b").store["a.txt"]
        assert stored.predefined_acl == "publicRead"
        assert stored.content_type == "text/plain"

    @pytest.mark.asyncio
    async def test_listing_pages(self, make_settings, fake_gcs):
        """Test one list request is made per page."""
        bucket = GCSBucket(make_settings(backend="gs", bucket="b", list_page_size=2), client=fake_gcs)
        for i in range(5):
            await write_object(bucket, f"k{i}", b"x")

        assert await glob_names(bucket, "*") == {f"k{i}" for i in range(5)}
        assert fake_gcs.list_calls == 3

    @pytest.mark.asyncio
    async def test_request_timeout_without_deadline(self, make_settings, fake_gcs):
        """Test SDK calls fall back to the configured request timeout."""
        bucket = GCSBucket(make_settings(backend="gs", bucket="b", timeout=12), client=fake_gcs)
        await write_object(bucket, "a.txt", b"x")

        await bucket.head("a.txt")
        await bucket.copy("a.txt", "b.txt")
        await bucket.remove("b.txt")
        await glob_names(bucket, "*")

        assert dict(fake_gcs.bucket("b").timeouts) == {
            "upload_from_file": 12,
            "get_blob": 12,
            "copy_blob": 12,
            "delete_blob": 12,
            "list_blobs": 12,
        }

    @pytest.mark.asyncio
    async def test_deadline_bounds_sdk_calls(self, make_settings, fake_gcs):
        """Test each SDK call receives the time left before the deadline."""
        bucket = GCSBucket(make_settings(backend="gs", bucket="b"), client=fake_gcs)
        await write_object(bucket, "a.txt", b"x")

        await bucket.head("a.txt", timeout=2)
        await bucket.copy("a.txt", "b.txt", timeout=2)
        await bucket.remove("b.txt", timeout=2)
        async with bucket.glob("*", timeout=2) as objects:
            assert [info.name async for info in objects] == ["a.txt"]

        timeouts = dict(fake_gcs.bucket("b").timeouts[1:])
        assert set(timeouts) == {"get_blob", "copy_blob", "delete_blob", "list_blobs"}
        assert all(0 < value <= 2 for value in timeouts.values())

    @pytest.mark.asyncio
    async def test_commit_past_deadline_never_publishes(self, make_settings, fake_gcs):
        """Test an upload outliving the commit deadline is abandoned by the SDK."""
        bucket = GCSBucket(make_settings(backend="gs", bucket="b"), client=fake_gcs)
        remote = fake_gcs.bucket("b")
        remote.upload_delay = 0.3
        writer = bucket.create("late.txt")
        await writer.write(b"payload")

        with pytest.raises(StorageCanceledError):
            await writer.commit(timeout=0.05)

        assert writer.state == WriterState.DISCARDED
        operation, upload_timeout = remote.timeouts[-1]
        assert operation == "upload_from_file"
        assert upload_timeout <= 0.05
        # Give the worker thread time to finish had it ignored the deadline
        await asyncio.sleep(0.4)
        assert "late.txt" not in remote.store
        assert remote.uploads == 0
        with pytest.raises(StorageFileNotFoundError):
            await bucket.head("late.txt")

    @pytest.mark.asyncio
    async def test_close(self, make_settings, fake_gcs):
        bucket = GCSBucket(make_settings(backend="gs", bucket="b"), client=fake_gcs)

        await bucket.close()

        assert fake_gcs.closed
        assert not bucket.is_ready
        with pytest.raises(StorageNotConfiguredError):
            await bucket.head("a.txt")


class TestLocalBucket:
    """Test filesystem layout and publish behavior."""

    @pytest.mark.asyncio
    async def test_objects_are_plain_files(self, make_settings, tmp_path):
        root = tmp_path / "root"
        bucket = LocalBucket(make_settings(backend="file", bucket=str(root), prefix="ns"))
        await bucket.startup()

        await write_object(bucket, "a/b.txt", b"data")

        assert (root / "ns" / "a" / "b.txt").read_bytes() == b"data"
        assert (await bucket.head("a/b.txt")).content_type == "text/plain"

    @pytest.mark.asyncio
    async def test_publish_temp_files_hidden(self, make_settings, tmp_path):
        """Test in-flight publish files never show up in listings."""
        root = tmp_path / "root"
        bucket = LocalBucket(make_settings(backend="file", bucket=str(root)))
        await bucket.startup()
        await write_object(bucket, "a.txt", b"x")
        (root / ".bucketfs-abc_1234.tmp").write_bytes(b"partial")

        assert await glob_names(bucket, "**") == {"a.txt"}

    @pytest.mark.asyncio
    async def test_lookalike_names_listed(self, make_settings, tmp_path):
        """Test objects that merely share the temp prefix stay visible."""
        bucket = LocalBucket(make_settings(backend="file", bucket=str(tmp_path / "root")))
        await bucket.startup()

        await write_object(bucket, ".bucketfs-notes.txt", b"x")
        await write_object(bucket, ".bucketfs-x/data.tmp", b"y")

        assert await glob_names(bucket, "**") == {".bucketfs-notes.txt", ".bucketfs-x/data.tmp"}

    def test_temp_shaped_name_rejected(self, make_settings, tmp_path):
        bucket = LocalBucket(make_settings(backend="file", bucket=str(tmp_path / "root")))

        with pytest.raises(StorageValidationError, match="reserved"):
            bucket.create("a/.bucketfs-abcd1234.tmp")

    @pytest.mark.asyncio
    async def test_listing_pages_bounded(self, make_settings, tmp_path):
        """Test each fetch returns at most list_page_size files."""
        bucket = LocalBucket(make_settings(backend="file", bucket=str(tmp_path / "root"), list_page_size=2))
        await bucket.startup()
        names = {"k0", "k1", "k2", "k3", "k4", "d/k5", "d/e/k6"}
        for name in names:
            await write_object(bucket, name, b"x")

        iterator = bucket.glob("**")
        sizes = []
        token = None
        while True:
            entries, token = await iterator._fetch_page(token)
            sizes.append(len(entries))
            if token is None:
                break

        assert max(sizes) <= 2
        assert sum(sizes) == len(names)
        assert await glob_names(bucket, "**") == names

    def test_atomic_write_past_deadline(self, tmp_path):
        """Test a write whose deadline passed leaves neither target nor temp file."""
        target = tmp_path / "out" / "a.txt"

        with pytest.raises(TimeoutError):
            _atomic_write(target, io.BytesIO(b"data"), deadline=time.monotonic() - 1)

        assert list(target.parent.iterdir()) == []

    @pytest.mark.asyncio
    async def test_overwrite_replaces_content(self, make_settings, tmp_path):
        bucket = LocalBucket(make_settings(backend="file", bucket=str(tmp_path / "root")))
        await bucket.startup()

        await write_object(bucket, "a.txt", b"first version")
        await write_object(bucket, "a.txt", b"second")

        assert await read_object(bucket, "a.txt") == b"second"

    @pytest.mark.asyncio
    async def test_directory_is_not_an_object(self, make_settings, tmp_path):
        """Test directories are neither objects nor removable."""
        root = tmp_path / "root"
        bucket = LocalBucket(make_settings(backend="file", bucket=str(root)))
        await bucket.startup()
        (root / "dir").mkdir()

        with pytest.raises(StorageFileNotFoundError):
            await bucket.head("dir")
        await bucket.remove("dir")
        assert (root / "dir").is_dir()


class TestMemoryBucket:
    """Test process-wide store sharing."""

    def test_get_store_shared_by_name(self):
        assert get_store("shared-store-test") is get_store("shared-store-test")
        assert get_store("shared-store-test") is not get_store("other-store-test")

    @pytest.mark.asyncio
    async def test_concurrent_writers(self, make_settings):
        """Test concurrent commits to distinct keys all land."""
        store = MemoryStore()
        bucket = MemoryBucket(make_settings(backend="mem", bucket="c"), store=store)
        await bucket.startup()

        await asyncio.gather(*(write_object(bucket, f"k{i}", b"v") for i in range(20)))

        assert len(store) == 20
