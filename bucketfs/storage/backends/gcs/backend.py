"""Google Cloud Storage bucket implementation.

Implements the Bucket protocol on top of ``google-cloud-storage``. The
client library is blocking, so every call runs in a worker thread via
``asyncio.to_thread``. A cancelled thread keeps running, so each SDK call
also receives the time left before the operation deadline as its own
request ``timeout``.
"""

from __future__ import annotations

import asyncio
from functools import partial
import logging
from typing import TYPE_CHECKING, Any, BinaryIO

from google.api_core import exceptions as gexc
import google.auth
from google.cloud import storage
from google.oauth2 import service_account

from bucketfs.core.settings import BucketBackendType
from bucketfs.storage.exceptions import (
    StorageFileNotFoundError,
    StorageNotConfiguredError,
    map_gcs_error,
)
from bucketfs.storage.instrumentation import time_left, track_operation
from bucketfs.storage.iterator import ListedObject, ObjectIterator
from bucketfs.storage.path import Namespace
from bucketfs.storage.pattern import compile_pattern
from bucketfs.storage.reader import ObjectReader
from bucketfs.storage.writer import StagedWriter

from ..protocol import MetaInfo, WriteOptions

if TYPE_CHECKING:
    from types import TracebackType

    from bucketfs.core.settings import BucketSettings

logger = logging.getLogger(__name__)


class GCSObjectIterator(ObjectIterator):
    """Pages through ``list_blobs`` using its page token."""

    def __init__(
        self,
        client: storage.Client,
        bucket: str,
        *args: Any,
        request_timeout: float,
        **kwargs: Any,
    ) -> None:
        super().__init__(*args, **kwargs)
        self._client = client
        self._bucket = bucket
        self._request_timeout = request_timeout

    async def _fetch_page(self, token: str | None) -> tuple[list[ListedObject], str | None]:
        timeout = time_left(self._deadline, self._request_timeout)
        return await asyncio.to_thread(self._list_page, token, timeout)

    def _list_page(self, token: str | None, timeout: float) -> tuple[list[ListedObject], str | None]:
        blobs = self._client.list_blobs(
            self._bucket,
            prefix=self.list_prefix or None,
            page_token=token,
            max_results=self.page_size,
            timeout=timeout,
        )
        page = next(blobs.pages, None)
        if page is None:
            return [], None
        objects = [
            ListedObject(
                key=blob.name,
                size=blob.size or 0,
                mod_time=blob.updated,
                content_type=blob.content_type or "",
                metadata=blob.metadata or {},
            )
            for blob in page
        ]
        return objects, blobs.next_page_token


class GCSBucket:
    """Google Cloud Storage bucket.

    Credentials come from ``credentials_file`` when set, otherwise from the
    application default credentials. ``acl`` is applied as the predefined
    ACL of every upload.

    Example:
        bucket = GCSBucket(BucketSettings(backend="gs", bucket="my-bucket"))
        await bucket.startup()
        info = await bucket.head("file.txt")
        await bucket.close()
    """

    def __init__(self, settings: BucketSettings, *, client: storage.Client | None = None) -> None:
        self.settings = settings
        self._namespace = Namespace(settings.prefix)
        self._client: storage.Client | None = client
        self._bucket: storage.Bucket | None = (
            client.bucket(settings.bucket) if client is not None else None
        )

    @property
    def backend_name(self) -> str:
        return BucketBackendType.GCS.value

    @property
    def prefix(self) -> str:
        return self._namespace.prefix

    @property
    def is_ready(self) -> bool:
        return self._client is not None

    def __repr__(self) -> str:
        return f"GCSBucket(bucket={self.settings.bucket!r}, prefix={self.prefix!r})"

    # ========================================================================
    # Lifecycle Management
    # ========================================================================

    def _build_client(self) -> storage.Client:
        scopes = self.settings.scopes or None
        if self.settings.credentials_file is not None:
            credentials = service_account.Credentials.from_service_account_file(
                str(self.settings.credentials_file),
                scopes=scopes,
            )
            return storage.Client(project=credentials.project_id, credentials=credentials)
        if scopes:
            credentials, project = google.auth.default(scopes=scopes)
            return storage.Client(project=project, credentials=credentials)
        return storage.Client()

    async def startup(self) -> None:
        """Create the storage client."""
        if self._client is not None:
            logger.debug("GCS bucket already initialized")
            return

        logger.info(
            "Initializing GCS bucket",
            extra={"bucket": self.settings.bucket, "prefix": self.prefix},
        )
        try:
            client = await asyncio.to_thread(self._build_client)
        except Exception as e:
            logger.exception("Failed to initialize GCS bucket", extra={"error": str(e)})
            raise StorageNotConfiguredError(
                f"Failed to initialize GCS bucket: {e}",
                metadata={"bucket": self.settings.bucket},
            ) from e

        self._client = client
        self._bucket = client.bucket(self.settings.bucket)
        logger.info("GCS bucket initialized successfully")

    async def close(self) -> None:
        """Close the storage client's HTTP session."""
        if self._client is None:
            return
        client, self._client, self._bucket = self._client, None, None
        try:
            await asyncio.to_thread(client.close)
        except Exception as e:
            logger.warning("Error closing GCS client", extra={"error": str(e)})
        logger.info("GCS bucket closed", extra={"bucket": self.settings.bucket})

    async def __aenter__(self) -> GCSBucket:
        await self.startup()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()

    def _ensure_bucket(self) -> storage.Bucket:
        if self._bucket is None:
            msg = "GCS bucket not initialized. Call startup() first."
            raise StorageNotConfiguredError(msg)
        return self._bucket

    def _time_left(self, ctx: dict[str, Any]) -> float:
        return time_left(ctx["deadline"], self.settings.timeout)

    def _not_found(self, key: str, operation: str) -> StorageFileNotFoundError:
        return StorageFileNotFoundError(
            f"Object not found: {key}",
            metadata={"key": key, "operation": operation},
        )

    # ========================================================================
    # Object Operations
    # ========================================================================

    def glob(self, pattern: str, *, timeout: float | None = None) -> ObjectIterator:
        compiled = compile_pattern(pattern)
        self._ensure_bucket()
        return GCSObjectIterator(
            self._client,
            self.settings.bucket,
            compiled,
            self._namespace,
            request_timeout=self.settings.timeout,
            backend=self.backend_name,
            page_size=self.settings.list_page_size,
            timeout=timeout,
            mapper=map_gcs_error,
        )

    async def head(self, name: str, *, timeout: float | None = None) -> MetaInfo:
        bucket = self._ensure_bucket()
        key = self._namespace.with_prefix(name)
        async with track_operation(
            "head", backend=self.backend_name, key=key, timeout=timeout, mapper=map_gcs_error
        ) as ctx:
            blob = await asyncio.to_thread(bucket.get_blob, key, timeout=self._time_left(ctx))
            if blob is None:
                raise self._not_found(key, "head")

        return MetaInfo(
            name=name,
            size=blob.size or 0,
            mod_time=blob.updated,
            content_type=blob.content_type or "",
            metadata=blob.metadata or {},
        )

    async def open(self, name: str, *, timeout: float | None = None) -> ObjectReader:
        bucket = self._ensure_bucket()
        key = self._namespace.with_prefix(name)
        async with track_operation(
            "open", backend=self.backend_name, key=key, timeout=timeout, mapper=map_gcs_error
        ) as ctx:
            blob = await asyncio.to_thread(bucket.get_blob, key, timeout=self._time_left(ctx))
            if blob is None:
                raise self._not_found(key, "open")
            # Reads happen after the deadline scope, each bounded by the request timeout
            stream = await asyncio.to_thread(blob.open, "rb", timeout=self.settings.timeout)

        return ObjectReader.from_file(stream, blob.size or 0, key=key, mapper=map_gcs_error)

    def create(self, name: str, options: WriteOptions | None = None) -> StagedWriter:
        key = self._namespace.with_prefix(name)
        return StagedWriter(
            name,
            key,
            partial(self._publish, key),
            backend=self.backend_name,
            options=options,
            staging_dir=self.settings.staging_dir,
            mapper=map_gcs_error,
        )

    async def _publish(
        self,
        key: str,
        reader: BinaryIO,
        size: int,
        options: WriteOptions,
        deadline: float | None,
    ) -> None:
        blob = self._ensure_bucket().blob(key)
        if options.metadata:
            blob.metadata = dict(options.metadata)
        await asyncio.to_thread(
            blob.upload_from_file,
            reader,
            size=size,
            content_type=options.content_type or None,
            predefined_acl=self.settings.acl,
            timeout=time_left(deadline, self.settings.timeout),
        )

    async def remove(self, name: str, *, timeout: float | None = None) -> None:
        bucket = self._ensure_bucket()
        key = self._namespace.with_prefix(name)
        async with track_operation(
            "remove", backend=self.backend_name, key=key, timeout=timeout, mapper=map_gcs_error
        ) as ctx:
            try:
                await asyncio.to_thread(bucket.delete_blob, key, timeout=self._time_left(ctx))
            except gexc.NotFound:
                logger.debug("Object already absent", extra={"key": key})

    async def copy(self, src: str, dst: str, *, timeout: float | None = None) -> None:
        bucket = self._ensure_bucket()
        src_key = self._namespace.with_prefix(src)
        dst_key = self._namespace.with_prefix(dst)
        async with track_operation(
            "copy", backend=self.backend_name, key=src_key, timeout=timeout, mapper=map_gcs_error
        ) as ctx:
            await asyncio.to_thread(
                bucket.copy_blob,
                bucket.blob(src_key),
                bucket,
                dst_key,
                timeout=self._time_left(ctx),
            )
