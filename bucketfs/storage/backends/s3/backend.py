"""S3-compatible bucket implementation.

Implements the Bucket protocol for AWS S3, MinIO, and other
S3-compatible services using aioboto3.
"""

from __future__ import annotations

from functools import partial
import logging
from typing import TYPE_CHECKING, Any, BinaryIO

import aioboto3
from botocore.config import Config
from botocore.exceptions import ClientError

from bucketfs.core.settings import BucketBackendType
from bucketfs.storage.exceptions import (
    StorageError,
    StorageFileNotFoundError,
    StorageNotConfiguredError,
    map_boto_error,
    map_generic_error,
)
from bucketfs.storage.instrumentation import track_operation
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

DEFAULT_ACL = "bucket-owner-full-control"


def map_s3_error(
    error: Exception,
    operation: str,
    key: str | None = None,
) -> StorageError:
    """Map any error raised by the S3 client to the bucket error taxonomy."""
    if isinstance(error, ClientError):
        return map_boto_error(error, operation, key)
    return map_generic_error(error, operation, key)


class S3ObjectIterator(ObjectIterator):
    """Pages through ``list_objects_v2`` using its continuation token."""

    def __init__(self, client: Any, bucket: str, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._client = client
        self._bucket = bucket

    async def _fetch_page(self, token: str | None) -> tuple[list[ListedObject], str | None]:
        kwargs: dict[str, Any] = {
            "Bucket": self._bucket,
            "Prefix": self.list_prefix,
            "MaxKeys": self.page_size,
        }
        if token:
            kwargs["ContinuationToken"] = token

        response = await self._client.list_objects_v2(**kwargs)

        objects = [
            ListedObject(
                key=item["Key"],
                size=item["Size"],
                mod_time=item["LastModified"],
            )
            for item in response.get("Contents", [])
        ]
        next_token = response.get("NextContinuationToken") if response.get("IsTruncated") else None
        return objects, next_token


class S3Bucket:
    """S3-compatible bucket.

    Implements the Bucket protocol for AWS S3, MinIO, and other
    S3-compatible services.

    Attributes:
        settings: Bucket configuration settings
        backend_name: Name identifier for this backend ("s3")
        is_ready: Whether the client is initialized

    Example:
        bucket = S3Bucket(settings)
        await bucket.startup()
        info = await bucket.head("file.txt")
        await bucket.close()
    """

    def __init__(self, settings: BucketSettings) -> None:
        """Initialize S3 bucket.

        Args:
            settings: Bucket settings with S3 configuration
        """
        self.settings = settings
        self._namespace = Namespace(settings.prefix)
        self._session = aioboto3.Session()
        self._client: Any = None
        self._client_context: Any = None

    @property
    def backend_name(self) -> str:
        """Backend name identifier."""
        return BucketBackendType.S3.value

    @property
    def prefix(self) -> str:
        return self._namespace.prefix

    @property
    def is_ready(self) -> bool:
        """Check if the client is initialized and ready."""
        return self._client is not None

    def __repr__(self) -> str:
        return f"S3Bucket(bucket={self.settings.bucket!r}, prefix={self.prefix!r})"

    # ========================================================================
    # Lifecycle Management
    # ========================================================================

    async def startup(self) -> None:
        """Initialize the S3 client and connection pool."""
        if self._client is not None:
            logger.debug("S3 bucket already initialized")
            return

        logger.info(
            "Initializing S3 bucket",
            extra={
                "bucket": self.settings.bucket,
                "prefix": self.prefix,
                "endpoint": self.settings.endpoint,
                "region": self.settings.region,
            },
        )

        try:
            boto_config = Config(
                retries={
                    "max_attempts": self.settings.max_retries,
                    "mode": self.settings.retry_mode,
                },
                connect_timeout=self.settings.timeout,
                read_timeout=self.settings.timeout,
            )
            self._client_context = self._session.client(
                "s3",
                **self._get_client_config(),
                config=boto_config,
            )
            self._client = await self._client_context.__aenter__()
        except Exception as e:
            self._client_context = None
            logger.exception("Failed to initialize S3 bucket", extra={"error": str(e)})
            raise StorageNotConfiguredError(
                f"Failed to initialize S3 bucket: {e}",
                metadata={"bucket": self.settings.bucket},
            ) from e

        logger.info("S3 bucket initialized successfully")

    async def close(self) -> None:
        """Shut down the S3 client gracefully."""
        if self._client_context is None:
            logger.debug("S3 bucket not initialized, nothing to close")
            return

        logger.info("Closing S3 bucket", extra={"bucket": self.settings.bucket})
        try:
            await self._client_context.__aexit__(None, None, None)
        except Exception as e:
            logger.warning("Error closing S3 client", extra={"error": str(e)})
        finally:
            self._client = None
            self._client_context = None

    async def __aenter__(self) -> S3Bucket:
        await self.startup()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()

    def _get_client_config(self) -> dict[str, Any]:
        """Get boto3 client configuration."""
        config: dict[str, Any] = {}
        if self.settings.region:
            config["region_name"] = self.settings.region

        # Add credentials if provided (static auth)
        if self.settings.access_key is not None and self.settings.secret_key is not None:
            config["aws_access_key_id"] = self.settings.access_key.get_secret_value()
            config["aws_secret_access_key"] = self.settings.secret_key.get_secret_value()
            if self.settings.session_token is not None:
                config["aws_session_token"] = self.settings.session_token.get_secret_value()

        # Add endpoint for MinIO/LocalStack
        if self.settings.endpoint:
            config["endpoint_url"] = self.settings.endpoint

        return config

    def _access_args(self) -> dict[str, Any]:
        """ACL, grant and encryption arguments applied to every write and copy."""
        args: dict[str, Any] = {}
        if self.settings.acl:
            args["ACL"] = self.settings.acl
        if self.settings.grant_full_control:
            args["GrantFullControl"] = self.settings.grant_full_control
        if not args:
            args["ACL"] = DEFAULT_ACL
        if self.settings.server_side_encryption:
            args["ServerSideEncryption"] = self.settings.server_side_encryption
        return args

    def _ensure_client(self) -> Any:
        """Ensure client is initialized.

        Returns:
            Initialized S3 client

        Raises:
            StorageNotConfiguredError: If client not initialized
        """
        if self._client is None:
            msg = "S3 bucket not initialized. Call startup() first."
            raise StorageNotConfiguredError(msg)
        return self._client

    # ========================================================================
    # Object Operations
    # ========================================================================

    def glob(self, pattern: str, *, timeout: float | None = None) -> ObjectIterator:
        compiled = compile_pattern(pattern)
        return S3ObjectIterator(
            self._ensure_client(),
            self.settings.bucket,
            compiled,
            self._namespace,
            backend=self.backend_name,
            page_size=self.settings.list_page_size,
            timeout=timeout,
            mapper=map_s3_error,
        )

    async def head(self, name: str, *, timeout: float | None = None) -> MetaInfo:
        client = self._ensure_client()
        key = self._namespace.with_prefix(name)
        async with track_operation(
            "head", backend=self.backend_name, key=key, timeout=timeout, mapper=map_s3_error
        ):
            response = await client.head_object(Bucket=self.settings.bucket, Key=key)

        return MetaInfo(
            name=name,
            size=response.get("ContentLength", 0),
            mod_time=response["LastModified"],
            content_type=response.get("ContentType", ""),
            metadata=response.get("Metadata", {}),
        )

    async def open(self, name: str, *, timeout: float | None = None) -> ObjectReader:
        client = self._ensure_client()
        key = self._namespace.with_prefix(name)
        async with track_operation(
            "open", backend=self.backend_name, key=key, timeout=timeout, mapper=map_s3_error
        ):
            response = await client.get_object(Bucket=self.settings.bucket, Key=key)

        body = response["Body"]
        return ObjectReader(
            body.read,
            response.get("ContentLength", 0),
            key=key,
            close=body.close,
            mapper=map_s3_error,
        )

    def create(self, name: str, options: WriteOptions | None = None) -> StagedWriter:
        key = self._namespace.with_prefix(name)
        return StagedWriter(
            name,
            key,
            partial(self._publish, key),
            backend=self.backend_name,
            options=options,
            staging_dir=self.settings.staging_dir,
            mapper=map_s3_error,
        )

    async def _publish(
        self,
        key: str,
        reader: BinaryIO,
        size: int,
        options: WriteOptions,
        deadline: float | None,
    ) -> None:
        # Native coroutine: the commit deadline cancels the upload itself
        client = self._ensure_client()
        extra_args = self._access_args()
        if options.content_type:
            extra_args["ContentType"] = options.content_type
        if options.metadata:
            extra_args["Metadata"] = dict(options.metadata)

        await client.upload_fileobj(reader, self.settings.bucket, key, ExtraArgs=extra_args)

        logger.debug(
            "Object uploaded to S3",
            extra={
                "key": key,
                "bucket": self.settings.bucket,
                "size_bytes": size,
                "content_type": options.content_type,
            },
        )

    async def remove(self, name: str, *, timeout: float | None = None) -> None:
        client = self._ensure_client()
        key = self._namespace.with_prefix(name)
        async with track_operation(
            "remove", backend=self.backend_name, key=key, timeout=timeout, mapper=map_s3_error
        ):
            try:
                await client.delete_object(Bucket=self.settings.bucket, Key=key)
            except ClientError as e:
                if not isinstance(map_boto_error(e, "remove", key), StorageFileNotFoundError):
                    raise
                logger.debug("Object already absent", extra={"key": key})

    async def copy(self, src: str, dst: str, *, timeout: float | None = None) -> None:
        client = self._ensure_client()
        src_key = self._namespace.with_prefix(src)
        dst_key = self._namespace.with_prefix(dst)
        copy_source = {"Bucket": self.settings.bucket, "Key": src_key}

        async with track_operation(
            "copy", backend=self.backend_name, key=src_key, timeout=timeout, mapper=map_s3_error
        ):
            await client.copy_object(
                CopySource=copy_source,
                Bucket=self.settings.bucket,
                Key=dst_key,
                **self._access_args(),
            )

        logger.debug(
            "Object copied in S3",
            extra={"source_key": src_key, "dest_key": dst_key, "bucket": self.settings.bucket},
        )
