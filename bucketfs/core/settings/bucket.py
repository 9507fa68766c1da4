"""Bucket configuration settings.

Environment variables use BUCKETFS_ prefix.
Example: BUCKETFS_BACKEND="s3"
         BUCKETFS_BUCKET="my-bucket"
         BUCKETFS_PREFIX="tenant-a/"

Supports:
- Local filesystem (bucket is the root directory)
- AWS S3 and S3-compatible services (set endpoint for MinIO/LocalStack)
- Google Cloud Storage
- Process-local in-memory buckets (testing)
"""

from __future__ import annotations

from enum import StrEnum
import json
from pathlib import Path
from typing import Annotated, Any
from urllib.parse import SplitResult, parse_qs, unquote

from pydantic import (
    Field,
    SecretStr,
    computed_field,
    field_validator,
    model_validator,
)
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class BucketBackendType(StrEnum):
    """Supported bucket backends, keyed by URL scheme."""

    FILE = "file"
    S3 = "s3"
    GCS = "gs"
    MEMORY = "mem"


class BucketSettings(BaseSettings):
    """Settings for a single bucket.

    Environment variables use BUCKETFS_ prefix.
    Example: BUCKETFS_BACKEND=s3

    The same model is built from URLs by :meth:`from_url`, which is what the
    scheme registry uses when resolving ``s3://bucket/prefix?region=...``.
    """

    # ──────────────────────────────────────────────────────────────
    # Identity
    # ──────────────────────────────────────────────────────────────

    backend: BucketBackendType = Field(
        default=BucketBackendType.FILE,
        description="Backend type (file, s3, gs, mem)",
    )

    bucket: str = Field(
        default=".",
        min_length=1,
        description="Bucket name, or root directory for the file backend",
    )

    prefix: str = Field(
        default="",
        description="Namespace root; every key is resolved beneath it",
    )

    # ──────────────────────────────────────────────────────────────
    # Credentials and connection
    # ──────────────────────────────────────────────────────────────

    access_key: SecretStr | None = Field(
        default=None,
        description="S3 access key ID",
    )

    secret_key: SecretStr | None = Field(
        default=None,
        description="S3 secret access key",
    )

    session_token: SecretStr | None = Field(
        default=None,
        description="S3 session token for temporary credentials",
    )

    region: str | None = Field(
        default=None,
        description="Backend region",
    )

    endpoint: str | None = Field(
        default=None,
        description="S3-compatible endpoint URL (for MinIO/LocalStack). None for AWS S3.",
    )

    max_retries: int = Field(
        default=3,
        ge=0,
        le=10,
        description="Maximum number of retry attempts for failed backend calls",
    )

    retry_mode: str = Field(
        default="standard",
        description="boto3 retry mode: standard, adaptive, or legacy",
    )

    timeout: int = Field(
        default=30,
        ge=1,
        le=300,
        description="Connect/read timeout in seconds",
    )

    # ──────────────────────────────────────────────────────────────
    # Access control and encryption
    # ──────────────────────────────────────────────────────────────

    acl: str | None = Field(
        default=None,
        description="Canned ACL (S3) or predefined ACL (GCS) applied on write/copy",
    )

    grant_full_control: str | None = Field(
        default=None,
        description="S3 GrantFullControl header applied on write/copy",
    )

    server_side_encryption: str | None = Field(
        default=None,
        description="S3 server-side encryption algorithm (e.g. AES256, aws:kms)",
    )

    # ──────────────────────────────────────────────────────────────
    # Google Cloud Storage
    # ──────────────────────────────────────────────────────────────

    scopes: Annotated[list[str], NoDecode] = Field(
        default_factory=list,
        description="OAuth scopes for the GCS client",
    )

    credentials_file: Path | None = Field(
        default=None,
        description="Path to a GCS service account credentials file",
    )

    # ──────────────────────────────────────────────────────────────
    # Listing and staging
    # ──────────────────────────────────────────────────────────────

    list_page_size: int = Field(
        default=1000,
        ge=1,
        le=1000,
        description="Maximum number of keys fetched per listing page",
    )

    staging_dir: Path | None = Field(
        default=None,
        description="Directory for writer staging files (system temp dir when None)",
    )

    # ──────────────────────────────────────────────────────────────
    # Validators
    # ──────────────────────────────────────────────────────────────

    @field_validator("scopes", mode="before")
    @classmethod
    def _parse_scopes(cls, value: Any) -> list[str]:
        """Parse comma-separated scopes from env var or URL."""
        if isinstance(value, str):
            if value.startswith("["):
                return [str(item) for item in json.loads(value)]
            return [s.strip() for s in value.split(",") if s.strip()]
        return list(value) if value else []

    @field_validator("retry_mode")
    @classmethod
    def _validate_retry_mode(cls, value: str) -> str:
        """Validate retry_mode is one of the allowed values."""
        allowed_modes = {"standard", "adaptive", "legacy"}
        if value not in allowed_modes:
            raise ValueError(f"retry_mode must be one of {allowed_modes}, got {value}")
        return value

    @model_validator(mode="after")
    def _validate_credential_consistency(self) -> BucketSettings:
        """Validate that access_key and secret_key are provided together or not at all."""
        if (self.access_key is None) != (self.secret_key is None):
            raise ValueError(
                "Both access_key and secret_key must be provided together when using "
                "static credentials. Provide both or neither."
            )
        return self

    @model_validator(mode="after")
    def _validate_bucket_name(self) -> BucketSettings:
        """Validate that remote backends name a bucket."""
        if self.backend in (BucketBackendType.S3, BucketBackendType.GCS) and not self.bucket:
            raise ValueError(f"The {self.backend.value} backend requires a bucket name")
        return self

    # ──────────────────────────────────────────────────────────────
    # Computed Properties
    # ──────────────────────────────────────────────────────────────

    @computed_field  # type: ignore[prop-decorator]
    @property
    def has_static_credentials(self) -> bool:
        """Whether static S3 credentials were supplied."""
        return self.access_key is not None and self.secret_key is not None

    # ──────────────────────────────────────────────────────────────
    # URL translation
    # ──────────────────────────────────────────────────────────────

    @classmethod
    def from_url(cls, url: SplitResult) -> BucketSettings:
        """Build settings from a bucket URL.

        The URL host is the bucket name and the path is the namespace prefix
        (falling back to the ``prefix`` query parameter). For ``file://`` URLs
        the path is the root directory instead and only the query parameter
        sets a prefix.

        Args:
            url: Parsed URL, e.g. ``urlsplit("s3://bucket/a?region=eu-west-1")``

        Returns:
            Settings for the addressed bucket.

        Raises:
            pydantic.ValidationError: If the scheme or parameters are invalid, or an
                ``s3`` or ``gs`` URL has no bucket host.
        """
        query = {k: v[-1] for k, v in parse_qs(url.query).items() if v}
        path = unquote(url.path)

        values: dict[str, Any] = {"backend": url.scheme}
        if url.scheme == BucketBackendType.FILE:
            values["bucket"] = path or "."
            values["prefix"] = query.get("prefix", "")
        else:
            # netloc keeps the case of the bucket name; hostname would lowercase it
            host = url.netloc.rpartition("@")[2].partition(":")[0]
            if url.scheme == BucketBackendType.MEMORY:
                host = host or "default"
            values["bucket"] = host
            values["prefix"] = path or query.get("prefix", "")

        if s := query.get("aws_access_key_id"):
            values["access_key"] = s
            values["secret_key"] = query.get("aws_secret_access_key", "")
            if token := query.get("aws_session_token"):
                values["session_token"] = token
        if s := query.get("region"):
            values["region"] = s
        if s := query.get("endpoint"):
            values["endpoint"] = s
        if (s := query.get("max_retries")) and s.isdigit():
            values["max_retries"] = int(s)
        if s := query.get("acl"):
            values["acl"] = s
        if s := query.get("grant_full_control", query.get("grant-full-control")):
            values["grant_full_control"] = s
        if s := query.get("sse"):
            values["server_side_encryption"] = s
        if s := query.get("scopes"):
            values["scopes"] = s
        if s := query.get("credentials"):
            values["credentials_file"] = s

        return cls(**values)

    # ──────────────────────────────────────────────────────────────
    # Model Configuration
    # ──────────────────────────────────────────────────────────────

    model_config = SettingsConfigDict(
        env_prefix="BUCKETFS_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        frozen=True,
        populate_by_name=True,
        extra="ignore",
        env_ignore_empty=True,
    )
