"""Pytest configuration and shared fixtures.

Organization:
    - Environment Fixtures: isolate tests from BUCKETFS_* variables
    - Settings Fixtures: bucket settings with a private staging directory
    - Bucket Fixtures: started buckets for every backend, sharing one
      backing store per test so differently-prefixed views can be compared

When adding new features:
    1. Add fixtures to the appropriate section below
    2. Use @pytest.fixture with clear docstrings
    3. Make fixtures composable (fixtures can depend on other fixtures)
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Awaitable, Callable
import os
from pathlib import Path
from typing import TYPE_CHECKING, Any
from unittest.mock import MagicMock

import pytest

from bucketfs.core.settings import BucketSettings, get_bucket_settings
from bucketfs.storage.backends.gcs.backend import GCSBucket
from bucketfs.storage.backends.local.backend import LocalBucket
from bucketfs.storage.backends.memory.backend import MemoryBucket, MemoryStore
from bucketfs.storage.backends.s3.backend import S3Bucket
from tests.utils import FakeGCSClient, FakeS3Client

if TYPE_CHECKING:
    from bucketfs.storage.backends.protocol import Bucket

BucketFactory = Callable[..., Awaitable["Bucket"]]

BACKENDS = ["mem", "file", "s3", "gs"]


# ============================================================================
# Environment Fixtures
# ============================================================================


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path):
    """Strip BUCKETFS_* variables and run from an empty directory (no .env file)."""
    for name in list(os.environ):
        if name.startswith("BUCKETFS_"):
            monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    get_bucket_settings.cache_clear()
    yield
    get_bucket_settings.cache_clear()


# ============================================================================
# Settings Fixtures
# ============================================================================


@pytest.fixture
def staging_dir(tmp_path: Path) -> Path:
    """Private directory for writer staging files."""
    path = tmp_path / "staging"
    path.mkdir()
    return path


@pytest.fixture
def make_settings(staging_dir: Path) -> Callable[..., BucketSettings]:
    """Build settings that stage into the test's staging directory.

    Example:
        settings = make_settings(backend="s3", bucket="b", prefix="x/")
    """

    def factory(**overrides: Any) -> BucketSettings:
        values: dict[str, Any] = {"staging_dir": staging_dir}
        values.update(overrides)
        return BucketSettings(**values)

    return factory


# ============================================================================
# Bucket Fixtures
# ============================================================================


@pytest.fixture
def fake_s3() -> FakeS3Client:
    return FakeS3Client()


@pytest.fixture
def fake_gcs() -> FakeGCSClient:
    return FakeGCSClient()


@pytest.fixture(params=BACKENDS)
async def make_bucket(
    request: pytest.FixtureRequest,
    tmp_path: Path,
    make_settings: Callable[..., BucketSettings],
    fake_s3: FakeS3Client,
    fake_gcs: FakeGCSClient,
) -> AsyncGenerator[BucketFactory]:
    """Factory for started buckets of the parametrized backend.

    All buckets made within one test share the same backing store, so a
    prefixed bucket and an unprefixed one see the same objects.

    Example:
        async def test_scoping(make_bucket):
            root = await make_bucket()
            scoped = await make_bucket(prefix="x/")
    """
    backend = request.param
    store = MemoryStore()
    root = tmp_path / "root"
    created: list[Bucket] = []

    async def factory(prefix: str = "", **overrides: Any) -> Bucket:
        match backend:
            case "mem":
                settings = make_settings(backend="mem", bucket="test", prefix=prefix, **overrides)
                bucket: Bucket = MemoryBucket(settings, store=store)
            case "file":
                settings = make_settings(backend="file", bucket=str(root), prefix=prefix, **overrides)
                bucket = LocalBucket(settings)
            case "s3":
                settings = make_settings(backend="s3", bucket="test", prefix=prefix, **overrides)
                bucket = S3Bucket(settings)
                bucket._session = MagicMock()
                bucket._session.client.return_value = fake_s3
            case "gs":
                settings = make_settings(backend="gs", bucket="test", prefix=prefix, **overrides)
                bucket = GCSBucket(settings, client=fake_gcs)
        await bucket.startup()
        created.append(bucket)
        return bucket

    factory.backend = backend  # type: ignore[attr-defined]
    yield factory

    for bucket in created:
        await bucket.close()


@pytest.fixture
async def bucket(make_bucket: BucketFactory) -> Bucket:
    """A started, unprefixed bucket of the parametrized backend."""
    return await make_bucket()
