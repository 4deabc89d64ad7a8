"""Shared pytest fixtures for Picbatch tests."""

import random
import shutil
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Generator

import pytest

from picbatch.core.blob_store import LocalBlobStore
from picbatch.core.config import PicbatchConfig
from picbatch.core.coordinator import ConsistencyCoordinator
from picbatch.core.models import Category, Picture, Upload
from picbatch.core.record_store import SQLiteRecordStore

BASE_TIME = datetime(2024, 1, 1, tzinfo=timezone.utc)


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files.

    Yields:
        Path to temporary directory

    Cleanup:
        Directory is removed after test completes
    """
    temp_path = Path(tempfile.mkdtemp())
    try:
        yield temp_path
    finally:
        shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture
def test_config(temp_dir: Path) -> PicbatchConfig:
    """Create a test configuration with temporary directories.

    Args:
        temp_dir: Temporary directory from fixture

    Returns:
        PicbatchConfig instance for testing
    """
    return PicbatchConfig(
        _env_file=None,
        data_dir=str(temp_dir / "data"),
        uploads_dir=str(temp_dir / "uploads"),
        recent_window=50,
        orphan_grace_seconds=0,
    )


@pytest.fixture
def record_store(test_config: PicbatchConfig) -> SQLiteRecordStore:
    """SQLite record store with a seeded random source."""
    return SQLiteRecordStore(test_config.database_path, rng=random.Random(1234))


@pytest.fixture
def blob_store(test_config: PicbatchConfig) -> LocalBlobStore:
    """Blob store rooted in the temporary uploads directory."""
    return LocalBlobStore(test_config.uploads_dir, test_config.uploads_url_prefix)


@pytest.fixture
def coordinator(record_store: SQLiteRecordStore, blob_store: LocalBlobStore) -> ConsistencyCoordinator:
    """Coordinator with the default (original-behaviour) consistency settings."""
    return ConsistencyCoordinator(record_store, blob_store)


@pytest.fixture
def png_upload() -> Upload:
    """A small upload with a valid extension."""
    return Upload(content=b"\x89PNG\r\n\x1a\nfake-image-bytes", original_name="Photo.PNG")


@pytest.fixture
def category(record_store: SQLiteRecordStore, blob_store: LocalBlobStore) -> Category:
    """A category whose cover image exists on disk."""
    staged = blob_store.store(b"cover")
    url = blob_store.finalize(staged, "jpg")
    category = Category(title="Cats", image_url=url, date_added=BASE_TIME)
    record_store.categories.insert(category)
    return category


@pytest.fixture
def add_pictures(
    record_store: SQLiteRecordStore, blob_store: LocalBlobStore
) -> Callable[..., list[Picture]]:
    """Factory inserting ``n`` pictures added one minute apart.

    The returned list is ordered oldest first, so the last
    ``recent_window`` entries are the fresh ones.
    """

    def _add(category_id: str, n: int, matches: list[str] | None = None) -> list[Picture]:
        pictures = []
        for i in range(n):
            staged = blob_store.store(f"picture-{i}".encode())
            url = blob_store.finalize(staged, "png")
            picture = Picture(
                category_id=category_id,
                matches=list(matches or ["cat", "animal"]),
                image_url=url,
                date_added=BASE_TIME + timedelta(minutes=i),
            )
            record_store.pictures.insert(picture)
            pictures.append(picture)
        return pictures

    return _add
