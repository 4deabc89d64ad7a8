"""Core functionality for Picbatch.

This package holds everything below the HTTP layer:

- **PicbatchConfig / config**: Configuration management using Pydantic Settings
- **LocalBlobStore**: Image files on disk, staged then finalized
- **SQLiteRecordStore**: Category and picture records
- **Sampler**: Random picture batches biased toward recent additions
- **ConsistencyCoordinator**: Create/update/delete across both stores
- **reconcile_orphans**: Sweep for image files no record references

Architecture Overview
---------------------
1. **Configuration Layer** (config.py)
2. **Storage Layer** (blob_store.py, record_store.py)
3. **Domain Layer** (sampler.py, coordinator.py, matches.py)
4. **Maintenance** (reconcile.py)

Usage Example
-------------
    from picbatch.core import (
        ConsistencyCoordinator,
        LocalBlobStore,
        Sampler,
        SQLiteRecordStore,
        config,
    )

    records = SQLiteRecordStore(config.database_path)
    blobs = LocalBlobStore(config.uploads_dir, config.uploads_url_prefix)
    coordinator = ConsistencyCoordinator(records, blobs)
    sampler = Sampler(records.pictures, config.recent_window)
"""

from picbatch.core.blob_store import BlobStore, LocalBlobStore
from picbatch.core.config import PicbatchConfig, config
from picbatch.core.coordinator import (
    ConsistencyCoordinator,
    OperationReport,
    StepOutcome,
    UpdateResult,
)
from picbatch.core.errors import (
    BlobNotFound,
    InvalidReference,
    MissingField,
    NotFound,
    PicbatchError,
    StoreUnavailable,
    UnknownFileType,
    UpdateFailed,
)
from picbatch.core.models import Category, Picture, Upload
from picbatch.core.reconcile import SweepReport, reconcile_orphans
from picbatch.core.record_store import RecordStore, SQLiteRecordStore
from picbatch.core.sampler import Sampler

__all__ = [
    "BlobNotFound",
    "BlobStore",
    "Category",
    "ConsistencyCoordinator",
    "InvalidReference",
    "LocalBlobStore",
    "MissingField",
    "NotFound",
    "OperationReport",
    "PicbatchConfig",
    "PicbatchError",
    "Picture",
    "RecordStore",
    "SQLiteRecordStore",
    "Sampler",
    "StepOutcome",
    "StoreUnavailable",
    "SweepReport",
    "UnknownFileType",
    "UpdateFailed",
    "UpdateResult",
    "Upload",
    "config",
    "reconcile_orphans",
]
