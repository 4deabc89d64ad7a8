"""Reconciliation sweep for orphaned image blobs.

The record store and the blob store are not transactional with each other,
so some operations leave blobs that no record references (a failed insert
after finalize, a replaced picture image, a deleted picture).  This module
reconciles the uploads directory against the records, in the same spirit as
the gallery metadata reconciliation it grew out of, but in the opposite
direction: records are authoritative and unreferenced files are removed.

The sweep is conservative:

- a blob referenced by any category or picture is never touched
- an unreferenced blob younger than the grace period is skipped, since it
  may belong to an operation still in flight
- staged blobs and interrupted ``.part`` writes follow the same age rule
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field

from picbatch.core.blob_store import BlobStore
from picbatch.core.record_store import RecordStore

logger = logging.getLogger(__name__)


@dataclass
class SweepReport:
    """Outcome of one reconciliation sweep.

    Attributes:
        referenced: Number of blobs still referenced by a record.
        orphaned: Names of unreferenced blobs past the grace period.
        deleted: Names actually removed (empty on a dry run).
        skipped_recent: Names of unreferenced blobs inside the grace period.
    """

    referenced: int = 0
    orphaned: list[str] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)
    skipped_recent: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "referenced": self.referenced,
            "orphaned": list(self.orphaned),
            "deleted": list(self.deleted),
            "skipped_recent": list(self.skipped_recent),
        }


def referenced_urls(records: RecordStore) -> set[str]:
    """Collect the image URL of every category and picture."""
    urls = {category.image_url for category in records.categories.find_many()}
    urls.update(picture.image_url for picture in records.pictures.find_many())
    return urls


def reconcile_orphans(
    blobs: BlobStore,
    records: RecordStore,
    grace_seconds: float,
    *,
    dry_run: bool = False,
    now: float | None = None,
) -> SweepReport:
    """Delete blobs that no record references and that are past the grace period.

    Args:
        blobs: Blob store to sweep.
        records: Record store whose references are authoritative.
        grace_seconds: Minimum blob age, in seconds, before removal.
        dry_run: Report what would be removed without removing anything.
        now: Reference time as a POSIX timestamp (defaults to the clock).

    Returns:
        A :class:`SweepReport`.
    """
    now = time.time() if now is None else now
    keep = referenced_urls(records)
    report = SweepReport()

    for info in blobs.list_blobs():
        if info.url is not None and info.url in keep:
            report.referenced += 1
            continue

        if now - info.modified_at < grace_seconds:
            report.skipped_recent.append(info.name)
            continue

        report.orphaned.append(info.name)
        if not dry_run:
            blobs.remove_unreferenced(info)
            report.deleted.append(info.name)

    logger.info(
        f"Reconciled blobs: {report.referenced} referenced, "
        f"{len(report.orphaned)} orphaned, {len(report.deleted)} deleted, "
        f"{len(report.skipped_recent)} recent"
    )
    return report
