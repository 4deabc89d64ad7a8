"""Tests for picbatch.core.reconcile — orphaned blob sweep."""

from __future__ import annotations

import time

import pytest

from picbatch.core.coordinator import ConsistencyCoordinator
from picbatch.core.reconcile import reconcile_orphans, referenced_urls


def _name(url: str) -> str:
    return url.rsplit("/", 1)[1]


class TestReferencedUrls:
    def test_collects_category_and_picture_urls(self, record_store, category, add_pictures):
        pictures = add_pictures(category.id, 2)
        assert referenced_urls(record_store) == {
            category.image_url,
            *(p.image_url for p in pictures),
        }


class TestReconcile:
    def test_referenced_blobs_survive(self, record_store, blob_store, category, add_pictures):
        add_pictures(category.id, 3)

        report = reconcile_orphans(blob_store, record_store, grace_seconds=0)

        assert report.referenced == 4
        assert report.deleted == []

    def test_unreferenced_blob_deleted(self, record_store, blob_store, category):
        orphan = blob_store.finalize(blob_store.store(b"lost"), "png")

        report = reconcile_orphans(blob_store, record_store, grace_seconds=0)

        assert report.deleted == [_name(orphan)]
        assert not blob_store.path_for(orphan).exists()
        assert blob_store.path_for(category.image_url).exists()

    def test_stale_staged_blob_deleted(self, record_store, blob_store):
        staged = blob_store.store(b"never finalized")

        report = reconcile_orphans(blob_store, record_store, grace_seconds=0)

        assert staged.name in report.deleted
        assert not staged.path.exists()

    def test_recent_orphans_skipped(self, record_store, blob_store):
        orphan = blob_store.finalize(blob_store.store(b"in flight"), "png")

        report = reconcile_orphans(blob_store, record_store, grace_seconds=3600)

        assert report.skipped_recent == [_name(orphan)]
        assert blob_store.path_for(orphan).exists()

    def test_grace_measured_from_now(self, record_store, blob_store):
        orphan = blob_store.finalize(blob_store.store(b"old"), "png")

        report = reconcile_orphans(
            blob_store, record_store, grace_seconds=3600, now=time.time() + 7200
        )

        assert report.deleted == [_name(orphan)]

    def test_dry_run_deletes_nothing(self, record_store, blob_store):
        orphan = blob_store.finalize(blob_store.store(b"lost"), "png")

        report = reconcile_orphans(blob_store, record_store, grace_seconds=0, dry_run=True)

        assert report.orphaned == [_name(orphan)]
        assert report.deleted == []
        assert blob_store.path_for(orphan).exists()

    @pytest.mark.asyncio
    async def test_sweeps_blob_left_by_picture_delete(
        self, record_store, blob_store, category, png_upload
    ):
        coordinator = ConsistencyCoordinator(record_store, blob_store)
        picture = await coordinator.create_picture(category.id, "cat", png_upload)
        await coordinator.delete_picture(picture.id)

        report = reconcile_orphans(blob_store, record_store, grace_seconds=0)

        assert report.deleted == [_name(picture.image_url)]
        assert blob_store.path_for(category.image_url).exists()
