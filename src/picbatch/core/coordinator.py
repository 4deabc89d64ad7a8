"""Cross-store mutations for categories and pictures.

Every picture and category owns exactly one image blob.  The record store and
the blob store are not transactional with each other, so each operation below
runs its steps in a fixed order with explicit commit points.

Operation Summary
-----------------
create_category
    validate → stage blob → finalize blob → insert record.
create_picture
    validate → confirm category exists → stage → finalize → insert.
update_picture
    Without an image: patch ``matches``.
    With an image: confirm picture exists → stage blob, then finalize the blob
    and patch ``matches`` + ``image_url`` concurrently.
delete_category
    Concurrently: every picture of the category (record, then blob) and the
    category itself (record, then blob).
delete_picture
    Remove the record (and, when configured, its blob).

Failure Semantics
-----------------
Nothing is rolled back.  Concurrent sub-steps are joined with
:func:`asyncio.gather` and every outcome is collected into an
:class:`OperationReport`; a failure raises a single error carrying the report.
A staged blob whose finalize fails during a create is discarded straight away.

Known gaps, cleaned up by
:func:`~picbatch.core.reconcile.reconcile_orphans`:

- a record insert that fails after finalize leaves an orphaned blob
- replacing a picture image leaves the previous blob unless
  ``delete_replaced_blobs`` is enabled
- deleting a single picture leaves its blob unless ``delete_picture_blobs``
  is enabled

A caller that times out must treat the outcome as unknown.  Concurrent
updates to the same picture are last-write-wins.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable
from dataclasses import dataclass, field
from typing import Any

from picbatch.core.blob_store import BlobStore
from picbatch.core.errors import (
    InvalidReference,
    MissingField,
    NotFound,
    PicbatchError,
    StoreUnavailable,
    UnknownFileType,
    UpdateFailed,
)
from picbatch.core.matches import EmptyTagPolicy, parse_matches
from picbatch.core.models import Category, Picture, StagedBlob, Upload, declared_extension
from picbatch.core.record_store import RecordStore

logger = logging.getLogger(__name__)


@dataclass
class StepOutcome:
    """Result of one sub-step of an operation.

    Attributes:
        step: Step label, e.g. ``"picture:<id>:blob"``.
        ok: Whether the step completed.
        error: Failure message when ``ok`` is false.
    """

    step: str
    ok: bool
    error: str | None = None

    def to_dict(self) -> dict:
        return {"step": self.step, "ok": self.ok, "error": self.error}


@dataclass
class OperationReport:
    """Every sub-step outcome of one coordinator operation."""

    operation: str
    outcomes: list[StepOutcome] = field(default_factory=list)

    @property
    def failed(self) -> list[StepOutcome]:
        return [outcome for outcome in self.outcomes if not outcome.ok]

    @property
    def ok(self) -> bool:
        return not self.failed

    def outcome(self, step: str) -> StepOutcome | None:
        """Return the outcome recorded for ``step``, if any."""
        return next((o for o in self.outcomes if o.step == step), None)

    def to_list(self) -> list[dict]:
        return [outcome.to_dict() for outcome in self.outcomes]


@dataclass
class UpdateResult:
    """A committed picture update together with its step outcomes."""

    picture: Picture
    report: OperationReport


def _require_image(upload: Upload | None) -> Upload:
    if upload is None or not upload.content:
        raise MissingField("image")
    return upload


def _require_extension(upload: Upload) -> str:
    extension = declared_extension(upload.original_name)
    if not extension:
        raise UnknownFileType(upload.original_name)
    return extension


class ConsistencyCoordinator:
    """Drive the record store and the blob store through multi-step mutations.

    Store calls are blocking and run in worker threads via
    :func:`asyncio.to_thread`.

    Args:
        records: Category and picture collections.
        blobs: Image blob storage.
        empty_tag_policy: Treatment of empty tags in ``matches`` input.
        delete_replaced_blobs: Delete a picture's previous blob after an
            image replace has been committed.
        delete_picture_blobs: Delete a picture's blob when the picture is
            deleted on its own.
    """

    def __init__(
        self,
        records: RecordStore,
        blobs: BlobStore,
        *,
        empty_tag_policy: EmptyTagPolicy = "keep",
        delete_replaced_blobs: bool = False,
        delete_picture_blobs: bool = False,
    ):
        self.records = records
        self.blobs = blobs
        self.empty_tag_policy = empty_tag_policy
        self.delete_replaced_blobs = delete_replaced_blobs
        self.delete_picture_blobs = delete_picture_blobs

    # ------------------------------------------------------------------
    # Step helpers
    # ------------------------------------------------------------------

    async def _step(self, report: OperationReport, step: str, func, *args) -> Any:
        """Run one blocking store call and record its outcome.

        The exception is re-raised after being recorded so that dependent
        steps in the same branch do not run.
        """
        try:
            result = await asyncio.to_thread(func, *args)
        except PicbatchError as exc:
            logger.error(f"{report.operation}: step {step} failed: {exc.message}")
            report.outcomes.append(StepOutcome(step, False, exc.message))
            raise
        except Exception as exc:
            logger.error(f"{report.operation}: step {step} failed", exc_info=True)
            report.outcomes.append(StepOutcome(step, False, str(exc)))
            raise
        report.outcomes.append(StepOutcome(step, True))
        return result

    @staticmethod
    async def _join(*branches: Awaitable) -> list[Any]:
        """Await every branch; failures are already recorded in the report."""
        return await asyncio.gather(*branches, return_exceptions=True)

    async def _store_blob(self, upload: Upload, extension: str) -> str:
        staged = await asyncio.to_thread(self.blobs.store, upload.content)
        try:
            return await asyncio.to_thread(self.blobs.finalize, staged, extension)
        except PicbatchError:
            await self._discard(staged)
            raise

    async def _discard(self, staged: StagedBlob) -> None:
        """Remove a staged blob; a failure leaves it for the reconciliation sweep."""
        try:
            await asyncio.to_thread(self.blobs.discard, staged)
        except PicbatchError as exc:
            logger.warning(f"Staged blob {staged.name} was not discarded: {exc.message}")

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    async def create_category(self, title: str | None, upload: Upload | None) -> Category:
        """Store the cover image and insert a new category.

        Raises:
            MissingField: ``title`` or the image is missing.
            UnknownFileType: The image name has no extension.
            StoreUnavailable: A store failed.  If the insert failed the
                finalized blob is left behind as an orphan.
        """
        if not title or not title.strip():
            raise MissingField("title")
        upload = _require_image(upload)
        extension = _require_extension(upload)

        image_url = await self._store_blob(upload, extension)
        category = Category(title=title.strip(), image_url=image_url)
        try:
            await asyncio.to_thread(self.records.categories.insert, category)
        except StoreUnavailable:
            logger.warning(f"Category insert failed; blob {image_url} is orphaned")
            raise

        logger.info(f"Created category {category.id} ({category.title!r})")
        return category

    async def create_picture(
        self,
        category_id: str | None,
        matches_text: str | None,
        upload: Upload | None,
    ) -> Picture:
        """Store the image and insert a new picture under an existing category.

        The category lookup happens before any blob is written, so a doomed
        request never leaves files behind.

        Raises:
            MissingField: The image or ``matches`` is missing.
            InvalidReference: ``category_id`` does not name a category.
            UnknownFileType: The image name has no extension.
            StoreUnavailable: A store failed.
        """
        upload = _require_image(upload)
        matches = parse_matches(matches_text, self.empty_tag_policy)

        category = None
        if category_id:
            category = await asyncio.to_thread(self.records.categories.find_by_id, category_id)
        if category is None:
            raise InvalidReference(f"Category {category_id!r} does not exist")

        extension = _require_extension(upload)
        image_url = await self._store_blob(upload, extension)
        picture = Picture(category_id=category.id, matches=matches, image_url=image_url)
        try:
            await asyncio.to_thread(self.records.pictures.insert, picture)
        except StoreUnavailable:
            logger.warning(f"Picture insert failed; blob {image_url} is orphaned")
            raise

        logger.info(f"Created picture {picture.id} in category {category.id}")
        return picture

    # ------------------------------------------------------------------
    # Update
    # ------------------------------------------------------------------

    async def update_picture(
        self,
        picture_id: str,
        matches_text: str | None,
        upload: Upload | None = None,
    ) -> UpdateResult:
        """Replace a picture's tags, and optionally its image.

        With a new image the blob finalize and the record patch are issued
        together.  If either fails the other is not undone: the picture may
        already point at the new blob, or the new blob may exist unreferenced.

        Raises:
            MissingField: ``matches`` is missing.
            NotFound: No picture has ``picture_id``.
            UnknownFileType: The new image name has no extension.
            UpdateFailed: A sub-step failed; ``report`` says which.
        """
        matches = parse_matches(matches_text, self.empty_tag_policy)
        report = OperationReport("update_picture")

        if upload is None or not upload.content:
            try:
                picture = await self._step(
                    report,
                    "record",
                    self.records.pictures.update_by_id,
                    picture_id,
                    {"matches": matches},
                )
            except StoreUnavailable as exc:
                raise UpdateFailed("Update failed!", report=report) from exc
            if picture is None:
                raise NotFound(f"Picture {picture_id!r} not found")
            logger.info(f"Updated matches of picture {picture_id}")
            return UpdateResult(picture, report)

        previous = await asyncio.to_thread(self.records.pictures.find_by_id, picture_id)
        if previous is None:
            raise NotFound(f"Picture {picture_id!r} not found")
        extension = _require_extension(upload)

        try:
            staged = await self._step(report, "blob:store", self.blobs.store, upload.content)
        except StoreUnavailable as exc:
            raise UpdateFailed("Update failed!", report=report) from exc
        image_url = self.blobs.url_for(staged, extension)

        _, picture = await self._join(
            self._step(report, "blob:finalize", self.blobs.finalize, staged, extension),
            self._step(
                report,
                "record",
                self.records.pictures.update_by_id,
                picture_id,
                {"matches": matches, "image_url": image_url},
            ),
        )
        if not report.ok:
            raise UpdateFailed("Update failed!", report=report)
        if picture is None:
            # Deleted between the lookup and the patch.
            logger.warning(f"Picture {picture_id} vanished during update; blob {image_url} is orphaned")
            raise NotFound(f"Picture {picture_id!r} not found")

        if previous.image_url != image_url:
            if self.delete_replaced_blobs:
                try:
                    await self._step(report, "blob:delete-previous", self.blobs.delete, previous.image_url)
                except PicbatchError:
                    logger.warning(f"Previous blob {previous.image_url} of picture {picture_id} was not removed")
            else:
                logger.info(f"Previous blob {previous.image_url} of picture {picture_id} left in place")

        logger.info(f"Updated picture {picture_id} with new image {image_url}")
        return UpdateResult(picture, report)

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    async def _delete_picture_and_blob(self, report: OperationReport, picture: Picture) -> None:
        removed = await self._step(
            report, f"picture:{picture.id}:record", self.records.pictures.delete_by_id, picture.id
        )
        if removed is not None:
            await self._step(report, f"picture:{picture.id}:blob", self.blobs.delete, removed.image_url)

    async def _delete_category_pictures(self, report: OperationReport, category_id: str) -> None:
        pictures = await self._step(
            report,
            "pictures:find",
            self.records.pictures.find_many,
            {"category_id": category_id},
        )
        await self._join(*(self._delete_picture_and_blob(report, picture) for picture in pictures))

    async def _delete_category_record(self, report: OperationReport, category_id: str) -> None:
        category = await self._step(
            report, "category:find", self.records.categories.find_by_id, category_id
        )
        if category is None:
            return
        removed = await self._step(
            report, "category:record", self.records.categories.delete_by_id, category_id
        )
        if removed is not None:
            await self._step(report, "category:blob", self.blobs.delete, removed.image_url)

    async def delete_category(self, category_id: str) -> OperationReport:
        """Delete a category, every picture in it, and all of their blobs.

        The picture branch and the category branch run independently.
        Completed deletions are kept when another step fails.  Deleting an
        unknown category is a no-op.

        Raises:
            StoreUnavailable: At least one step failed (including a blob that
                was already missing); ``report`` lists every outcome.
        """
        report = OperationReport("delete_category")
        await self._join(
            self._delete_category_pictures(report, category_id),
            self._delete_category_record(report, category_id),
        )
        if not report.ok:
            raise StoreUnavailable(
                f"Delete of category {category_id!r} failed in {len(report.failed)} step(s)",
                report=report,
            )
        logger.info(f"Deleted category {category_id} ({len(report.outcomes)} steps)")
        return report

    async def delete_picture(self, picture_id: str) -> OperationReport:
        """Delete a picture record.

        The blob stays on disk unless ``delete_picture_blobs`` is enabled.
        Deleting an unknown picture is a no-op.

        Raises:
            StoreUnavailable: The record or (when enabled) blob delete failed.
        """
        report = OperationReport("delete_picture")
        try:
            removed = await self._step(
                report, "record", self.records.pictures.delete_by_id, picture_id
            )
            if removed is not None:
                if self.delete_picture_blobs:
                    await self._step(report, "blob", self.blobs.delete, removed.image_url)
                else:
                    logger.info(f"Blob {removed.image_url} of deleted picture {picture_id} left in place")
        except PicbatchError as exc:
            raise StoreUnavailable(
                f"Delete of picture {picture_id!r} failed", report=report
            ) from exc

        logger.info(f"Deleted picture {picture_id}")
        return report
