"""Picbatch — FastAPI Application.

This module is the single entry point for the web application.  It defines
the ``create_app`` factory, all REST API routes, and the ``main()`` CLI function
that launches the uvicorn server.

Architecture
------------
Route handlers are thin: they decode multipart input into
:class:`~picbatch.core.models.Upload` objects and hand off to the core.

- **Sampling** requests go straight to :class:`~picbatch.core.sampler.Sampler`.
- **Mutations** go through
  :class:`~picbatch.core.coordinator.ConsistencyCoordinator`, which keeps
  records and image files in step.
- **Failures** raised by the core are translated into JSON error bodies by a
  single exception handler; the status code comes from the error class.
- **Uploaded images** are served by FastAPI's ``StaticFiles`` at the
  configured uploads URL prefix.

Endpoints
---------
========  ====================================  ==================================
Method    Path                                  Purpose
========  ====================================  ==================================
GET       ``/api/categories``                   List categories
GET       ``/api/categories/{id}``              Random batch (default size)
GET       ``/api/categories/{id}/{limit}``      Random batch of ``limit`` pictures
POST      ``/api/categories``                   Create a category (multipart)
DELETE    ``/api/categories/{id}``              Delete category and its pictures
POST      ``/api/pictures``                     Create a picture (multipart)
POST      ``/api/pictures/{id}``                Update matches and/or image
DELETE    ``/api/pictures/{id}``                Delete a picture
POST      ``/api/maintenance/reconcile``        Sweep orphaned image files
========  ====================================  ==================================

Usage
-----
CLI (installed entry point)::

    picbatch

Direct invocation::

    python -m picbatch.api.main

Any ASGI server can use the factory::

    uvicorn --factory picbatch.api.main:create_app

No application is built at import time; the stores are opened when the
factory runs.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, File, Form, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from picbatch import __version__
from picbatch.api.models import (
    CategoryListResponse,
    CategoryOut,
    ErrorResponse,
    MessageResponse,
    PictureOut,
    ReconcileRequest,
    ReconcileResponse,
    SampleResponse,
    UpdateResponse,
)
from picbatch.core.blob_store import LocalBlobStore
from picbatch.core.config import PicbatchConfig, config
from picbatch.core.coordinator import ConsistencyCoordinator
from picbatch.core.errors import PicbatchError
from picbatch.core.models import Upload
from picbatch.core.reconcile import reconcile_orphans
from picbatch.core.record_store import SQLiteRecordStore
from picbatch.core.sampler import Sampler

logger = logging.getLogger(__name__)


async def _read_upload(image: UploadFile | None) -> Upload | None:
    """Turn a multipart file field into an :class:`Upload`.

    Browsers send an empty, nameless part when no file was chosen; that is
    treated the same as an absent field.
    """
    if image is None:
        return None
    content = await image.read()
    if not content and not image.filename:
        return None
    return Upload(content=content, original_name=image.filename or "")


# ---------------------------------------------------------------------------
# Application factory.
# ---------------------------------------------------------------------------


def create_app(settings: PicbatchConfig | None = None) -> FastAPI:
    """Build the FastAPI application and its stores.

    Args:
        settings: Configuration to use.  Defaults to the global
            :data:`~picbatch.core.config.config`.

    Returns:
        A ready-to-serve application.  The stores, sampler and coordinator
        are available on ``app.state``.
    """
    settings = settings or config

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logger.info(
            f"Serving uploads from {settings.uploads_dir} at {settings.uploads_url_prefix}"
        )
        yield
        logger.info("Picbatch shutting down.")

    app = FastAPI(
        title="Picbatch",
        description="Random picture batches by category, with consistent image storage.",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    records = SQLiteRecordStore(settings.database_path)
    blobs = LocalBlobStore(settings.uploads_dir, settings.uploads_url_prefix)
    app.state.settings = settings
    app.state.records = records
    app.state.blobs = blobs
    app.state.sampler = Sampler(records.pictures, settings.recent_window)
    app.state.coordinator = ConsistencyCoordinator(
        records,
        blobs,
        empty_tag_policy=settings.empty_tag_policy,
        delete_replaced_blobs=settings.delete_replaced_blobs,
        delete_picture_blobs=settings.delete_picture_blobs,
    )

    app.mount(
        settings.uploads_url_prefix,
        StaticFiles(directory=str(settings.uploads_dir)),
        name="uploads",
    )

    # -----------------------------------------------------------------------
    # Error translation.
    # -----------------------------------------------------------------------

    @app.exception_handler(PicbatchError)
    async def handle_core_error(request: Request, exc: PicbatchError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}", exc_info=exc)
        else:
            logger.info(f"{request.method} {request.url.path} rejected: {exc.message}")
        body = ErrorResponse(
            error=exc.message,
            steps=exc.report.to_list() if exc.report else [],
        )
        return JSONResponse(status_code=exc.status_code, content=body.model_dump())

    # -----------------------------------------------------------------------
    # Categories.
    # -----------------------------------------------------------------------

    @app.get("/api/categories", response_model=CategoryListResponse)
    async def list_categories() -> dict:
        """Return every category, newest first."""
        categories = await asyncio.to_thread(records.categories.find_many)
        return {"categories": [category.to_dict() for category in categories]}

    async def _sample(category_id: str, limit: int) -> dict:
        limit = min(limit, settings.max_batch_limit)
        pictures = await asyncio.to_thread(
            app.state.sampler.sample, {"category_id": category_id}, limit
        )
        return {"pictures": [picture.to_dict() for picture in pictures]}

    @app.get("/api/categories/{category_id}", response_model=SampleResponse)
    async def sample_default(category_id: str) -> dict:
        """Return a random batch of the configured default size."""
        return await _sample(category_id, settings.default_batch_limit)

    @app.get("/api/categories/{category_id}/{limit}", response_model=SampleResponse)
    async def sample_batch(category_id: str, limit: int) -> dict:
        """Return a random batch of up to ``limit`` pictures from a category.

        Recently added pictures are guaranteed a share of every batch.  An
        unknown category or a non-positive limit yields an empty batch.

        Args:
            category_id: Category identity.
            limit: Requested batch size (clamped to ``max_batch_limit``).

        Returns:
            Dictionary with a single ``pictures`` key.
        """
        return await _sample(category_id, limit)

    @app.post("/api/categories", response_model=CategoryOut)
    async def create_category(
        title: str | None = Form(None),
        image: UploadFile | None = File(None),
    ) -> dict:
        """Create a category from a title and a cover image.

        Raises:
            MissingField: 400 if ``title`` or ``image`` is missing.
            UnknownFileType: 400 if the image file name has no extension.
        """
        upload = await _read_upload(image)
        category = await app.state.coordinator.create_category(title, upload)
        return category.to_dict()

    @app.delete("/api/categories/{category_id}", response_model=MessageResponse)
    async def delete_category(category_id: str) -> dict:
        """Delete a category, its pictures, and all of their image files.

        Returns:
            ``message`` plus one outcome per sub-step.  On failure the error
            body carries the same outcome list.
        """
        report = await app.state.coordinator.delete_category(category_id)
        return {"message": "Success!", "steps": report.to_list()}

    # -----------------------------------------------------------------------
    # Pictures.
    # -----------------------------------------------------------------------

    @app.post("/api/pictures", response_model=PictureOut)
    async def create_picture(
        category_id: str | None = Form(None, alias="categoryId"),
        matches: str | None = Form(None),
        image: UploadFile | None = File(None),
    ) -> dict:
        """Create a picture in an existing category.

        Raises:
            MissingField: 400 if ``image`` or ``matches`` is missing.
            InvalidReference: 400 if ``categoryId`` is unknown.
            UnknownFileType: 400 if the image file name has no extension.
        """
        upload = await _read_upload(image)
        picture = await app.state.coordinator.create_picture(category_id, matches, upload)
        return picture.to_dict()

    @app.post("/api/pictures/{picture_id}", response_model=UpdateResponse)
    async def update_picture(
        picture_id: str,
        matches: str | None = Form(None),
        image: UploadFile | None = File(None),
    ) -> dict:
        """Replace a picture's matches, and its image when one is uploaded.

        With a new image the file rename and the record update run
        concurrently; if one fails the other is not undone and the error body
        lists which step failed.
        """
        upload = await _read_upload(image)
        result = await app.state.coordinator.update_picture(picture_id, matches, upload)
        return {
            "message": "Successfully updated!",
            "picture": result.picture.to_dict(),
            "steps": result.report.to_list(),
        }

    @app.delete("/api/pictures/{picture_id}", response_model=MessageResponse)
    async def delete_picture(picture_id: str) -> dict:
        """Delete a picture record (the image file is kept unless configured)."""
        report = await app.state.coordinator.delete_picture(picture_id)
        return {"message": "success", "steps": report.to_list()}

    # -----------------------------------------------------------------------
    # Maintenance.
    # -----------------------------------------------------------------------

    @app.post("/api/maintenance/reconcile", response_model=ReconcileResponse)
    async def reconcile(req: ReconcileRequest | None = None) -> dict:
        """Remove image files that no record references."""
        req = req or ReconcileRequest()
        grace = settings.orphan_grace_seconds if req.grace_seconds is None else req.grace_seconds
        report = await asyncio.to_thread(
            reconcile_orphans, blobs, records, grace, dry_run=req.dry_run
        )
        return report.to_dict()

    return app


# ---------------------------------------------------------------------------
# CLI entry point.
# ---------------------------------------------------------------------------


def main() -> None:
    """Launch the uvicorn ASGI server.

    Reads host, port and log level from :data:`~picbatch.core.config.config`
    (``PICBATCH_SERVER_HOST``, ``PICBATCH_SERVER_PORT``,
    ``PICBATCH_LOG_LEVEL``).  Defaults to ``0.0.0.0:3000``.

    This function is registered as the ``picbatch`` console script in
    ``pyproject.toml``.
    """
    import uvicorn

    logging.basicConfig(
        level=config.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(
        "picbatch.api.main:create_app",
        factory=True,
        host=config.server_host,
        port=config.server_port,
        reload=False,
    )


if __name__ == "__main__":
    main()
