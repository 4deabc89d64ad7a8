"""Pydantic request and response models for the Picbatch API.

These models define the JSON schema for every API endpoint.  FastAPI uses
them for automatic request validation, serialisation, and OpenAPI
documentation generation.

Multipart form fields (``title``, ``categoryId``, ``matches``, ``image``) are
declared directly on the route handlers, so only JSON bodies and responses
appear here.

Models
------
CategoryOut, PictureOut
    Record shapes.  Field aliases keep the document-style keys
    (``_id``, ``categoryId``, ``imageUrl``, ``dateAdded``) on the wire.
SampleResponse
    Body of ``GET /api/categories/{id}/{limit}``.
StepOutcomeOut, MessageResponse, UpdateResponse, ErrorResponse
    Operation results, including one outcome per sub-step.
ReconcileRequest, ReconcileResponse
    Payload and result of ``POST /api/maintenance/reconcile``.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class CategoryOut(BaseModel):
    """A category record as served to clients."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., alias="_id", description="Opaque category identity.")
    title: str = Field(..., description="Display title.")
    image_url: str = Field(..., alias="imageUrl", description="Cover image URL.")
    date_added: datetime = Field(..., alias="dateAdded", description="Creation time (UTC).")


class PictureOut(BaseModel):
    """A picture record as served to clients."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., alias="_id", description="Opaque picture identity.")
    category_id: str = Field(..., alias="categoryId", description="Owning category identity.")
    matches: list[str] = Field(..., description="Lowercase match tags.")
    image_url: str = Field(..., alias="imageUrl", description="Image URL.")
    date_added: datetime = Field(..., alias="dateAdded", description="Creation time (UTC).")


class SampleResponse(BaseModel):
    """A randomly assembled batch of pictures (unordered, no duplicates)."""

    pictures: list[PictureOut]


class CategoryListResponse(BaseModel):
    """Every category, newest first."""

    categories: list[CategoryOut]


class StepOutcomeOut(BaseModel):
    """Outcome of one sub-step of a multi-step operation."""

    step: str
    ok: bool
    error: str | None = None


class MessageResponse(BaseModel):
    """Acknowledgement of a completed operation."""

    message: str
    steps: list[StepOutcomeOut] = Field(default_factory=list)


class UpdateResponse(BaseModel):
    """Result of ``POST /api/pictures/{id}``."""

    message: str
    picture: PictureOut
    steps: list[StepOutcomeOut] = Field(default_factory=list)


class ErrorResponse(BaseModel):
    """Body returned for every failure raised by the core.

    ``steps`` is only populated for failures of multi-step operations.
    """

    error: str
    steps: list[StepOutcomeOut] = Field(default_factory=list)


class ReconcileRequest(BaseModel):
    """Request body for ``POST /api/maintenance/reconcile``.

    Attributes:
        dry_run: Report orphans without deleting them.
        grace_seconds: Override of the configured grace period.
    """

    dry_run: bool = Field(default=False, description="Report without deleting.")
    grace_seconds: int | None = Field(
        default=None,
        ge=0,
        description="Minimum blob age before removal; defaults to configuration.",
    )


class ReconcileResponse(BaseModel):
    """Result of a reconciliation sweep."""

    referenced: int
    orphaned: list[str]
    deleted: list[str]
    skipped_recent: list[str]
