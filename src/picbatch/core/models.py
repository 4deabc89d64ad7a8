"""Record and upload types shared by the stores and the coordinator.

The ``to_dict`` methods produce the JSON wire shape served by the API.  Field
names follow the document layout clients already consume (``_id``,
``categoryId``, ``imageUrl``, ``dateAdded``).
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path


def new_id() -> str:
    """Return a fresh opaque record identity."""
    return uuid.uuid4().hex


def utcnow() -> datetime:
    """Return the current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


@dataclass
class Category:
    """A named group of pictures with its own cover image.

    Attributes:
        title: Display title.
        image_url: URL of the cover image blob.
        id: Opaque unique identity.
        date_added: Creation time (UTC).
    """

    title: str
    image_url: str
    id: str = field(default_factory=new_id)
    date_added: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        return {
            "_id": self.id,
            "title": self.title,
            "imageUrl": self.image_url,
            "dateAdded": self.date_added.isoformat(),
        }


@dataclass
class Picture:
    """A tagged image belonging to a category.

    Attributes:
        category_id: Identity of the owning category.  Integrity is checked
            by the coordinator at creation time only.
        matches: Lowercase, trimmed tags in their submitted order.
        image_url: URL of the image blob.
        id: Opaque unique identity.
        date_added: Creation time (UTC), drives recency ordering.
    """

    category_id: str
    matches: list[str]
    image_url: str
    id: str = field(default_factory=new_id)
    date_added: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        return {
            "_id": self.id,
            "categoryId": self.category_id,
            "matches": list(self.matches),
            "imageUrl": self.image_url,
            "dateAdded": self.date_added.isoformat(),
        }


@dataclass(frozen=True)
class Upload:
    """A decoded upload: the raw image bytes and the client-declared file name."""

    content: bytes
    original_name: str


@dataclass(frozen=True)
class StagedBlob:
    """A stored blob that has not yet been given its permanent name.

    Attributes:
        name: Generated file name (no extension).
        path: Location of the staged file on disk.
    """

    name: str
    path: Path


def declared_extension(original_name: str) -> str | None:
    """Return the lowercased extension of ``original_name``, or ``None``.

    Only the text after the last dot counts, so ``"photo.final.JPG"`` yields
    ``"jpg"`` and ``"photo"`` yields ``None``.
    """
    parts = original_name.split(".")
    if len(parts) == 1:
        return None
    return parts[-1].lower()
