"""Binary image storage on the local filesystem.

Blobs go through two states:

1. **Staged** — :meth:`BlobStore.store` writes the upload under a generated
   name with no extension.  The bytes are written to a hidden ``.part`` file
   first and moved into place with :func:`os.replace`, so a partially written
   file is never visible under a blob name.
2. **Finalized** — :meth:`BlobStore.finalize` renames the staged file to
   ``<name>.<extension>`` and returns the URL stored on the owning record.

Blob names come from :func:`uuid.uuid4`, so concurrent uploads never collide.

Directory Layout
----------------
::

    uploads/
        3f2a...9c            staged, awaiting finalize
        3f2a...9c.jpg        finalized, referenced as /uploads/3f2a...9c.jpg
        .7d1e...04.part      write in progress

Only the flat layout above is managed; subdirectories are ignored.
"""

from __future__ import annotations

import logging
import os
import uuid
from abc import ABC, abstractmethod
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path

from picbatch.core.errors import BlobNotFound, StoreUnavailable, UnknownFileType
from picbatch.core.models import StagedBlob

logger = logging.getLogger(__name__)

PART_SUFFIX = ".part"


@dataclass(frozen=True)
class BlobInfo:
    """A blob found on disk during a listing.

    Attributes:
        name: File name inside the uploads directory.
        url: Public URL for finalized blobs, ``None`` for staged or partial files.
        modified_at: Modification time as a POSIX timestamp.
    """

    name: str
    url: str | None
    modified_at: float

    @property
    def finalized(self) -> bool:
        return self.url is not None


class BlobStore(ABC):
    """Interface for storing image bytes under generated names."""

    @abstractmethod
    def store(self, content: bytes) -> StagedBlob:
        """Write ``content`` under a freshly generated name."""

    @abstractmethod
    def url_for(self, staged: StagedBlob, extension: str) -> str:
        """Return the URL ``staged`` will have once finalized with ``extension``."""

    @abstractmethod
    def finalize(self, staged: StagedBlob, extension: str) -> str:
        """Give a staged blob its permanent name and return its URL."""

    @abstractmethod
    def delete(self, url: str) -> None:
        """Delete a finalized blob.  Raises :class:`BlobNotFound` if absent."""

    @abstractmethod
    def discard(self, staged: StagedBlob) -> None:
        """Remove a staged blob that will never be finalized."""

    @abstractmethod
    def list_blobs(self) -> Iterator[BlobInfo]:
        """Yield every blob (staged, finalized or partial) currently stored."""

    @abstractmethod
    def remove_unreferenced(self, info: BlobInfo) -> None:
        """Remove a blob reported by :meth:`list_blobs`."""


class LocalBlobStore(BlobStore):
    """Blob store backed by a single flat directory.

    Args:
        root: Directory holding the blobs.  Created if missing.
        url_prefix: Prefix of the URLs returned by :meth:`finalize`.
    """

    def __init__(self, root: Path, url_prefix: str = "/uploads"):
        self.root = Path(root)
        self.url_prefix = url_prefix.rstrip("/")
        self.root.mkdir(parents=True, exist_ok=True)

    def store(self, content: bytes) -> StagedBlob:
        name = uuid.uuid4().hex
        part_path = self.root / f".{name}{PART_SUFFIX}"
        staged_path = self.root / name
        try:
            part_path.write_bytes(content)
            os.replace(part_path, staged_path)
        except OSError as exc:
            part_path.unlink(missing_ok=True)
            raise StoreUnavailable(f"Could not store upload: {exc}") from exc

        logger.debug(f"Staged blob {name} ({len(content)} bytes)")
        return StagedBlob(name=name, path=staged_path)

    def _filename(self, staged: StagedBlob, extension: str) -> str:
        extension = extension.strip().lstrip(".").lower()
        if not extension:
            raise UnknownFileType(staged.name)
        return f"{staged.name}.{extension}"

    def url_for(self, staged: StagedBlob, extension: str) -> str:
        return f"{self.url_prefix}/{self._filename(staged, extension)}"

    def finalize(self, staged: StagedBlob, extension: str) -> str:
        filename = self._filename(staged, extension)
        try:
            os.replace(staged.path, self.root / filename)
        except OSError as exc:
            raise StoreUnavailable(f"Could not finalize blob {staged.name}: {exc}") from exc

        logger.debug(f"Finalized blob {filename}")
        return f"{self.url_prefix}/{filename}"

    def delete(self, url: str) -> None:
        path = self.path_for(url)
        try:
            path.unlink()
        except FileNotFoundError as exc:
            raise BlobNotFound(f"Blob not found: {url}") from exc
        except OSError as exc:
            raise StoreUnavailable(f"Could not delete blob {url}: {exc}") from exc

        logger.info(f"Deleted blob {url}")

    def discard(self, staged: StagedBlob) -> None:
        try:
            staged.path.unlink(missing_ok=True)
        except OSError as exc:
            raise StoreUnavailable(f"Could not discard blob {staged.name}: {exc}") from exc

    def list_blobs(self) -> Iterator[BlobInfo]:
        try:
            entries = list(self.root.iterdir())
        except OSError as exc:
            raise StoreUnavailable(f"Could not list blobs: {exc}") from exc

        for path in entries:
            if not path.is_file():
                continue
            try:
                modified_at = path.stat().st_mtime
            except FileNotFoundError:
                # Removed between listing and stat.
                continue
            url = None
            if not path.name.startswith(".") and "." in path.name:
                url = f"{self.url_prefix}/{path.name}"
            yield BlobInfo(name=path.name, url=url, modified_at=modified_at)

    def remove_unreferenced(self, info: BlobInfo) -> None:
        try:
            (self.root / info.name).unlink(missing_ok=True)
        except OSError as exc:
            raise StoreUnavailable(f"Could not remove blob {info.name}: {exc}") from exc

    def path_for(self, url: str) -> Path:
        """Map a blob URL back to its file.

        Only the final path component is used, so a URL can never address a
        file outside :attr:`root`.
        """
        return self.root / Path(url).name

    def count(self) -> int:
        """Return the number of staged and finalized blobs on disk.

        Interrupted ``.part`` writes are not counted.  Used to inspect the
        directory; the service itself never calls it.
        """
        return sum(1 for info in self.list_blobs() if not info.name.startswith("."))
