"""Failure taxonomy raised by the Picbatch core.

Validation failures (``MissingField``, ``InvalidReference``,
``UnknownFileType``) are caused by the client and map to 4xx responses.
Store failures (``StoreUnavailable``, ``UpdateFailed``) map to 5xx responses
and are logged server-side.  None of them are retried automatically.

Failures raised from a concurrent join carry the
:class:`~picbatch.core.coordinator.OperationReport` describing every
sub-step, so callers can tell which step failed without reading logs.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from picbatch.core.coordinator import OperationReport


class PicbatchError(Exception):
    """Base class for every failure surfaced by the core."""

    status_code = 500

    def __init__(self, message: str, *, report: OperationReport | None = None):
        super().__init__(message)
        self.message = message
        self.report = report


class MissingField(PicbatchError):
    """A required input (image, matches, title) is absent or empty."""

    status_code = 400

    def __init__(self, field: str, message: str | None = None):
        super().__init__(message or f"Missing field `{field}`!")
        self.field = field


class InvalidReference(PicbatchError):
    """A foreign reference (a picture's category) does not resolve."""

    status_code = 400


class UnknownFileType(PicbatchError):
    """The declared upload name carries no extension."""

    status_code = 400

    def __init__(self, original_name: str):
        super().__init__("Unknown file type!")
        self.original_name = original_name


class NotFound(PicbatchError):
    """A point operation targeted an identity that does not exist."""

    status_code = 404


class BlobNotFound(NotFound):
    """A blob delete targeted a file that is not on disk."""


class UpdateFailed(PicbatchError):
    """One or more sub-steps of a picture update failed."""

    status_code = 500


class StoreUnavailable(PicbatchError):
    """Wraps an I/O failure of the record store or the blob store."""

    status_code = 500
