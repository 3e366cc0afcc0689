"""Error taxonomy for the mosaic pipeline and tile read path."""

from typing import TYPE_CHECKING, Optional

from fastapi import HTTPException, status

if TYPE_CHECKING:
    from app.api.v1.features.imagery.mosaic.schemas import ProgressEvent


class MosaicError(Exception):
    """Base class for mosaic errors."""


class NoDataError(MosaicError):
    """The catalog returned no usable scenes for the request."""

    def __init__(self, message: str, progress: Optional["ProgressEvent"] = None):
        super().__init__(message)
        self.progress = progress


class CatalogError(MosaicError):
    """The catalog could not be queried."""


class FetchError(MosaicError):
    """A single scene asset could not be downloaded or decoded."""

    def __init__(self, scene_id: str, reason: str):
        super().__init__(f"Failed to fetch scene {scene_id}: {reason}")
        self.scene_id = scene_id
        self.reason = reason


class CacheCorruptionError(MosaicError):
    """Mosaic metadata exists but cannot be parsed."""


class InvalidRequestError(MosaicError):
    """Malformed tile coordinates or unsupported format."""


class NotFoundError(MosaicError):
    """Well-formed request for a mosaic or tile that is not cached."""


def invalid_request_error(err: InvalidRequestError) -> HTTPException:
    """Return HTTP 400 for a malformed request."""
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(err))


def not_found_error(err: NotFoundError) -> HTTPException:
    """Return HTTP 404 for a missing mosaic or tile."""
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(err))
