"""Error taxonomy for the image store.

Every failure the core reports is an ``ImageStoreError`` carrying an
``ErrorKind``. Lower layers classify their own failures; callers only decide
whether to continue with sibling items or abort the request.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """Language-neutral classification of failures."""

    INVALID_INPUT = "invalid_input"
    NOT_FOUND = "not_found"
    ACCESS_DENIED = "access_denied"
    CORRUPT_DATA = "corrupt_data"
    IO_FAILURE = "io_failure"
    LOCKED = "locked"
    INTERNAL = "internal"


class ImageStoreError(Exception):
    """Base exception for all image store errors."""

    kind: ErrorKind = ErrorKind.INTERNAL

    def __init__(
        self,
        message: str,
        *,
        reason: Optional[str] = None,
        operation: Optional[str] = None,
        image_id: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.reason = reason
        self.operation = operation
        self.image_id = image_id

    def __str__(self) -> str:
        context = []
        if self.operation:
            context.append(f"operation={self.operation}")
        if self.image_id:
            context.append(f"image_id={self.image_id}")
        if context:
            return f"{self.message} ({', '.join(context)})"
        return self.message


class InvalidInputError(ImageStoreError):
    """Client-attributable problem: bad extension, oversized file, bad request."""

    kind = ErrorKind.INVALID_INPUT


class NotFoundError(ImageStoreError):
    """A requested image or asset does not exist."""

    kind = ErrorKind.NOT_FOUND


class CorruptDataError(ImageStoreError):
    """Undecodable image payload or unparseable sidecar."""

    kind = ErrorKind.CORRUPT_DATA


class StorageIOError(ImageStoreError):
    """Disk access failure, wrapped with operation and image id."""

    kind = ErrorKind.IO_FAILURE


class AccessDeniedError(StorageIOError):
    """Permission denied on the storage root or an asset."""

    kind = ErrorKind.ACCESS_DENIED


class ResourceLockedError(StorageIOError):
    """A file could not be read because another process holds it."""

    kind = ErrorKind.LOCKED


class InternalError(ImageStoreError):
    """Unanticipated failure; details are only logged."""

    kind = ErrorKind.INTERNAL


class ConfigurationError(ImageStoreError):
    """Error raised for invalid configuration options."""

    kind = ErrorKind.INTERNAL
