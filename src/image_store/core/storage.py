"""Filesystem storage backend for image records.

Layout under the storage root::

    <root>/<image_id>/original_<original_filename>
    <root>/<image_id>/<size_label>.<target_extension>
    <root>/<image_id>/<metadata_filename>

Every write goes to a temporary file in the image directory and is moved into
place with ``os.replace``, so readers never observe a partial file.
"""

import os
import tempfile
from pathlib import Path
from typing import BinaryIO, Callable, Iterator, Optional, Union

from pydantic import ValidationError

from .error_handling import classify_os_error, retry_on_lock
from .exceptions import (
    CorruptDataError,
    InvalidInputError,
    NotFoundError,
    StorageIOError,
)
from .logging_config import get_logger
from .models import ORIGINAL_SIZE_LABEL, ImageMetadata, ProcessingConfig, is_plain_name

ORIGINAL_PREFIX = "original_"
TEMP_PREFIX = ".tmp-"
DEFAULT_CHUNK_SIZE = 64 * 1024


class FileSystemStorage:
    """Atomic persistence and lookup of originals, variants and metadata."""

    def __init__(
        self,
        root: Union[str, Path],
        metadata_filename: str = "metadata.json",
        variant_extension: str = "webp",
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ):
        self.root = Path(root)
        self.metadata_filename = metadata_filename
        self.variant_extension = variant_extension.lower().lstrip(".")
        self._chunk_size = chunk_size
        self._logger = get_logger("storage")

    @classmethod
    def from_config(cls, config: ProcessingConfig) -> "FileSystemStorage":
        return cls(
            root=config.storage_root,
            metadata_filename=config.metadata_filename,
            variant_extension=config.target_extension,
        )

    def image_dir(self, image_id: str) -> Path:
        """Directory holding an image record; rejects ids that are not plain names."""
        if not isinstance(image_id, str) or not is_plain_name(image_id):
            raise InvalidInputError(
                "Invalid image id", reason="invalid_image_id", operation="image_dir"
            )
        return self.root / image_id

    def store_original(
        self,
        stream: Optional[BinaryIO],
        image_id: str,
        original_name: str,
        max_size: Optional[int] = None,
    ) -> Path:
        """
        Persist the uploaded bytes as the original asset and return its path.

        When ``max_size`` is given the copy stops as soon as the stream yields
        more bytes than that, whatever size the upload declared.
        """
        if stream is None or not callable(getattr(stream, "read", None)):
            raise InvalidInputError(
                "Upload stream is missing",
                reason="unreadable_stream",
                operation="store_original",
                image_id=image_id,
            )
        readable = getattr(stream, "readable", None)
        if callable(readable) and not readable():
            raise InvalidInputError(
                "Upload stream is not readable",
                reason="unreadable_stream",
                operation="store_original",
                image_id=image_id,
            )

        filename = Path(str(original_name).replace("\\", "/")).name
        if not is_plain_name(filename):
            raise InvalidInputError(
                "Invalid original file name",
                reason="invalid_filename",
                operation="store_original",
                image_id=image_id,
            )

        target = self.image_dir(image_id) / f"{ORIGINAL_PREFIX}{filename}"
        try:
            path = self._atomic_write(
                target,
                lambda handle: self._copy_stream(stream, handle, image_id, max_size),
                "store_original",
                image_id,
            )
        except InvalidInputError:
            self._remove_empty_dir(target.parent)
            raise
        self._logger.debug(f"Stored original for {image_id} at {path}")
        return path

    def store_variant(self, image_id: str, size_label: str, data: bytes) -> Path:
        """Persist an encoded variant under ``<size_label>.<extension>``."""
        if not is_plain_name(size_label) or size_label == ORIGINAL_SIZE_LABEL:
            raise InvalidInputError(
                "Invalid size label",
                reason="invalid_size",
                operation="store_variant",
                image_id=image_id,
            )
        target = self.image_dir(image_id) / f"{size_label}.{self.variant_extension}"
        return self._atomic_write(
            target, lambda handle: handle.write(data), "store_variant", image_id
        )

    def store_metadata(self, image_id: str, metadata: ImageMetadata) -> Path:
        """Replace the metadata sidecar with a complete new document."""
        payload = metadata.model_dump_json().encode("utf-8")
        target = self.image_dir(image_id) / self.metadata_filename
        return self._atomic_write(
            target, lambda handle: handle.write(payload), "store_metadata", image_id
        )

    @retry_on_lock()
    def get_metadata(self, image_id: str) -> Optional[ImageMetadata]:
        """Read the metadata sidecar; None when the sidecar does not exist."""
        path = self.image_dir(image_id) / self.metadata_filename
        try:
            raw = path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise classify_os_error(exc, "get_metadata", image_id) from exc

        try:
            return ImageMetadata.model_validate_json(raw)
        except ValidationError as exc:
            raise CorruptDataError(
                "Metadata sidecar could not be parsed",
                operation="get_metadata",
                image_id=image_id,
            ) from exc

    def image_exists(self, image_id: str) -> bool:
        """True iff the image directory exists, whatever it contains."""
        return self.image_dir(image_id).is_dir()

    def resolve_variant_path(self, image_id: str, size_label: str) -> Optional[Path]:
        """
        Resolve the stored file for a size label.

        "original" resolves to the first ``original_*`` file in name order;
        any other label only to an existing ``<label>.<extension>`` file.
        """
        if not is_plain_name(size_label):
            return None
        folder = self.image_dir(image_id)
        try:
            if not folder.is_dir():
                return None
            if size_label == ORIGINAL_SIZE_LABEL:
                originals = sorted(
                    entry
                    for entry in folder.iterdir()
                    if entry.name.startswith(ORIGINAL_PREFIX) and entry.is_file()
                )
                return originals[0] if originals else None

            candidate = folder / f"{size_label}.{self.variant_extension}"
            return candidate if candidate.is_file() else None
        except OSError as exc:
            self._logger.error(
                f"Error accessing image path: {image_id}, size: {size_label}",
                exc_info=True,
            )
            raise classify_os_error(exc, "resolve_variant_path", image_id) from exc

    def iter_asset(self, path: Path) -> Iterator[bytes]:
        """Yield the bytes of a resolved asset in chunks."""
        try:
            handle = open(path, "rb")
        except OSError as exc:
            raise classify_os_error(exc, "iter_asset") from exc
        with handle:
            while True:
                try:
                    chunk = handle.read(self._chunk_size)
                except OSError as exc:
                    raise classify_os_error(exc, "iter_asset") from exc
                if not chunk:
                    break
                yield chunk

    def _copy_stream(
        self,
        stream: BinaryIO,
        handle: BinaryIO,
        image_id: str,
        max_size: Optional[int] = None,
    ) -> None:
        copied = 0
        while True:
            try:
                chunk = stream.read(self._chunk_size)
            except (OSError, ValueError) as exc:
                raise InvalidInputError(
                    "Upload stream could not be read",
                    reason="unreadable_stream",
                    operation="store_original",
                    image_id=image_id,
                ) from exc
            if not chunk:
                break
            if not isinstance(chunk, (bytes, bytearray, memoryview)):
                raise InvalidInputError(
                    "Upload stream must be binary",
                    reason="unreadable_stream",
                    operation="store_original",
                    image_id=image_id,
                )
            copied += len(chunk)
            if max_size is not None and copied > max_size:
                raise InvalidInputError(
                    f"Upload exceeds the maximum size of {max_size} bytes",
                    reason="file_too_large",
                    operation="store_original",
                    image_id=image_id,
                )
            handle.write(chunk)

    def _remove_empty_dir(self, folder: Path) -> None:
        try:
            folder.rmdir()
        except OSError:
            # Not empty, or already gone
            self._logger.debug(f"Kept non-empty image directory {folder}")

    def _atomic_write(
        self,
        target: Path,
        writer: Callable[[BinaryIO], object],
        operation: str,
        image_id: str,
    ) -> Path:
        """Write through a temporary file in the target directory, then rename."""
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            fd, temp_name = tempfile.mkstemp(
                prefix=TEMP_PREFIX, suffix=".part", dir=target.parent
            )
        except OSError as exc:
            self._logger.error(f"{operation} failed for image {image_id}", exc_info=True)
            raise classify_os_error(exc, operation, image_id) from exc

        try:
            with os.fdopen(fd, "wb") as handle:
                writer(handle)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(temp_name, target)
        except OSError as exc:
            self._logger.error(f"{operation} failed for image {image_id}", exc_info=True)
            error = classify_os_error(exc, operation, image_id)
            if isinstance(error, NotFoundError):
                # The image directory vanished mid-write
                error = StorageIOError(
                    "Storage operation failed", operation=operation, image_id=image_id
                )
            raise error from exc
        finally:
            if os.path.exists(temp_name):
                try:
                    os.remove(temp_name)
                except OSError:
                    self._logger.error(f"Failed to delete temp file: {temp_name}")
        return target
