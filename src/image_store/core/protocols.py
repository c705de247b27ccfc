"""Protocol definitions for dependency injection and testability."""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, BinaryIO, Iterator, List, Optional, Protocol

from PIL import Image

from .models import (
    ImageMetadata,
    IngestResult,
    ProcessingConfig,
    SizeTarget,
    UploadFile,
)


class StorageBackendProtocol(Protocol):
    """Protocol for the on-disk layout of image records."""

    def store_original(
        self,
        stream: BinaryIO,
        image_id: str,
        original_name: str,
        max_size: Optional[int] = None,
    ) -> Path:
        """Atomically persist the uploaded bytes, refusing more than max_size."""
        ...

    def store_variant(self, image_id: str, size_label: str, data: bytes) -> Path:
        """Atomically persist an encoded variant."""
        ...

    def store_metadata(self, image_id: str, metadata: ImageMetadata) -> None:
        """Atomically replace the metadata sidecar."""
        ...

    def get_metadata(self, image_id: str) -> Optional[ImageMetadata]:
        """Read the metadata sidecar, None when absent."""
        ...

    def image_exists(self, image_id: str) -> bool:
        """Check whether an image record exists."""
        ...

    def resolve_variant_path(self, image_id: str, size_label: str) -> Optional[Path]:
        """Resolve the stored asset for a size label."""
        ...

    def iter_asset(self, path: Path) -> Iterator[bytes]:
        """Stream a resolved asset in chunks."""
        ...


class MetadataExtractorProtocol(Protocol):
    """Protocol for reading embedded camera and location tags."""

    def extract(self, path: Path) -> ImageMetadata:
        """Extract metadata from the image at path."""
        ...


class VariantGeneratorProtocol(Protocol):
    """Protocol for decoding and resizing images."""

    def decode(self, path: Path) -> Image.Image:
        """Decode the image at path into memory."""
        ...

    def generate(self, image: Image.Image, target: SizeTarget) -> bytes:
        """Produce the encoded variant for one ladder entry."""
        ...


class LoggerProtocol(Protocol):
    """Protocol for logging operations."""

    def debug(self, message: str, context: Any = None, **kwargs: Any) -> None:
        """Log debug message."""
        ...

    def info(self, message: str, context: Any = None, **kwargs: Any) -> None:
        """Log info message."""
        ...

    def warning(self, message: str, context: Any = None, **kwargs: Any) -> None:
        """Log warning message."""
        ...

    def error(self, message: str, context: Any = None, **kwargs: Any) -> None:
        """Log error message."""
        ...


class ProcessingService(ABC):
    """Abstract service for ingesting a single upload."""

    @abstractmethod
    def ingest_file(
        self, upload: UploadFile, config: ProcessingConfig
    ) -> IngestResult:
        """Ingest a single file."""
        ...


class BatchProcessor(ABC):
    """Abstract batch processor."""

    @abstractmethod
    def process_batch(
        self, uploads: List[UploadFile], config: ProcessingConfig
    ) -> List[IngestResult]:
        """Ingest a batch of files, one result per upload in input order."""
        ...
