"""Core utilities and shared components for the image store."""

from .image_utils import (
    calculate_fit_size,
    content_type_for,
    prepare_for_format,
    resolve_image_format,
)
from .logging_config import get_logger, set_log_level, setup_logger
from .exceptions import (
    AccessDeniedError,
    ConfigurationError,
    CorruptDataError,
    ErrorKind,
    ImageStoreError,
    InternalError,
    InvalidInputError,
    NotFoundError,
    ResourceLockedError,
    StorageIOError,
)
from .models import (
    ImageMetadata,
    IngestResult,
    IngestStatus,
    MetadataLookup,
    ProcessingConfig,
    RetrievalResult,
    SizeTarget,
    UploadFile,
)
from .config import load_config
from .storage import FileSystemStorage
from .metadata import ExifMetadataExtractor
from .variants import PillowVariantGenerator
from .services import ImageIngestionService, ImageStoreOrchestrator
from .factories import ImageStoreFactory

__all__ = [
    "ProcessingConfig",
    "SizeTarget",
    "ImageMetadata",
    "UploadFile",
    "IngestResult",
    "IngestStatus",
    "RetrievalResult",
    "MetadataLookup",
    "load_config",
    "FileSystemStorage",
    "ExifMetadataExtractor",
    "PillowVariantGenerator",
    "ImageIngestionService",
    "ImageStoreOrchestrator",
    "ImageStoreFactory",
    "calculate_fit_size",
    "content_type_for",
    "prepare_for_format",
    "resolve_image_format",
    "setup_logger",
    "get_logger",
    "set_log_level",
    "ErrorKind",
    "ImageStoreError",
    "InvalidInputError",
    "NotFoundError",
    "CorruptDataError",
    "StorageIOError",
    "AccessDeniedError",
    "ResourceLockedError",
    "InternalError",
    "ConfigurationError",
]
