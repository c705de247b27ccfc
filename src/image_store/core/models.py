"""Shared data models for the image store."""

import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, BinaryIO, Dict, List, Optional, Tuple, Type

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.fields import FieldInfo
from pydantic_settings import (
    BaseSettings,
    EnvSettingsSource,
    JsonConfigSettingsSource,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from .exceptions import ConfigurationError, ErrorKind, ImageStoreError
from .image_utils import resolve_image_format
from .logging_config import get_logger

DEFAULT_MAX_FILE_SIZE = 2 * 1024 * 1024
ORIGINAL_SIZE_LABEL = "original"
ENV_PREFIX = "IMAGE_STORE_"

# PascalCase keys of older settings files -> field names
SETTINGS_FILE_ALIASES = {
    "AllowedExtensions": "allowed_extensions",
    "MaxFileSize": "max_file_size",
    "TargetSizes": "target_sizes",
    "ConversionFormat": "target_format",
    "AllowedSizes": "allowed_sizes",
    "UploadFolderName": "storage_root",
    "ExifFileName": "metadata_filename",
}


def is_plain_name(value: str) -> bool:
    """True for a single, non-special path component usable as a file or directory name."""
    return (
        bool(value)
        and value.strip() == value
        and value not in (".", "..")
        and "/" not in value
        and "\\" not in value
        and "\x00" not in value
    )


class SizeTarget(BaseModel):
    """One rung of the resize ladder; images are fitted within width x height."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1)
    width: int = Field(gt=0)
    height: int = Field(gt=0)

    @field_validator("name")
    @classmethod
    def _normalize_name(cls, value: str) -> str:
        value = value.strip().lower()
        if not is_plain_name(value) or value == ORIGINAL_SIZE_LABEL:
            raise ValueError(f"invalid size name: {value!r}")
        return value


def _split_csv(value):
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    return value


def default_target_sizes() -> List[SizeTarget]:
    return [
        SizeTarget(name="phone", width=640, height=480),
        SizeTarget(name="tablet", width=1024, height=768),
        SizeTarget(name="desktop", width=1920, height=1080),
    ]


class ListFriendlyEnvSource(EnvSettingsSource):
    """Environment source that also takes comma-separated values for list fields."""

    def decode_complex_value(self, field_name: str, field: FieldInfo, value: Any) -> Any:
        try:
            return super().decode_complex_value(field_name, field, value)
        except ValueError:
            # "a,b,c" reaches the field validators as a plain string
            return value


class SettingsFileSource(JsonConfigSettingsSource):
    """JSON settings file; the PascalCase keys of older files are accepted too."""

    def _read_file(self, file_path: Path) -> Dict[str, Any]:
        try:
            raw = super()._read_file(file_path)
        except (OSError, ValueError) as exc:
            raise ConfigurationError(f"Settings file could not be read: {file_path}") from exc
        if not isinstance(raw, dict):
            raise ConfigurationError(f"Settings file must contain an object: {file_path}")
        return {SETTINGS_FILE_ALIASES.get(key, key): value for key, value in raw.items()}


class ProcessingConfig(BaseSettings):
    """Configuration for ingestion and retrieval.

    Every field can be set through an ``IMAGE_STORE_<FIELD>`` environment
    variable or a JSON settings file named by ``json_file``. Constructor
    arguments win over the environment, which wins over the file.

    Instances are frozen: a single call always sees one consistent
    configuration. Reloading means building a new instance.
    """

    model_config = SettingsConfigDict(
        frozen=True,
        env_prefix=ENV_PREFIX,
        env_ignore_empty=True,
        extra="ignore",
        json_file=None,
        json_file_encoding="utf-8",
    )

    allowed_extensions: List[str] = Field(
        default_factory=lambda: [".jpg", ".jpeg", ".png", ".webp"]
    )
    max_file_size: int = DEFAULT_MAX_FILE_SIZE
    target_sizes: List[SizeTarget] = Field(default_factory=default_target_sizes)
    target_format: str = "webp"
    allowed_sizes: List[str] = Field(
        default_factory=lambda: ["phone", "tablet", "desktop", ORIGINAL_SIZE_LABEL]
    )
    storage_root: Path = Path("uploads")
    metadata_filename: str = "metadata.json"
    max_files_per_request: int = Field(default=5, gt=0)
    quality: int = Field(default=80, ge=1, le=100)
    auto_orient: bool = True
    processor: str = "serial"
    max_workers: int = Field(default=4, gt=0)
    debug: bool = False

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: Type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> Tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,
            ListFriendlyEnvSource(settings_cls),
            SettingsFileSource(settings_cls),
        )

    @field_validator("allowed_extensions", mode="before")
    @classmethod
    def _parse_extensions(cls, value):
        return _split_csv(value)

    @field_validator("allowed_extensions")
    @classmethod
    def _normalize_extensions(cls, value: List[str]) -> List[str]:
        normalized = []
        for extension in value:
            extension = extension.strip().lower()
            if not extension.startswith("."):
                extension = "." + extension
            normalized.append(extension)
        return normalized

    @field_validator("allowed_sizes", mode="before")
    @classmethod
    def _parse_sizes(cls, value):
        return _split_csv(value)

    @field_validator("allowed_sizes")
    @classmethod
    def _normalize_sizes(cls, value: List[str]) -> List[str]:
        return [size.strip().lower() for size in value]

    @field_validator("max_file_size", mode="before")
    @classmethod
    def _parse_max_file_size(cls, value):
        # Plain integer parsing only; anything else falls back to the default
        if value is None or isinstance(value, bool):
            return DEFAULT_MAX_FILE_SIZE
        if isinstance(value, int):
            return value if value > 0 else DEFAULT_MAX_FILE_SIZE
        try:
            parsed = int(str(value).strip())
        except ValueError:
            get_logger("config").warning(
                f"Ignoring unparseable max_file_size {value!r}; using {DEFAULT_MAX_FILE_SIZE}"
            )
            return DEFAULT_MAX_FILE_SIZE
        return parsed if parsed > 0 else DEFAULT_MAX_FILE_SIZE

    @field_validator("target_format")
    @classmethod
    def _normalize_format(cls, value: str) -> str:
        value = value.strip().lower().lstrip(".")
        resolve_image_format(value)
        return value

    @field_validator("processor")
    @classmethod
    def _check_processor(cls, value: str) -> str:
        if value not in ("serial", "multithread"):
            raise ValueError(f"unknown processor: {value}")
        return value

    @field_validator("metadata_filename")
    @classmethod
    def _check_metadata_filename(cls, value: str) -> str:
        if not is_plain_name(value):
            raise ValueError("metadata_filename must be a plain file name")
        return value

    @property
    def target_extension(self) -> str:
        return self.target_format


class ImageMetadata(BaseModel):
    """Metadata sidecar contents. Absent tags stay None."""

    make: Optional[str] = None
    model: Optional[str] = None
    latitude: Optional[str] = None
    longitude: Optional[str] = None

    def is_empty(self) -> bool:
        return all(
            value is None
            for value in (self.make, self.model, self.latitude, self.longitude)
        )


@dataclass
class UploadFile:
    """An uploaded file as handed over by the boundary layer."""

    filename: str
    stream: BinaryIO
    size: Optional[int] = None

    def content_length(self) -> int:
        """Return the declared size, measuring the stream when none was given."""
        if self.size is None:
            position = self.stream.tell()
            self.stream.seek(0, os.SEEK_END)
            self.size = self.stream.tell() - position
            self.stream.seek(position)
        return self.size


class IngestStatus(str, Enum):
    """Lifecycle of a single ingested file."""

    RECEIVED = "received"
    VALIDATED = "validated"
    STORED = "stored"
    METADATA_EXTRACTED = "metadata_extracted"
    VARIANTS_GENERATED = "variants_generated"
    COMPLETE = "complete"
    FAILED = "failed"


class IngestResult(BaseModel):
    """Result of ingesting a single file."""

    filename: str
    image_id: Optional[str] = None
    status: IngestStatus = IngestStatus.RECEIVED
    failed_stage: Optional[IngestStatus] = None
    error_kind: Optional[ErrorKind] = None
    error_reason: Optional[str] = None
    error: str = ""
    metadata: Optional[ImageMetadata] = None
    metadata_error: str = ""
    variants: Dict[str, str] = Field(default_factory=dict)
    processing_time: float = 0.0

    @property
    def success(self) -> bool:
        return self.status == IngestStatus.COMPLETE

    def advance(self, status: IngestStatus) -> None:
        self.status = status

    def fail(self, error: ImageStoreError) -> None:
        self.failed_stage = self.status
        self.status = IngestStatus.FAILED
        self.error_kind = error.kind
        self.error_reason = error.reason
        self.error = str(error)


class RetrievalResult(BaseModel):
    """Outcome of resolving (image_id, size) to a stored asset."""

    image_id: str
    size: str
    found: bool = False
    path: Optional[Path] = None
    content_type: str = ""
    download_name: str = ""


class MetadataLookup(BaseModel):
    """Outcome of a metadata lookup.

    ``found`` tells whether the image exists; ``metadata`` may still be None
    for an existing image whose sidecar was never written.
    """

    image_id: str
    found: bool = False
    metadata: Optional[ImageMetadata] = None
