"""Embedded camera and location metadata extraction."""

import math
from pathlib import Path
from typing import Any, Optional, Sequence, Union

from PIL import Image, UnidentifiedImageError
from PIL.ExifTags import GPS, IFD, Base

from .error_handling import classify_os_error
from .exceptions import CorruptDataError
from .logging_config import get_logger
from .models import ImageMetadata


def _clean_text(value: Any) -> Optional[str]:
    """Normalize an EXIF text tag; empty values count as absent."""
    if value is None:
        return None
    if isinstance(value, bytes):
        value = value.decode("utf-8", errors="ignore")
    text = str(value).replace("\x00", "").strip()
    return text or None


def _rational_to_float(value: Any) -> Optional[float]:
    if isinstance(value, tuple) and len(value) == 2:
        numerator, denominator = value
        if not denominator:
            return None
        return float(numerator) / float(denominator)
    try:
        result = float(value)
    except (TypeError, ValueError, ZeroDivisionError):
        return None
    return result if math.isfinite(result) else None


def gps_to_decimal(coordinate: Optional[Sequence[Any]], reference: Any) -> Optional[float]:
    """
    Convert an EXIF (degrees, minutes, seconds) triple to decimal degrees.

    Args:
        coordinate: Sequence of up to three rationals
        reference: Hemisphere reference ("N", "S", "E" or "W")

    Returns:
        Signed decimal degrees, or None if the value cannot be resolved
    """
    reference = _clean_text(reference)
    if not coordinate or reference is None:
        return None
    reference = reference.upper()
    if reference not in ("N", "S", "E", "W"):
        return None

    parts = [_rational_to_float(part) for part in coordinate]
    if not parts or len(parts) > 3 or any(part is None for part in parts):
        return None
    while len(parts) < 3:
        parts.append(0.0)

    degrees, minutes, seconds = parts
    decimal = degrees + minutes / 60 + seconds / 3600
    if reference in ("S", "W"):
        decimal = -decimal
    return decimal


class ExifMetadataExtractor:
    """Reads make/model and GPS position from EXIF tags using Pillow."""

    def __init__(self):
        self._logger = get_logger("metadata")

    def extract(self, path: Union[str, Path]) -> ImageMetadata:
        """
        Extract camera and location metadata from the image at path.

        Fields without a matching tag stay None. Latitude and longitude are
        only set together, when both resolve to a position.

        Raises:
            CorruptDataError: If the file is not a parseable image
        """
        try:
            with Image.open(path) as image:
                exif = image.getexif()
                gps_info = exif.get_ifd(IFD.GPSInfo)
        except (UnidentifiedImageError, Image.DecompressionBombError, SyntaxError) as exc:
            raise CorruptDataError(
                "Image payload could not be parsed", operation="extract_metadata"
            ) from exc
        except (FileNotFoundError, PermissionError) as exc:
            raise classify_os_error(exc, "extract_metadata") from exc
        except (OSError, ValueError) as exc:
            raise CorruptDataError(
                "Image metadata could not be read", operation="extract_metadata"
            ) from exc

        metadata = ImageMetadata(
            make=_clean_text(exif.get(Base.Make)),
            model=_clean_text(exif.get(Base.Model)),
        )

        if gps_info:
            latitude = gps_to_decimal(
                gps_info.get(GPS.GPSLatitude), gps_info.get(GPS.GPSLatitudeRef)
            )
            longitude = gps_to_decimal(
                gps_info.get(GPS.GPSLongitude), gps_info.get(GPS.GPSLongitudeRef)
            )
            if latitude is not None and longitude is not None:
                metadata.latitude = str(latitude)
                metadata.longitude = str(longitude)

        self._logger.debug(f"Extracted metadata from {path}: {metadata.model_dump()}")
        return metadata
