"""Decoding and resized re-encoding of images."""

import io
from pathlib import Path
from typing import Union

from PIL import Image, ImageOps, UnidentifiedImageError

from .error_handling import classify_os_error
from .exceptions import CorruptDataError, InternalError
from .image_utils import calculate_fit_size, prepare_for_format, resolve_image_format
from .logging_config import get_logger
from .models import ProcessingConfig, SizeTarget


class PillowVariantGenerator:
    """Produces the resize ladder for a decoded image."""

    def __init__(self, target_format: str = "webp", quality: int = 80, auto_orient: bool = True):
        self.target_format = target_format
        self.image_format = resolve_image_format(target_format)
        self.quality = quality
        self.auto_orient = auto_orient
        self._logger = get_logger("variants")

    @classmethod
    def from_config(cls, config: ProcessingConfig) -> "PillowVariantGenerator":
        return cls(
            target_format=config.target_format,
            quality=config.quality,
            auto_orient=config.auto_orient,
        )

    def decode(self, path: Union[str, Path]) -> Image.Image:
        """
        Decode the image at path into an in-memory image.

        The source file is closed before returning; the caller owns the
        returned image and should close it (it supports ``with``).

        Raises:
            CorruptDataError: If the payload is not a decodable image
        """
        try:
            with Image.open(path) as image:
                image.load()
                if self.auto_orient:
                    return ImageOps.exif_transpose(image)
                return image.copy()
        except (UnidentifiedImageError, Image.DecompressionBombError, SyntaxError) as exc:
            raise CorruptDataError(
                "Image payload could not be decoded", operation="decode_image"
            ) from exc
        except (FileNotFoundError, PermissionError) as exc:
            raise classify_os_error(exc, "decode_image") from exc
        except (OSError, ValueError) as exc:
            # Truncated or otherwise broken image data
            raise CorruptDataError(
                "Image payload could not be decoded", operation="decode_image"
            ) from exc

    def generate(self, image: Image.Image, target: SizeTarget) -> bytes:
        """
        Resize image to fit within the target bounds and encode it.

        Works on a copy; the source image is never modified. Images smaller
        than the bounds keep their size.

        Raises:
            InternalError: If the encoder fails
        """
        size = calculate_fit_size(image.size, (target.width, target.height))
        if size == image.size:
            resized = image.copy()
        else:
            resized = image.resize(size, Image.Resampling.LANCZOS)

        encodable = resized
        try:
            encodable = prepare_for_format(resized, self.image_format)
            output_stream = io.BytesIO()
            encodable.save(output_stream, format=self.image_format, quality=self.quality)
        except (OSError, ValueError) as exc:
            raise InternalError(
                f"Could not encode variant '{target.name}'", operation="generate_variant"
            ) from exc
        finally:
            if encodable is not resized:
                encodable.close()
            resized.close()

        self._logger.debug(
            f"Generated {target.name} variant {size[0]}x{size[1]} from {image.size[0]}x{image.size[1]}"
        )
        return output_stream.getvalue()
