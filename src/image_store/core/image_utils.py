"""Image helper utilities: format lookup, fit maths and mode handling."""

from typing import Tuple

from PIL import Image

# Modes each encoder accepts without conversion
_ENCODER_MODES = {
    "JPEG": ("RGB", "L", "CMYK"),
    "WEBP": ("RGB", "RGBA"),
}

DEFAULT_CONTENT_TYPE = "application/octet-stream"


def resolve_image_format(extension: str) -> str:
    """
    Map a file extension to the Pillow format name used for encoding.

    Args:
        extension: Extension with or without the leading dot ("webp", ".png")

    Returns:
        Pillow format name, e.g. "WEBP"

    Raises:
        ValueError: If Pillow has no writer for the extension
    """
    suffix = "." + extension.strip().lower().lstrip(".")
    image_format = Image.registered_extensions().get(suffix)
    if image_format is None or image_format not in Image.SAVE:
        raise ValueError(f"Unsupported target format: {extension}")
    return image_format


def content_type_for(extension: str) -> str:
    """Return the MIME type Pillow associates with a file extension."""
    suffix = "." + extension.strip().lower().lstrip(".")
    image_format = Image.registered_extensions().get(suffix)
    if image_format is None:
        return DEFAULT_CONTENT_TYPE
    return Image.MIME.get(image_format, DEFAULT_CONTENT_TYPE)


def calculate_fit_size(
    original: Tuple[int, int], bounds: Tuple[int, int]
) -> Tuple[int, int]:
    """
    Calculate the size of an image fitted within bounds, keeping aspect ratio.

    The scale factor is min(max_w / w, max_h / h, 1.0), so images are never
    upscaled. Each side is rounded and kept within [1, bound].

    Args:
        original: (width, height) of the source image
        bounds: (max_width, max_height) of the ladder entry

    Returns:
        (width, height) of the fitted image
    """
    width, height = original
    max_width, max_height = bounds
    if width <= 0 or height <= 0:
        raise ValueError(f"Invalid image size: {width}x{height}")

    scale = min(max_width / width, max_height / height, 1.0)
    new_width = max(1, min(max_width, int(round(width * scale))))
    new_height = max(1, min(max_height, int(round(height * scale))))
    return new_width, new_height


def prepare_for_format(img: "Image.Image", image_format: str) -> "Image.Image":
    """
    Convert an image to a mode the target encoder can write.

    Returns the image unchanged when no conversion is needed, otherwise a
    converted copy.
    """
    accepted = _ENCODER_MODES.get(image_format)
    if accepted is None or img.mode in accepted:
        return img

    has_alpha = "A" in img.mode or "transparency" in img.info
    if has_alpha and "RGBA" in accepted:
        return img.convert("RGBA")
    if img.mode in ("LA",) and "L" in accepted:
        return img.convert("L")
    return img.convert("RGB")
