"""Image processing utilities for the image toolkit."""

from typing import Optional, Tuple, TYPE_CHECKING

from .models import ProcessingSettings

if TYPE_CHECKING:
    from PIL import Image

FORMAT_EXTENSIONS = {"jpeg": "jpg", "png": "png", "webp": "webp", "avif": "avif"}
FORMAT_CONTENT_TYPES = {
    "jpeg": "image/jpeg",
    "png": "image/png",
    "webp": "image/webp",
    "avif": "image/avif",
    "gif": "image/gif",
}
# Pillow's save() format names
PILLOW_FORMATS = {"jpeg": "JPEG", "png": "PNG", "webp": "WEBP", "avif": "AVIF"}

# Pillow mode -> color space name reported by the metadata endpoint
_MODE_SPACES = {
    "1": "b-w",
    "L": "b-w",
    "LA": "b-w",
    "I": "b-w",
    "I;16": "grey16",
    "F": "b-w",
    "P": "srgb",
    "PA": "srgb",
    "RGB": "srgb",
    "RGBA": "srgb",
    "RGBX": "srgb",
    "CMYK": "cmyk",
    "YCbCr": "srgb",
    "LAB": "lab",
    "HSV": "hsv",
}


def output_extension(fmt: str) -> str:
    """Canonical file extension for an output format (``jpeg`` -> ``jpg``)."""
    return FORMAT_EXTENSIONS.get(fmt, fmt)


def content_type_for(fmt: str) -> str:
    """MIME type for an image format name."""
    return FORMAT_CONTENT_TYPES.get(fmt, "application/octet-stream")


def png_compress_level(quality: int) -> int:
    """
    Map a 1-100 quality onto PNG's 0-9 zlib compression level.

    Higher quality means less compression effort: 100 -> 0, 1 -> 9.
    """
    return min(9, max(0, round((100 - quality) / 11)))


def compute_target_size(
    source: Tuple[int, int], settings: ProcessingSettings
) -> Optional[Tuple[int, int]]:
    """
    Compute output dimensions for the requested resize.

    Args:
        source: Source (width, height)
        settings: Processing settings carrying the requested box

    Returns:
        Target (width, height), or None when no resize step applies.

    With ``maintain_aspect_ratio`` the image is scaled to fit inside the box
    and never enlarged. Without it the image is stretched to exactly the box;
    a missing side is derived from the source aspect ratio.
    """
    if not settings.wants_resize:
        return None

    src_w, src_h = source
    box_w, box_h = settings.width, settings.height

    if settings.maintain_aspect_ratio:
        scales = [1.0]
        if box_w:
            scales.append(box_w / src_w)
        if box_h:
            scales.append(box_h / src_h)
        scale = min(scales)
        target = (max(1, round(src_w * scale)), max(1, round(src_h * scale)))
    else:
        if box_w and box_h:
            target = (box_w, box_h)
        elif box_w:
            target = (box_w, max(1, round(src_h * box_w / src_w)))
        else:
            target = (max(1, round(src_w * box_h / src_h)), box_h)

    if target == (src_w, src_h):
        return None
    return target


def has_alpha(img: "Image.Image") -> bool:
    """Whether an image carries an alpha channel or palette transparency."""
    if img.mode in ("RGBA", "LA", "PA", "RGBa", "La"):
        return True
    return img.mode == "P" and "transparency" in img.info


def describe_mode(img: "Image.Image") -> Tuple[int, str, bool]:
    """
    Channel count, color space and alpha presence for a decoded image.

    Palette images report the channels of their expanded form.
    """
    alpha = has_alpha(img)
    if img.mode == "P":
        channels = 4 if alpha else 3
    else:
        channels = len(img.getbands())
    return channels, _MODE_SPACES.get(img.mode, "srgb"), alpha
