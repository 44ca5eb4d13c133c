"""Transcode engine: a pure Pillow codec and the storage-aware adapter."""

import io
import time
from dataclasses import dataclass
from typing import Optional

from PIL import Image, features

from .error_handling import decoding_input, with_error_handling
from .exceptions import CodecError, ImageToolkitError
from .image_utils import (
    PILLOW_FORMATS,
    compute_target_size,
    describe_mode,
    has_alpha,
    output_extension,
    png_compress_level,
)
from .models import (
    Dimensions,
    ImageMetadata,
    ProcessingSettings,
    StorageArea,
    TranscodeResult,
    UploadedFile,
)
from .observability import LogContext, StructuredLogger
from .protocols import ImageCodecProtocol, LoggerProtocol, StorageBackend

# Modes each encoder accepts without conversion
_ENCODER_MODES = {
    "jpeg": ("RGB", "L", "CMYK"),
    "png": ("1", "L", "LA", "P", "RGB", "RGBA", "I;16"),
    "webp": ("RGB", "RGBA"),
    "avif": ("RGB", "RGBA"),
}


def format_available(fmt: str) -> bool:
    """Whether the installed Pillow can encode ``fmt``."""
    if fmt != "avif":
        return fmt in PILLOW_FORMATS
    try:
        return bool(features.check_module("avif"))
    except ValueError:
        # Pillow builds older than 11.2 do not know the avif module at all
        return False


def decode(data: bytes, operation_name: str) -> Image.Image:
    """Open and fully load image bytes; the caller closes the returned image."""
    with decoding_input(operation_name):
        image = Image.open(io.BytesIO(data))
        try:
            image.load()
        except BaseException:
            image.close()
            raise
    return image


@dataclass
class EncodedImage:
    """Encoded output of the codec together with source facts."""

    data: bytes
    format: str
    dimensions: Dimensions
    source_format: str
    source_dimensions: Dimensions


class PillowCodec:
    """Pure image codec with no I/O dependencies."""

    def _prepare_mode(self, image: Image.Image, fmt: str) -> Image.Image:
        if image.mode in _ENCODER_MODES[fmt]:
            return image
        if fmt == "jpeg":
            return image.convert("RGB")
        return image.convert("RGBA" if has_alpha(image) else "RGB")

    def _save_options(self, fmt: str, quality: int) -> dict:
        if fmt == "jpeg":
            return {"quality": quality, "optimize": True}
        if fmt == "png":
            return {"compress_level": png_compress_level(quality)}
        if fmt == "webp":
            return {"quality": quality, "method": 4}
        return {"quality": quality}

    @with_error_handling
    def transcode_bytes(self, data: bytes, settings: ProcessingSettings) -> EncodedImage:
        """Decode image bytes, apply the resize policy and re-encode them."""
        fmt = settings.format
        if not format_available(fmt):
            raise CodecError(f"Output format '{fmt}' is not supported by this server.")

        with decode(data, "transcode_bytes") as source:
            source_format = (source.format or "unknown").lower()
            source_dimensions = Dimensions(width=source.width, height=source.height)

            image = self._prepare_mode(source, fmt)
            target = compute_target_size(source.size, settings)
            if target is not None:
                image = image.resize(target, Image.Resampling.LANCZOS)

            output = io.BytesIO()
            image.save(output, format=PILLOW_FORMATS[fmt], **self._save_options(fmt, settings.quality))

        return EncodedImage(
            data=output.getvalue(),
            format=fmt,
            dimensions=Dimensions(width=image.width, height=image.height),
            source_format=source_format,
            source_dimensions=source_dimensions,
        )

    @with_error_handling
    def describe(self, data: bytes) -> ImageMetadata:
        """Decode image bytes and report format, size and color properties."""
        with decode(data, "describe") as image:
            channels, space, alpha = describe_mode(image)
            return ImageMetadata(
                format=(image.format or "unknown").lower(),
                width=image.width,
                height=image.height,
                size=len(data),
                channels=channels,
                space=space,
                has_alpha=alpha,
            )


class TranscodeAdapter:
    """Runs the codec against uploads held in storage."""

    def __init__(
        self,
        storage: StorageBackend,
        codec: Optional[ImageCodecProtocol] = None,
        logger: Optional[LoggerProtocol] = None,
    ):
        self._storage = storage
        self._codec = codec or PillowCodec()
        self._logger = logger or StructuredLogger("engine")

    def transcode(
        self,
        upload: UploadedFile,
        settings: ProcessingSettings,
        context: Optional[LogContext] = None,
    ) -> TranscodeResult:
        """
        Transcode one upload into a new file in the processed area.

        Raises:
            CodecError: The source is unreadable or undecodable, the format is
                unsupported, the engine failed, or the output could not be
                written.
        """
        log_context = (context or LogContext(component="transcode_adapter")).with_metadata(
            file=upload.original_name, format=settings.format
        )
        start_time = time.time()

        try:
            data = self._storage.read(StorageArea.UPLOADS, upload.key)
        except ImageToolkitError as e:
            raise CodecError(f"Uploaded file is no longer available: {e}") from e

        encoded = self._codec.transcode_bytes(data, settings)

        try:
            output_key = self._storage.put(
                StorageArea.PROCESSED, encoded.data, output_extension(encoded.format)
            )
        except ImageToolkitError as e:
            raise CodecError(f"Failed to write processed image: {e}") from e

        self._logger.debug(
            "Transcoded image",
            log_context,
            output=output_key,
            processing_time_ms=round((time.time() - start_time) * 1000, 1),
        )

        return TranscodeResult(
            output_key=output_key,
            output_format=encoded.format,
            output_dimensions=encoded.dimensions,
            output_size=len(encoded.data),
            source_format=encoded.source_format,
            source_dimensions=encoded.source_dimensions,
        )
