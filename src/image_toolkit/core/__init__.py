"""Core utilities and shared components for the image toolkit."""

from .config import Settings, get_settings
from .logging_config import get_logger, setup_logger
from .exceptions import (
    ImageToolkitError,
    ValidationError,
    CodecError,
    StorageError,
    NotFoundError,
    RateLimitError,
    NoValidFilesError,
    ConfigurationError,
)
from .models import (
    DeliveryMode,
    Dimensions,
    ImageMetadata,
    ProcessingFailure,
    ProcessingOutcome,
    ProcessingSettings,
    ProcessingSuccess,
    StorageArea,
    TranscodeResult,
    UploadedFile,
)

__all__ = [
    "Settings",
    "get_settings",
    "setup_logger",
    "get_logger",
    "ImageToolkitError",
    "ValidationError",
    "CodecError",
    "StorageError",
    "NotFoundError",
    "RateLimitError",
    "NoValidFilesError",
    "ConfigurationError",
    "DeliveryMode",
    "Dimensions",
    "ImageMetadata",
    "ProcessingFailure",
    "ProcessingOutcome",
    "ProcessingSettings",
    "ProcessingSuccess",
    "StorageArea",
    "TranscodeResult",
    "UploadedFile",
]
