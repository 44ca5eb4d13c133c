"""Shared data models for the image toolkit."""

import math
from enum import Enum
from typing import Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

SUPPORTED_FORMATS = ("jpeg", "png", "webp", "avif")
FORMAT_ALIASES = {"jpg": "jpeg"}

MIN_QUALITY = 1
MAX_QUALITY = 100
DEFAULT_QUALITY = 80


class StorageArea(str, Enum):
    """The three ephemeral areas managed by the storage arena."""

    UPLOADS = "uploads"
    PROCESSED = "processed"
    LOGS = "logs"


class DeliveryMode(str, Enum):
    """Response shape chosen after all outcomes are collected."""

    SINGLE = "single"
    ARCHIVE = "archive"


class Dimensions(BaseModel):
    """Pixel dimensions of an image."""

    width: int
    height: int


class ProcessingSettings(BaseModel):
    """Transform requested by the caller, parsed once per request."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    width: Optional[int] = Field(default=None, gt=0)
    height: Optional[int] = Field(default=None, gt=0)
    maintain_aspect_ratio: bool = Field(default=True, alias="maintainAspectRatio")
    quality: int = DEFAULT_QUALITY
    format: str = "jpeg"

    @field_validator("width", "height", mode="before")
    @classmethod
    def zero_means_unset(cls, v: Any) -> Any:
        if v in (0, "0", "", None):
            return None
        return v

    @field_validator("quality", mode="before")
    @classmethod
    def clamp_quality(cls, v: Any) -> int:
        if v is None or v == "":
            return DEFAULT_QUALITY
        if isinstance(v, bool):
            raise ValueError("quality must be a number")
        if isinstance(v, int):
            return min(MAX_QUALITY, max(MIN_QUALITY, v))
        try:
            number = float(v)
        except (TypeError, ValueError, OverflowError):
            raise ValueError("quality must be a number")
        if math.isnan(number):
            raise ValueError("quality must be a number")
        # Infinities and out-of-range strings clamp by sign
        if number >= MAX_QUALITY:
            return MAX_QUALITY
        if number <= MIN_QUALITY:
            return MIN_QUALITY
        return int(number)

    @field_validator("format", mode="before")
    @classmethod
    def normalize_format(cls, v: Any) -> str:
        if v is None or v == "":
            return "jpeg"
        if not isinstance(v, str):
            raise ValueError("format must be a string")
        fmt = v.strip().lower()
        fmt = FORMAT_ALIASES.get(fmt, fmt)
        if fmt not in SUPPORTED_FORMATS:
            raise ValueError(
                f"Unsupported format: {v}. Supported: {', '.join(SUPPORTED_FORMATS)}"
            )
        return fmt

    @property
    def wants_resize(self) -> bool:
        return self.width is not None or self.height is not None


class UploadedFile(BaseModel):
    """An admitted upload, addressed by its key in the uploads area."""

    key: str
    original_name: str
    content_type: str
    size_bytes: int


class TranscodeResult(BaseModel):
    """Output of the transcode adapter, resident in the processed area."""

    output_key: str
    output_format: str
    output_dimensions: Dimensions
    output_size: int
    source_format: str
    source_dimensions: Dimensions


class ProcessingSuccess(BaseModel):
    """A file that transcoded successfully."""

    status: Literal["success"] = "success"
    result: TranscodeResult
    original_name: str
    original_size: int


class ProcessingFailure(BaseModel):
    """A file whose transcode failed; siblings are unaffected."""

    status: Literal["failure"] = "failure"
    original_name: str
    error: str

    def to_report(self) -> Dict[str, str]:
        return {"file": self.original_name, "error": self.error}


ProcessingOutcome = Union[ProcessingSuccess, ProcessingFailure]


class ImageMetadata(BaseModel):
    """Decoded properties of a resident processed file."""

    model_config = ConfigDict(populate_by_name=True)

    format: str
    width: int
    height: int
    size: int
    channels: int
    space: str
    has_alpha: bool = Field(alias="hasAlpha")


class StoredObject(BaseModel):
    """An entry listed from a storage area."""

    key: str
    size: int
    modified_at: float
