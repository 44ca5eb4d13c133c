"""Custom exceptions for the image toolkit."""

from __future__ import annotations

from typing import Any, Dict, List, Optional


class ImageToolkitError(Exception):
    """Base exception for all image toolkit errors."""

    status_code: int = 500

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def to_payload(self) -> Dict[str, Any]:
        """Body of the JSON error envelope returned to callers."""
        return {"success": False, "error": self.message}


class ValidationError(ImageToolkitError):
    """Request rejected at admission time (bad settings, type, count or size)."""

    status_code = 400


class CodecError(ImageToolkitError):
    """The transcode engine could not decode or encode an image."""

    status_code = 500


class StorageError(ImageToolkitError):
    """Disk I/O failed while writing or deleting a temporary artifact."""

    status_code = 500


class NotFoundError(ImageToolkitError):
    """A requested processed file is not resident in storage."""

    status_code = 404


class ConfigurationError(ImageToolkitError):
    """Error raised for invalid configuration options."""


class RateLimitError(ImageToolkitError):
    """A client exhausted one of its admission windows."""

    status_code = 429

    def __init__(self, message: str, retry_after: int):
        super().__init__(message)
        self.retry_after = max(1, int(retry_after))

    def to_payload(self) -> Dict[str, Any]:
        payload = super().to_payload()
        payload["retryAfter"] = self.retry_after
        return payload


class NoValidFilesError(ImageToolkitError):
    """Every file of a multi-file request failed to transcode."""

    status_code = 422

    def __init__(self, errors: List[Dict[str, str]]):
        super().__init__("No valid files could be processed.")
        self.errors = errors

    def to_payload(self) -> Dict[str, Any]:
        payload = super().to_payload()
        payload["errors"] = self.errors
        return payload
