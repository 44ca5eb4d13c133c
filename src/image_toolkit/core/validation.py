"""Ingress validation: settings parsing, whitelist and size/count caps."""

import json
import os
from dataclasses import dataclass
from typing import BinaryIO, List, Optional, Sequence, Tuple

from pydantic import ValidationError as PydanticValidationError

from .exceptions import ImageToolkitError, StorageError, ValidationError
from .models import ProcessingSettings, StorageArea, UploadedFile
from .observability import StructuredLogger
from .protocols import LoggerProtocol, StorageBackend

ALLOWED_MIME_TYPES = frozenset(
    {"image/jpeg", "image/png", "image/webp", "image/avif", "image/gif"}
)
_MIME_EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
    "image/avif": "avif",
    "image/gif": "gif",
}


@dataclass
class IncomingPart:
    """A multipart file part as received from the HTTP layer."""

    filename: str
    content_type: str
    size: int
    stream: BinaryIO


def upload_extension(filename: str, content_type: str) -> str:
    """Lower-cased extension of the original name, or one implied by the MIME type."""
    ext = os.path.splitext(filename or "")[1].lstrip(".").lower()
    if ext and ext.isalnum() and len(ext) <= 5:
        return ext
    return _MIME_EXTENSIONS.get(content_type, "")


def _describe_settings_error(exc: PydanticValidationError) -> str:
    messages = []
    for error in exc.errors():
        field = ".".join(str(part) for part in error.get("loc", ()))
        message = error.get("msg", "invalid value")
        if message.startswith("Value error, "):
            message = message[len("Value error, "):]
        messages.append(f"{field}: {message}" if field else message)
    return "Invalid settings: " + "; ".join(messages)


class IngressValidator:
    """Admission checks applied before any upload reaches durable storage."""

    def __init__(
        self,
        max_files: int = 10,
        max_file_size: int = 20 * 1024 * 1024,
        logger: Optional[LoggerProtocol] = None,
    ):
        self.max_files = max_files
        self.max_file_size = max_file_size
        self._logger = logger or StructuredLogger("validation")

    @property
    def max_file_size_mb(self) -> str:
        return f"{self.max_file_size / (1024 * 1024):g}"

    def parse_settings(self, raw: Optional[str]) -> ProcessingSettings:
        """Parse the caller's JSON settings blob; empty means all defaults."""
        if raw is None or not raw.strip():
            return ProcessingSettings()

        try:
            payload = json.loads(raw)
        except json.JSONDecodeError:
            raise ValidationError("Invalid settings JSON.")

        if payload is None:
            return ProcessingSettings()
        if not isinstance(payload, dict):
            raise ValidationError("Invalid settings JSON: expected an object.")

        try:
            return ProcessingSettings.model_validate(payload)
        except PydanticValidationError as e:
            raise ValidationError(_describe_settings_error(e)) from e

    def validate(
        self, parts: Sequence[IncomingPart], raw_settings: Optional[str] = None
    ) -> Tuple[List[IncomingPart], ProcessingSettings]:
        """
        Check count, type and size of every part and parse the settings.

        Raises:
            ValidationError: 400 for a missing/too many files or bad settings,
                415 for a disallowed type, 413 for an oversized file.
        """
        if not parts:
            raise ValidationError("No files uploaded.")

        if len(parts) > self.max_files:
            raise ValidationError(f"Too many files. Maximum is {self.max_files} files.")

        settings = self.parse_settings(raw_settings)

        for part in parts:
            content_type = (part.content_type or "").split(";")[0].strip().lower()
            if content_type not in ALLOWED_MIME_TYPES:
                raise ValidationError(
                    f"Unsupported file type: {part.content_type or 'unknown'}",
                    status_code=415,
                )
            if part.size > self.max_file_size:
                raise ValidationError(
                    f"File too large. Maximum size is {self.max_file_size_mb}MB.",
                    status_code=413,
                )

        return list(parts), settings

    def admit(
        self,
        parts: Sequence[IncomingPart],
        raw_settings: Optional[str],
        storage: StorageBackend,
    ) -> Tuple[List[UploadedFile], ProcessingSettings]:
        """
        Validate the whole request, then write each part to the uploads area.

        Nothing is written unless every part passes validation. If a write
        fails, uploads already written by this call are removed.
        """
        validated, settings = self.validate(parts, raw_settings)

        uploads: List[UploadedFile] = []
        try:
            for part in validated:
                data = part.stream.read()
                if len(data) > self.max_file_size:
                    raise ValidationError(
                        f"File too large. Maximum size is {self.max_file_size_mb}MB.",
                        status_code=413,
                    )
                key = storage.put(
                    StorageArea.UPLOADS,
                    data,
                    upload_extension(part.filename, part.content_type),
                )
                uploads.append(
                    UploadedFile(
                        key=key,
                        original_name=os.path.basename(part.filename or "") or key,
                        content_type=part.content_type,
                        size_bytes=len(data),
                    )
                )
        except ImageToolkitError:
            self._discard(uploads, storage)
            raise
        except OSError as e:
            self._discard(uploads, storage)
            raise StorageError(f"Failed to store upload: {e}") from e

        self._logger.debug(f"Admitted {len(uploads)} upload(s)", format=settings.format)
        return uploads, settings

    def _discard(self, uploads: List[UploadedFile], storage: StorageBackend) -> None:
        for upload in uploads:
            storage.delete(StorageArea.UPLOADS, upload.key)
