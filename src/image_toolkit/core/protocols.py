"""Protocol definitions for dependency injection and testability."""

from typing import Any, Iterator, List, Optional, Protocol

from .models import (
    ImageMetadata,
    ProcessingSettings,
    StorageArea,
    StoredObject,
)


class StorageBackend(Protocol):
    """Content store addressed by (area, generated key)."""

    def ensure_directories(self) -> None:
        """Create every storage area if missing."""
        ...

    def put(self, area: StorageArea, data: bytes, extension: str = "") -> str:
        """Store bytes under a freshly generated key and return the key."""
        ...

    def read(self, area: StorageArea, key: str) -> bytes:
        """Return the stored bytes; raises NotFoundError when absent."""
        ...

    def iter_chunks(
        self, area: StorageArea, key: str, chunk_size: int = 64 * 1024
    ) -> Iterator[bytes]:
        """Yield the stored bytes in chunks."""
        ...

    def exists(self, area: StorageArea, key: str) -> bool:
        """Whether the key is resident in the area."""
        ...

    def size(self, area: StorageArea, key: str) -> int:
        """Size in bytes; 0 when absent."""
        ...

    def delete(self, area: StorageArea, key: str) -> bool:
        """Delete the key; absent keys are a no-op returning False."""
        ...

    def list(self, area: StorageArea) -> List[StoredObject]:
        """List entries of an area, non-recursively."""
        ...

    def sweep(
        self, area: StorageArea, ttl_seconds: float, now: Optional[float] = None
    ) -> int:
        """Delete entries older than ttl_seconds and return how many went."""
        ...


class ImageCodecProtocol(Protocol):
    """Pure image codec operating on bytes."""

    def transcode_bytes(self, data: bytes, settings: ProcessingSettings) -> Any:
        """Decode, resize and re-encode image bytes."""
        ...

    def describe(self, data: bytes) -> ImageMetadata:
        """Decode image bytes and report their properties."""
        ...


class LoggerProtocol(Protocol):
    """Protocol for logging operations."""

    def debug(self, message: str, context: Any = None, **kwargs: Any) -> None:
        """Log debug message."""
        ...

    def info(self, message: str, context: Any = None, **kwargs: Any) -> None:
        """Log info message."""
        ...

    def warning(self, message: str, context: Any = None, **kwargs: Any) -> None:
        """Log warning message."""
        ...

    def error(self, message: str, context: Any = None, **kwargs: Any) -> None:
        """Log error message."""
        ...
