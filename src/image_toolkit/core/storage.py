"""Ephemeral storage arena and the age-based cleanup sweep."""

import asyncio
import os
import time
import uuid
from pathlib import Path
from typing import Iterator, List, Optional, Union

from .exceptions import NotFoundError, StorageError
from .models import StorageArea, StoredObject
from .observability import StructuredLogger
from .protocols import LoggerProtocol, StorageBackend

WORKING_AREAS = (StorageArea.UPLOADS, StorageArea.PROCESSED)
DEFAULT_CHUNK_SIZE = 64 * 1024


def sanitize_key(key: str) -> Optional[str]:
    """
    Reduce a caller-supplied name to its base name.

    Returns None for names that cannot address a stored entry at all
    (empty, ``.`` or ``..``).
    """
    base = os.path.basename(str(key).replace("\\", "/")).strip()
    if base in ("", ".", ".."):
        return None
    return base


def generate_key(extension: str = "") -> str:
    """Fresh unique key, optionally with an extension."""
    extension = extension.lstrip(".").lower()
    key = uuid.uuid4().hex
    return f"{key}.{extension}" if extension else key


class LocalStorage:
    """Disk-backed storage arena rooted at a single directory."""

    def __init__(
        self,
        root: Union[str, Path],
        logger: Optional[LoggerProtocol] = None,
    ):
        self.root = Path(root)
        self._logger = logger or StructuredLogger("storage")

    def area_path(self, area: StorageArea) -> Path:
        return self.root / area.value

    def _resolve(self, area: StorageArea, key: str) -> Optional[Path]:
        safe = sanitize_key(key)
        if safe is None:
            return None
        return self.area_path(area) / safe

    def ensure_directories(self) -> None:
        """Create the upload, processed and log directories idempotently."""
        for area in StorageArea:
            path = self.area_path(area)
            try:
                path.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise StorageError(f"Cannot create storage directory {path}: {e}") from e
        self._logger.info("Storage directories verified.", root=str(self.root))

    def put(self, area: StorageArea, data: bytes, extension: str = "") -> str:
        key = generate_key(extension)
        path = self.area_path(area) / key
        try:
            with open(path, "xb") as fh:
                fh.write(data)
        except OSError as e:
            # A partial write must not linger until the sweep.
            self.delete(area, key)
            raise StorageError(f"Failed to write {area.value}/{key}: {e}") from e
        return key

    def read(self, area: StorageArea, key: str) -> bytes:
        path = self._resolve(area, key)
        if path is None:
            raise NotFoundError("File not found.")
        try:
            return path.read_bytes()
        except (FileNotFoundError, IsADirectoryError) as e:
            raise NotFoundError("File not found.") from e
        except OSError as e:
            raise StorageError(f"Failed to read {area.value}/{key}: {e}") from e

    def iter_chunks(
        self, area: StorageArea, key: str, chunk_size: int = DEFAULT_CHUNK_SIZE
    ) -> Iterator[bytes]:
        path = self._resolve(area, key)
        if path is None or not path.is_file():
            raise NotFoundError("File not found.")
        with open(path, "rb") as fh:
            while chunk := fh.read(chunk_size):
                yield chunk

    def exists(self, area: StorageArea, key: str) -> bool:
        path = self._resolve(area, key)
        return path is not None and path.is_file()

    def size(self, area: StorageArea, key: str) -> int:
        path = self._resolve(area, key)
        if path is None:
            return 0
        try:
            return path.stat().st_size
        except OSError:
            return 0

    def delete(self, area: StorageArea, key: str) -> bool:
        path = self._resolve(area, key)
        if path is None:
            return False
        try:
            path.unlink()
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            self._logger.warning(
                "Failed to delete temporary file", path=str(path), error=str(e)
            )
            return False

    def list(self, area: StorageArea) -> List[StoredObject]:
        entries: List[StoredObject] = []
        try:
            with os.scandir(self.area_path(area)) as it:
                for entry in it:
                    try:
                        if not entry.is_file():
                            continue
                        stat = entry.stat()
                    except FileNotFoundError:
                        continue
                    entries.append(
                        StoredObject(
                            key=entry.name, size=stat.st_size, modified_at=stat.st_mtime
                        )
                    )
        except FileNotFoundError:
            return []
        return entries

    def sweep(
        self, area: StorageArea, ttl_seconds: float, now: Optional[float] = None
    ) -> int:
        """Delete entries of ``area`` last modified more than ``ttl_seconds`` ago."""
        now = time.time() if now is None else now
        try:
            entries = self.list(area)
        except OSError as e:
            self._logger.error("Cleanup error", area=area.value, error=str(e))
            return 0

        deleted = 0
        for entry in entries:
            if now - entry.modified_at > ttl_seconds and self.delete(area, entry.key):
                deleted += 1

        if deleted:
            self._logger.info(f"Cleanup: deleted {deleted} old file(s) from {area.value}")
        return deleted


class CleanupScheduler:
    """
    Periodic TTL sweep of the uploads and processed areas.

    The task is owned by the application lifespan: ``start()`` when the
    service starts, ``stop()`` when it shuts down. ``run_once()`` performs a
    single sweep and is what tests call directly.
    """

    def __init__(
        self,
        storage: StorageBackend,
        interval_seconds: float,
        ttl_seconds: float,
        logger: Optional[LoggerProtocol] = None,
    ):
        self._storage = storage
        self.interval_seconds = interval_seconds
        self.ttl_seconds = ttl_seconds
        self._logger = logger or StructuredLogger("cleanup")
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def run_once(self, now: Optional[float] = None) -> int:
        return sum(
            self._storage.sweep(area, self.ttl_seconds, now=now) for area in WORKING_AREAS
        )

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                await asyncio.to_thread(self.run_once)
            except Exception as e:  # noqa: BLE001
                self._logger.error("Cleanup sweep failed", error=str(e), exc_info=True)

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._loop())
        self._logger.info(
            f"File cleanup scheduled every {self.interval_seconds / 60:g} minutes "
            f"(TTL: {self.ttl_seconds / 60:g} min)"
        )

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
