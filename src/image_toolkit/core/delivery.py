"""Streaming delivery of processed images: single file, ZIP archive, JSON summary."""

import io
import json
import os
import threading
import zipfile
from typing import AsyncIterator, Callable, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple
from urllib.parse import quote

from fastapi.concurrency import iterate_in_threadpool, run_in_threadpool
from fastapi.responses import StreamingResponse

from .exceptions import NotFoundError
from .image_utils import content_type_for, output_extension
from .models import (
    ProcessingFailure,
    ProcessingOutcome,
    ProcessingSuccess,
    StorageArea,
)
from .observability import StructuredLogger
from .orchestrator import failures, successes
from .protocols import LoggerProtocol, StorageBackend
from .storage import sanitize_key

ARCHIVE_NAME = "processed-images.zip"
ARCHIVE_TIMESTAMP = (1980, 1, 1, 0, 0, 0)
CHUNK_SIZE = 64 * 1024


def compression_ratio(original_size: int, processed_size: int) -> float:
    """Percentage saved by processing, one decimal place; 0 for empty sources."""
    if original_size <= 0:
        return 0.0
    ratio = round((1 - processed_size / original_size) * 100, 1)
    # Outputs a hair larger than the source round to -0.0
    return ratio if ratio != 0 else 0.0


def content_disposition(filename: str) -> str:
    ascii_name = filename.encode("ascii", "ignore").decode("ascii").replace('"', "") or "download"
    return f"attachment; filename=\"{ascii_name}\"; filename*=UTF-8''{quote(filename)}"


def output_name(original_name: str, fmt: str) -> str:
    """Original base name with the extension of the new format."""
    stem = os.path.splitext(os.path.basename(original_name))[0] or "image"
    return f"{stem}.{output_extension(fmt)}"


def unique_names(names: Iterable[str]) -> List[str]:
    """Suffix repeated names with `` (n)`` so archive entries never collide."""
    seen: Dict[str, int] = {}
    result: List[str] = []
    for name in names:
        candidate = name
        stem, ext = os.path.splitext(name)
        counter = seen.get(name, 0)
        while candidate in seen:
            counter += 1
            candidate = f"{stem} ({counter}){ext}"
        seen[name] = counter
        seen[candidate] = 0
        result.append(candidate)
    return result


def errors_header(failed: Sequence[ProcessingFailure]) -> Dict[str, str]:
    if not failed:
        return {}
    return {"X-Processing-Errors": json.dumps([f.to_report() for f in failed])}


class ReleaseOnce:
    """Run a cleanup callable at most once, from whichever path gets there first."""

    def __init__(self, callback: Callable[[], object]):
        self._callback = callback
        self._lock = threading.Lock()
        self.done = False

    def __call__(self) -> None:
        with self._lock:
            if self.done:
                return
            self.done = True
        self._callback()


async def _closing(chunks: Iterator[bytes]) -> AsyncIterator[bytes]:
    """Iterate a sync chunk generator off the event loop, closing it when abandoned."""
    try:
        async for chunk in iterate_in_threadpool(chunks):
            yield chunk
    finally:
        chunks.close()


class ReleasingStreamingResponse(StreamingResponse):
    """StreamingResponse that closes its body and runs ``release`` however the send
    ends, a client dropping mid-stream included."""

    def __init__(self, content: Iterator[bytes], release: Optional[ReleaseOnce] = None, **kwargs):
        super().__init__(_closing(content), **kwargs)
        self.release = release

    async def __call__(self, scope, receive, send) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            await self.body_iterator.aclose()
            if self.release is not None:
                await run_in_threadpool(self.release)


class _ZipStreamBuffer(io.RawIOBase):
    """Write-only sink that hands the bytes zipfile produced back in chunks."""

    def __init__(self):
        self._chunks: List[bytes] = []

    def writable(self) -> bool:
        return True

    def write(self, b) -> int:
        self._chunks.append(bytes(b))
        return len(b)

    def drain(self) -> bytes:
        data = b"".join(self._chunks)
        self._chunks.clear()
        return data


def _zip_info(name: str) -> zipfile.ZipInfo:
    info = zipfile.ZipInfo(name, date_time=ARCHIVE_TIMESTAMP)
    info.compress_type = zipfile.ZIP_DEFLATED
    info.create_system = 3
    info.external_attr = 0o644 << 16
    return info


class DeliveryStreamer:
    """Builds streaming HTTP responses for processed outputs."""

    def __init__(self, storage: StorageBackend, logger: Optional[LoggerProtocol] = None):
        self._storage = storage
        self._logger = logger or StructuredLogger("delivery")

    def _stream_file(self, key: str, release: Optional[ReleaseOnce] = None) -> Iterator[bytes]:
        try:
            yield from self._storage.iter_chunks(StorageArea.PROCESSED, key, CHUNK_SIZE)
        except Exception as e:
            self._logger.error("File stream aborted", key=key, error=str(e))
            raise
        finally:
            if release is not None:
                release()

    def _stream_archive(
        self, entries: Sequence[Tuple[str, str]], release: Optional[ReleaseOnce] = None
    ) -> Iterator[bytes]:
        buffer = _ZipStreamBuffer()
        try:
            with zipfile.ZipFile(buffer, mode="w", compression=zipfile.ZIP_DEFLATED) as archive:
                for name, key in entries:
                    with archive.open(_zip_info(name), mode="w") as member:
                        for chunk in self._storage.iter_chunks(
                            StorageArea.PROCESSED, key, CHUNK_SIZE
                        ):
                            member.write(chunk)
                            data = buffer.drain()
                            if data:
                                yield data
            tail = buffer.drain()
            if tail:
                yield tail
        except Exception as e:
            self._logger.error("ZIP archive error", error=str(e), exc_info=True)
            raise
        finally:
            if release is not None:
                release()

    def single_file_response(
        self,
        success: ProcessingSuccess,
        failed: Sequence[ProcessingFailure] = (),
        release: Optional[Callable[[], object]] = None,
    ) -> StreamingResponse:
        """Stream one processed file with its metadata carried in headers."""
        result = success.result
        guard = ReleaseOnce(release) if release is not None else None
        headers = {
            "Content-Disposition": content_disposition(
                output_name(success.original_name, result.output_format)
            ),
            "Content-Length": str(result.output_size),
            "X-Original-Name": quote(success.original_name),
            "X-Original-Size": str(success.original_size),
            "X-Processed-Size": str(result.output_size),
            "X-Original-Width": str(result.source_dimensions.width),
            "X-Original-Height": str(result.source_dimensions.height),
            "X-Processed-Width": str(result.output_dimensions.width),
            "X-Processed-Height": str(result.output_dimensions.height),
            "X-Compression-Ratio": f"{compression_ratio(success.original_size, result.output_size):.1f}",
            "X-Output-Format": result.output_format,
            **errors_header(failed),
        }
        return ReleasingStreamingResponse(
            self._stream_file(result.output_key, guard),
            media_type=content_type_for(result.output_format),
            headers=headers,
            release=guard,
        )

    def archive_response(
        self,
        outcomes: Sequence[ProcessingOutcome],
        release: Optional[Callable[[], object]] = None,
    ) -> StreamingResponse:
        """Stream a deterministic ZIP with one entry per success, in outcome order."""
        succeeded = successes(outcomes)
        failed = failures(outcomes)
        names = unique_names(
            output_name(s.original_name, s.result.output_format) for s in succeeded
        )
        entries = [(name, s.result.output_key) for name, s in zip(names, succeeded)]
        guard = ReleaseOnce(release) if release is not None else None

        self._logger.info(f"ZIP delivery: {len(entries)} file(s), {len(failed)} error(s)")
        headers = {
            "Content-Disposition": content_disposition(ARCHIVE_NAME),
            "X-Processed-Count": str(len(entries)),
            "X-Failed-Count": str(len(failed)),
            **errors_header(failed),
        }
        return ReleasingStreamingResponse(
            self._stream_archive(entries, guard),
            media_type="application/zip",
            headers=headers,
            release=guard,
        )

    def bundle_response(self, filenames: Sequence[str]) -> StreamingResponse:
        """
        Re-bundle processed files still resident in storage.

        Names are reduced to their base name; files stay in place for the
        TTL sweep to collect.

        Raises:
            NotFoundError: None of the requested files exist.
        """
        keys: List[str] = []
        for filename in filenames:
            key = sanitize_key(filename)
            if key and key not in keys and self._storage.exists(StorageArea.PROCESSED, key):
                keys.append(key)

        if not keys:
            raise NotFoundError("No valid files found.")

        self._logger.info(f"ZIP download: {len(keys)} file(s)")
        return ReleasingStreamingResponse(
            self._stream_archive([(key, key) for key in keys]),
            media_type="application/zip",
            headers={"Content-Disposition": content_disposition(ARCHIVE_NAME)},
        )

    def resident_file_response(self, filename: str) -> StreamingResponse:
        """Stream a resident processed file by name."""
        key = sanitize_key(filename)
        if key is None or not self._storage.exists(StorageArea.PROCESSED, key):
            raise NotFoundError("File not found.")
        ext = os.path.splitext(key)[1].lstrip(".").lower()
        fmt = "jpeg" if ext == "jpg" else ext
        return ReleasingStreamingResponse(
            self._stream_file(key),
            media_type=content_type_for(fmt),
            headers={"Content-Length": str(self._storage.size(StorageArea.PROCESSED, key))},
        )

    def summary(self, outcomes: Sequence[ProcessingOutcome]) -> Dict[str, object]:
        """JSON summary of a request whose outputs stay resident until the sweep."""
        processed = []
        for s in successes(outcomes):
            result = s.result
            processed.append(
                {
                    "originalName": s.original_name,
                    "originalSize": s.original_size,
                    "originalDimensions": result.source_dimensions.model_dump(),
                    "originalFormat": result.source_format,
                    "processedName": result.output_key,
                    "processedSize": result.output_size,
                    "processedDimensions": result.output_dimensions.model_dump(),
                    "processedFormat": result.output_format,
                    "downloadUrl": f"/images/processed/{result.output_key}",
                    "compressionRatio": compression_ratio(s.original_size, result.output_size),
                }
            )
        errors = [f.to_report() for f in failures(outcomes)]
        return {
            "success": True,
            "processed": processed,
            "errors": errors,
            "total": len(outcomes),
            "succeeded": len(processed),
            "failed": len(errors),
        }
