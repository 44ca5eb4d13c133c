"""Image routes. Base: /images"""

from functools import partial
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from ..core.exceptions import ImageToolkitError, NotFoundError, ValidationError
from ..core.factories import ToolkitServices
from ..core.models import DeliveryMode, StorageArea
from ..core.observability import LogContext
from ..core.orchestrator import failures, successes
from ..core.storage import sanitize_key
from ..core.validation import IncomingPart
from .dependencies import (
    authenticate,
    enforce_processing_limit,
    get_log_context,
    get_services,
)

router = APIRouter(prefix="/images", tags=["images"], dependencies=[Depends(authenticate)])


class DownloadZipRequest(BaseModel):
    filenames: Optional[List[str]] = None


def _declared_size(upload: UploadFile) -> int:
    if upload.size is not None:
        return upload.size
    stream = upload.file
    position = stream.tell()
    stream.seek(0, 2)
    size = stream.tell()
    stream.seek(position)
    return size


def _to_part(upload: UploadFile) -> IncomingPart:
    return IncomingPart(
        filename=upload.filename or "",
        content_type=upload.content_type or "",
        size=_declared_size(upload),
        stream=upload.file,
    )


@router.post("/process", dependencies=[Depends(enforce_processing_limit)])
async def process_images(
    images: Optional[List[UploadFile]] = File(default=None),
    settings: Optional[str] = Form(default=None),
    delivery: str = Query(default="stream", pattern="^(stream|json)$"),
    services: ToolkitServices = Depends(get_services),
    context: LogContext = Depends(get_log_context),
):
    """
    Upload and transform one or more images.

    One successful output is streamed as the raw body with its metadata in
    ``X-*`` headers; otherwise a ZIP of every success is streamed. With
    ``delivery=json`` a summary is returned and outputs stay resident until
    the TTL sweep.
    """
    parts = [_to_part(upload) for upload in images or []]
    uploads, parsed = await run_in_threadpool(
        services.validator.admit, parts, settings, services.storage
    )

    outcomes = await services.orchestrator.run(uploads, parsed, context)

    if delivery == "json":
        return JSONResponse(services.delivery.summary(outcomes))

    try:
        mode = services.orchestrator.choose_delivery(outcomes)
    except ImageToolkitError:
        services.orchestrator.release(outcomes)
        raise

    release = partial(services.orchestrator.release, outcomes)
    if mode is DeliveryMode.SINGLE:
        return services.delivery.single_file_response(
            successes(outcomes)[0], failures(outcomes), release
        )
    return services.delivery.archive_response(outcomes, release)


@router.post("/download-zip")
def download_zip(
    payload: DownloadZipRequest,
    services: ToolkitServices = Depends(get_services),
):
    """Bundle processed images that are still resident into a ZIP."""
    if not payload.filenames:
        raise ValidationError("No filenames provided.")
    return services.delivery.bundle_response(payload.filenames)


@router.get("/metadata/{filename}")
def get_metadata(filename: str, services: ToolkitServices = Depends(get_services)):
    """Return image metadata for a resident processed file (no processing)."""
    key = sanitize_key(filename)
    if key is None or not services.storage.exists(StorageArea.PROCESSED, key):
        raise NotFoundError("File not found.")

    metadata = services.codec.describe(services.storage.read(StorageArea.PROCESSED, key))
    return {"success": True, "metadata": metadata.model_dump(by_alias=True)}


@router.get("/processed/{filename}")
def get_processed_file(filename: str, services: ToolkitServices = Depends(get_services)):
    """Download a resident processed file."""
    return services.delivery.resident_file_response(filename)
