"""Per-request fan-out of transcodes and the choice of delivery shape."""

import asyncio
import time
from concurrent.futures import Executor
from typing import List, Optional, Sequence

from .error_handling import BatchOperationContextManager
from .exceptions import CodecError, ImageToolkitError, NoValidFilesError
from .engine import TranscodeAdapter
from .models import (
    DeliveryMode,
    ProcessingFailure,
    ProcessingOutcome,
    ProcessingSettings,
    ProcessingSuccess,
    StorageArea,
    UploadedFile,
)
from .observability import LogContext, StructuredLogger
from .protocols import LoggerProtocol, StorageBackend


def successes(outcomes: Sequence[ProcessingOutcome]) -> List[ProcessingSuccess]:
    return [o for o in outcomes if isinstance(o, ProcessingSuccess)]


def failures(outcomes: Sequence[ProcessingOutcome]) -> List[ProcessingFailure]:
    return [o for o in outcomes if isinstance(o, ProcessingFailure)]


def _failure_message(exc: BaseException) -> str:
    if isinstance(exc, ImageToolkitError):
        return exc.message
    return str(exc) or type(exc).__name__


class ProcessingOrchestrator:
    """Runs one transcode per upload concurrently and collects the outcomes."""

    def __init__(
        self,
        adapter: TranscodeAdapter,
        storage: StorageBackend,
        executor: Optional[Executor] = None,
        logger: Optional[LoggerProtocol] = None,
    ):
        self._adapter = adapter
        self._storage = storage
        self._executor = executor
        self._logger = logger or StructuredLogger("orchestrator")

    async def _transcode(
        self, upload: UploadedFile, settings: ProcessingSettings, context: LogContext
    ) -> ProcessingSuccess:
        loop = asyncio.get_running_loop()
        result = await loop.run_in_executor(
            self._executor, self._adapter.transcode, upload, settings, context
        )
        return ProcessingSuccess(
            result=result,
            original_name=upload.original_name,
            original_size=upload.size_bytes,
        )

    async def run(
        self,
        files: Sequence[UploadedFile],
        settings: ProcessingSettings,
        context: Optional[LogContext] = None,
    ) -> List[ProcessingOutcome]:
        """
        Transcode every upload and return outcomes in upload order.

        A failing file becomes a ProcessingFailure; its siblings carry on.
        Every upload is deleted once all transcodes have finished.
        """
        log_context = (context or LogContext()).with_operation("process_images")
        start_time = time.time()

        try:
            raw = await asyncio.gather(
                *(self._transcode(upload, settings, log_context) for upload in files),
                return_exceptions=True,
            )
        finally:
            for upload in files:
                self._storage.delete(StorageArea.UPLOADS, upload.key)

        outcomes: List[ProcessingOutcome] = []
        with BatchOperationContextManager(
            operation_name=f"Request {log_context.correlation_id}"
        ) as batch:
            for upload, item in zip(files, raw):
                if isinstance(item, BaseException):
                    if not isinstance(item, Exception):
                        raise item
                    message = _failure_message(item)
                    batch.add_error(message, item_identifier=upload.original_name)
                    outcomes.append(
                        ProcessingFailure(original_name=upload.original_name, error=message)
                    )
                else:
                    outcomes.append(item)

        self._logger.info(
            f"Processed {len(successes(outcomes))} image(s), "
            f"{len(failures(outcomes))} error(s).",
            log_context,
            duration_ms=round((time.time() - start_time) * 1000, 1),
        )
        return outcomes

    def choose_delivery(self, outcomes: Sequence[ProcessingOutcome]) -> DeliveryMode:
        """
        Single-stream for exactly one success, archive otherwise.

        Raises:
            CodecError: The request held one file and it failed.
            NoValidFilesError: A multi-file request produced no success.
        """
        succeeded = successes(outcomes)
        if len(succeeded) == 1:
            return DeliveryMode.SINGLE
        if succeeded:
            return DeliveryMode.ARCHIVE

        failed = failures(outcomes)
        if len(outcomes) == 1 and failed:
            raise CodecError(failed[0].error)
        raise NoValidFilesError([f.to_report() for f in failed])

    def release(self, outcomes: Sequence[ProcessingOutcome]) -> int:
        """Delete every output produced for a request; safe to call twice."""
        return sum(
            1
            for outcome in successes(outcomes)
            if self._storage.delete(StorageArea.PROCESSED, outcome.result.output_key)
        )
