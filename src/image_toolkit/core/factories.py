"""Factory classes for creating configured service instances."""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Optional

from .config import Settings, get_settings
from .delivery import DeliveryStreamer
from .engine import PillowCodec, TranscodeAdapter
from .exceptions import ConfigurationError
from .models import StorageArea
from .observability import StructuredLogger
from .orchestrator import ProcessingOrchestrator
from .protocols import ImageCodecProtocol, LoggerProtocol, StorageBackend
from .rate_limiter import AdmissionController
from .storage import CleanupScheduler, LocalStorage
from .validation import IngressValidator


class LoggerFactory:
    """Factory for creating logger instances."""

    @staticmethod
    def create_logger(name: str) -> LoggerProtocol:
        """Create a structured logger under the toolkit root logger."""
        return StructuredLogger(name)


@dataclass
class ToolkitServices:
    """Every collaborator one running service needs."""

    settings: Settings
    storage: StorageBackend
    validator: IngressValidator
    adapter: TranscodeAdapter
    orchestrator: ProcessingOrchestrator
    delivery: DeliveryStreamer
    admission: AdmissionController
    scheduler: CleanupScheduler
    executor: ThreadPoolExecutor
    codec: ImageCodecProtocol

    def log_dir(self) -> Optional[str]:
        if isinstance(self.storage, LocalStorage):
            return str(self.storage.area_path(StorageArea.LOGS))
        return None

    def shutdown(self) -> None:
        self.executor.shutdown(wait=True)


class ServiceFactory:
    """Factory for creating the complete processing service."""

    @staticmethod
    def create_services(
        settings: Optional[Settings] = None,
        storage: Optional[StorageBackend] = None,
        codec: Optional[ImageCodecProtocol] = None,
        logger: Optional[LoggerProtocol] = None,
    ) -> ToolkitServices:
        """Create a fully wired service graph; collaborators can be injected."""

        # Create default dependencies if not provided
        if settings is None:
            settings = get_settings()

        if storage is None:
            root = settings.STORAGE_ROOT
            if root.exists() and not root.is_dir():
                raise ConfigurationError(f"STORAGE_ROOT is not a directory: {root}")
            storage = LocalStorage(
                root, logger or LoggerFactory.create_logger("storage")
            )

        if codec is None:
            codec = PillowCodec()

        def _logger(name: str) -> LoggerProtocol:
            return logger or LoggerFactory.create_logger(name)

        executor = ThreadPoolExecutor(
            max_workers=settings.TRANSCODE_WORKERS, thread_name_prefix="transcode"
        )

        # Create services
        adapter = TranscodeAdapter(storage, codec, _logger("engine"))
        orchestrator = ProcessingOrchestrator(
            adapter, storage, executor, _logger("orchestrator")
        )

        return ToolkitServices(
            settings=settings,
            storage=storage,
            validator=IngressValidator(
                max_files=settings.MAX_FILES_PER_REQUEST,
                max_file_size=settings.max_file_size_bytes,
                logger=_logger("validation"),
            ),
            adapter=adapter,
            orchestrator=orchestrator,
            delivery=DeliveryStreamer(storage, _logger("delivery")),
            admission=AdmissionController.from_settings(settings, _logger("rate_limiter")),
            scheduler=CleanupScheduler(
                storage,
                interval_seconds=settings.cleanup_interval_seconds,
                ttl_seconds=settings.file_ttl_seconds,
                logger=_logger("cleanup"),
            ),
            executor=executor,
            codec=codec,
        )
