"""
Admission control
=================
Two independent moving windows per client identity:

- global: applied to every route (default 100 requests / 15 minutes)
- processing: applied to the processing endpoint only, on top of the
  global window (default 20 requests / 1 minute)
"""

import math
import time
from typing import Optional

from limits import RateLimitItem, RateLimitItemPerMinute
from limits.storage import MemoryStorage, Storage
from limits.strategies import MovingWindowRateLimiter

from .exceptions import RateLimitError
from .observability import StructuredLogger
from .protocols import LoggerProtocol

GLOBAL_SCOPE = "global"
PROCESS_SCOPE = "process"


class AdmissionController:
    """Checks client requests against the global and processing windows."""

    def __init__(
        self,
        global_limit: RateLimitItem,
        process_limit: RateLimitItem,
        storage: Optional[Storage] = None,
        logger: Optional[LoggerProtocol] = None,
    ):
        self.global_limit = global_limit
        self.process_limit = process_limit
        self._limiter = MovingWindowRateLimiter(storage or MemoryStorage())
        self._logger = logger or StructuredLogger("rate_limiter")

    @classmethod
    def from_settings(cls, settings, logger: Optional[LoggerProtocol] = None) -> "AdmissionController":
        return cls(
            global_limit=RateLimitItemPerMinute(
                settings.RATE_LIMIT_MAX_REQUESTS, settings.RATE_LIMIT_WINDOW_MINUTES
            ),
            process_limit=RateLimitItemPerMinute(
                settings.PROCESS_RATE_LIMIT_MAX_REQUESTS,
                settings.PROCESS_RATE_LIMIT_WINDOW_MINUTES,
            ),
            logger=logger,
        )

    def _retry_after(self, item: RateLimitItem, scope: str, client_id: str) -> int:
        reset_time, _ = self._limiter.get_window_stats(item, scope, client_id)
        return max(1, math.ceil(reset_time - time.time()))

    def _hit(self, item: RateLimitItem, scope: str, client_id: str, message: str) -> None:
        if self._limiter.hit(item, scope, client_id):
            return
        retry_after = self._retry_after(item, scope, client_id)
        self._logger.warning(
            f"Rate limit exceeded: {client_id}", scope=scope, retry_after=retry_after
        )
        raise RateLimitError(message, retry_after=retry_after)

    def check_global(self, client_id: str) -> None:
        """Count a request against the global window."""
        self._hit(
            self.global_limit,
            GLOBAL_SCOPE,
            client_id,
            "Too many requests. Please try again later.",
        )

    def check_processing(self, client_id: str) -> None:
        """Count a processing request against the stricter window."""
        self._hit(
            self.process_limit,
            PROCESS_SCOPE,
            client_id,
            "Processing limit reached. Please wait a moment.",
        )

    def reset(self) -> None:
        self._limiter.storage.reset()
