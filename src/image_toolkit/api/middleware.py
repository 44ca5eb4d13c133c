"""HTTP middleware: global admission window and access logging."""

import time

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from ..core.exceptions import RateLimitError
from ..core.observability import LogContext, StructuredLogger
from .dependencies import client_identity

REQUEST_ID_HEADER = "X-Request-ID"

access_logger = StructuredLogger("http")


def register_middleware(app: FastAPI) -> None:
    """Register middleware; the access log wraps the rate limiter."""

    @app.middleware("http")
    async def global_rate_limit(request: Request, call_next):
        services = request.app.state.services
        try:
            services.admission.check_global(client_identity(request))
        except RateLimitError as exc:
            return JSONResponse(
                status_code=exc.status_code,
                content=exc.to_payload(),
                headers={"Retry-After": str(exc.retry_after)},
            )
        return await call_next(request)

    @app.middleware("http")
    async def access_log(request: Request, call_next):
        request_id = request.headers.get(REQUEST_ID_HEADER) or LogContext().correlation_id
        context = LogContext(correlation_id=request_id, component="api")
        request.state.log_context = context
        start_time = time.time()

        response = await call_next(request)

        access_logger.info(
            f"{request.method} {request.url.path} {response.status_code}",
            context,
            duration_ms=round((time.time() - start_time) * 1000, 1),
        )
        response.headers[REQUEST_ID_HEADER] = request_id
        return response
