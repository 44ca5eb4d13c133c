"""Exception handlers rendering every failure as ``{success: false, error}``."""

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from ..core.exceptions import ImageToolkitError, RateLimitError
from ..core.observability import StructuredLogger

GENERIC_ERROR_MESSAGE = "An internal server error occurred."

logger = StructuredLogger("api")


def _is_production(request: Request) -> bool:
    return request.app.state.services.settings.is_production


def _describe_request(request: Request) -> dict:
    return {
        "url": request.url.path,
        "method": request.method,
        "ip": request.client.host if request.client else None,
    }


async def toolkit_error_handler(request: Request, exc: ImageToolkitError) -> JSONResponse:
    payload = exc.to_payload()
    headers = {}

    if isinstance(exc, RateLimitError):
        headers["Retry-After"] = str(exc.retry_after)

    if exc.status_code >= 500:
        logger.error(exc.message, exc_info=True, **_describe_request(request))
        if _is_production(request):
            payload["error"] = GENERIC_ERROR_MESSAGE
    else:
        logger.warning(exc.message, status=exc.status_code, **_describe_request(request))

    return JSONResponse(status_code=exc.status_code, content=payload, headers=headers)


async def request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    details = "; ".join(
        f"{'.'.join(str(p) for p in error.get('loc', ()))}: {error.get('msg')}"
        for error in exc.errors()
    )
    return JSONResponse(
        status_code=400,
        content={"success": False, "error": f"Invalid request: {details}"},
    )


async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    message = exc.detail
    if exc.status_code == 404 and message == "Not Found":
        message = f"Route not found: {request.url.path}"
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": message},
        headers=getattr(exc, "headers", None),
    )


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(f"Unhandled error: {exc}", exc_info=True, **_describe_request(request))
    message = GENERIC_ERROR_MESSAGE if _is_production(request) else str(exc) or GENERIC_ERROR_MESSAGE
    return JSONResponse(status_code=500, content={"success": False, "error": message})


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ImageToolkitError, toolkit_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
