"""Request-scoped dependencies shared by the image routes."""

from fastapi import Depends, Request

from ..core.factories import ToolkitServices
from ..core.observability import LogContext


def get_services(request: Request) -> ToolkitServices:
    return request.app.state.services


def client_identity(request: Request) -> str:
    """Rate-limit key for the caller: its peer address."""
    if request.client and request.client.host:
        return request.client.host
    return "anonymous"


def get_log_context(request: Request) -> LogContext:
    context = getattr(request.state, "log_context", None)
    return context if context is not None else LogContext(component="api")


async def authenticate(request: Request) -> None:
    """
    Authentication hook for the image routes.

    Currently a no-op: every caller is anonymous.
    """
    request.state.user = None


def enforce_processing_limit(
    request: Request, services: ToolkitServices = Depends(get_services)
) -> None:
    services.admission.check_processing(client_identity(request))
