from fastapi import Request

from booking_lifecycle import BookingLifecycleController
from config import Settings
from errors import NotFound


def get_controller(request: Request) -> BookingLifecycleController:
    return request.app.state.controller


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def require_debug_access(request: Request) -> None:
    """
    Gate for debug routes. Open only in development and test; anywhere else
    the request must carry an x-debug-key equal to DEBUG_API_KEY, otherwise
    the route pretends not to exist.
    """
    settings = get_settings(request)
    if settings.is_local:
        return
    expected = settings.debug_api_key
    provided = request.headers.get("x-debug-key")
    if not expected or not provided or provided != expected:
        raise NotFound("Not found")
