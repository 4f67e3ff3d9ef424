"""
Error taxonomy for the RFID lookup service.

Every error carries the HTTP status it maps to, a stable machine-readable
code and a message that is safe to show to API callers. The application
exception handlers turn these into the JSON envelope
``{"error": <error_code>, "message": <message>}``.
"""

from typing import Any, Dict, Optional

from fastapi import status
from fastapi.responses import JSONResponse
from starlette.background import BackgroundTasks


class RfidApiError(Exception):
    """Base class for errors raised by the service."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    error_code: str = "internal_error"
    default_message: str = "internal error"

    def __init__(self, message: Optional[str] = None, **context: Any):
        self.message = message or self.default_message
        self.context = context
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, str]:
        """Response envelope for this error."""
        return {"error": self.error_code, "message": self.message}


class ValidationError(RfidApiError):
    """Missing or malformed input; the caller can correct it."""

    status_code = status.HTTP_400_BAD_REQUEST
    error_code = "validation_error"
    default_message = "invalid request"


class NotFoundError(RfidApiError):
    """No record matches the requested identifier."""

    status_code = status.HTTP_404_NOT_FOUND
    error_code = "not_found"
    default_message = "not found"


class StorageError(RfidApiError):
    """
    Datastore unreachable or a query failed.

    The public message never carries driver detail; the underlying
    exception is kept as ``__cause__`` for logging.
    """

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    error_code = "storage_error"
    default_message = "internal error"

    def to_dict(self) -> Dict[str, str]:
        return {"error": self.error_code, "message": self.default_message}


class NotificationError(RfidApiError):
    """Delivery to the chat channel or live feed failed. Logged only."""

    status_code = status.HTTP_502_BAD_GATEWAY
    error_code = "notification_error"
    default_message = "notification delivery failed"


def error_response(
    exc: RfidApiError,
    background: Optional[BackgroundTasks] = None
) -> JSONResponse:
    """
    Build the JSON error response for an error.

    Args:
        exc: Error to render
        background: Tasks to run after the response is sent

    Returns:
        JSONResponse with the error envelope
    """
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_dict(),
        background=background
    )
