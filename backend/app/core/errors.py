"""Typed errors raised by the maintenance lifecycle.

Every error carries a stable ``code``, the HTTP status the API answers
with, and a message that is safe to show to the person who triggered it.
"""

from typing import Any, Optional

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse


class MaintenanceError(Exception):
    """Base class for lifecycle errors."""

    code = "maintenance_error"
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "The request could not be processed"

    def __init__(self, message: Optional[str] = None, **details: Any):
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)


class ValidationError(MaintenanceError):
    """Missing or malformed input. The user can correct it and retry."""

    code = "validation_error"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    default_message = "Some required information is missing"


class InvalidTransition(MaintenanceError):
    """The request is not in a state that allows the action."""

    code = "invalid_transition"
    status_code = status.HTTP_409_CONFLICT
    default_message = "This action is not allowed in the request's current status"


class Unauthorized(MaintenanceError):
    code = "unauthorized"
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "You are not allowed to perform this action"


class NotFound(MaintenanceError):
    code = "not_found"
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Maintenance request not found"


class StorageError(MaintenanceError):
    """A collaborator (database, blob storage) failed. Retrying may help."""

    code = "storage_error"
    status_code = status.HTTP_502_BAD_GATEWAY
    default_message = "Could not save your changes, please try again"


class Conflict(MaintenanceError):
    """The request changed since the caller last read it."""

    code = "conflict"
    status_code = status.HTTP_409_CONFLICT
    default_message = "This request was updated by someone else, reload and try again"


def error_payload(err: MaintenanceError) -> dict[str, Any]:
    payload: dict[str, Any] = {"detail": err.message, "error": err.code}
    if err.details:
        payload["context"] = {k: str(v) for k, v in err.details.items()}
    return payload


def register_error_handlers(app: FastAPI) -> None:
    """Render lifecycle errors as JSON with their mapped status code."""

    @app.exception_handler(MaintenanceError)
    async def handle_maintenance_error(request: Request, err: MaintenanceError):
        return JSONResponse(status_code=err.status_code, content=error_payload(err))
