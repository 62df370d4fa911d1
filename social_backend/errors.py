"""
Error types for the social backend and their HTTP rendering.

Every failure leaves the API as ``{"error": <message>}`` with a status code
taken from the exception:

- UnauthorizedError: 401, no verified identity
- NotFoundError: 404, user or target absent
- InvalidOperationError: 400, e.g. following yourself
- ConflictError: 409, e.g. username already taken

DuplicateUserError is raised by the stores on unique-constraint violations
and is handled by the services. IdentityProviderError and any other
exception become a generic 500.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class ServiceError(Exception):
    """Base class for errors that map to a client-visible status code."""

    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class UnauthorizedError(ServiceError):
    status_code = 401
    default_message = "Unauthorized - you must be logged in"


class NotFoundError(ServiceError):
    status_code = 404
    default_message = "User not found"


class InvalidOperationError(ServiceError):
    status_code = 400
    default_message = "Invalid operation"


class ConflictError(ServiceError):
    status_code = 409
    default_message = "Conflict"


class DuplicateUserError(Exception):
    """A user create/update violated a unique constraint.

    Attributes:
        field: The unique field that collided ("external_id" or "username").
    """

    def __init__(self, field: str, value: str) -> None:
        super().__init__(f"User with {field}={value!r} already exists")
        self.field = field
        self.value = value


class IdentityProviderError(Exception):
    """The identity provider could not be reached or answered unexpectedly."""


def _error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def register_error_handlers(app: FastAPI) -> None:
    """Render every failure as ``{"error": ...}``."""

    @app.exception_handler(ServiceError)
    async def handle_service_error(request: Request, exc: ServiceError):
        return _error_response(exc.status_code, exc.message)

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_error(request: Request, exc: StarletteHTTPException):
        return _error_response(exc.status_code, str(exc.detail))

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        if errors:
            first = errors[0]
            location = ".".join(str(part) for part in first.get("loc", ()))
            message = f"{location}: {first.get('msg', 'invalid value')}"
        else:
            message = "Invalid request"
        return _error_response(422, message)

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        logger.exception(
            "Unhandled error on %s %s", request.method, request.url.path
        )
        return _error_response(500, ServiceError.default_message)
