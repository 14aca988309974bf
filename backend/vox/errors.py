"""
Error taxonomy and the JSON error envelope.

Every failure leaves the API as:

    {"success": false, "error": "<message>", "error_kind": "<kind>", "detail": ...}

The dashboard branches on ``error_kind``, never on the message text.

Usage:
    from vox.errors import NotFoundError, register_exception_handlers

    register_exception_handlers(app)

    if agent is None:
        raise NotFoundError("Agent not found")
"""

import logging
from enum import Enum
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from starlette.exceptions import HTTPException

from vox.config import sanitize_error

logger = logging.getLogger(__name__)


class ErrorKind(str, Enum):
    """Machine-readable error category carried in every error envelope."""

    AUTHENTICATION = "authentication"
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    UPSTREAM = "upstream"
    TOKEN_EXPIRED = "token_expired"
    CONFIGURATION = "configuration"
    PERSISTENCE = "persistence"
    INTERNAL = "internal"


class ErrorEnvelope(BaseModel):
    """Error response body."""

    success: bool = False
    error: str
    error_kind: ErrorKind
    detail: str | None = None


class VoxError(Exception):
    """Base class for errors that map onto an HTTP status and an ErrorKind."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    kind: ErrorKind = ErrorKind.INTERNAL

    def __init__(self, message: str, detail: str | None = None):
        self.message = message
        self.detail = detail
        super().__init__(message)


class AuthenticationError(VoxError):
    """No valid Supabase session, or no stored CRM credentials."""

    status_code = status.HTTP_401_UNAUTHORIZED
    kind = ErrorKind.AUTHENTICATION

    def __init__(self, message: str = "Authentication required", detail: str | None = None):
        super().__init__(message, detail)


class ValidationError(VoxError):
    """Missing or malformed request fields."""

    status_code = status.HTTP_400_BAD_REQUEST
    kind = ErrorKind.VALIDATION


class NotFoundError(VoxError):
    """Resource missing or not owned by the caller."""

    status_code = status.HTTP_404_NOT_FOUND
    kind = ErrorKind.NOT_FOUND


class ConflictError(VoxError):
    status_code = status.HTTP_409_CONFLICT
    kind = ErrorKind.CONFLICT


class ConfigurationError(VoxError):
    """A required setting (OAuth client credentials, ...) is missing."""

    kind = ErrorKind.CONFIGURATION


class PersistenceError(VoxError):
    """A primary database write failed."""

    kind = ErrorKind.PERSISTENCE


class UpstreamError(VoxError):
    """LeadConnector or the inference backend returned an error."""

    kind = ErrorKind.UPSTREAM

    def __init__(
        self,
        message: str,
        *,
        upstream_status: int | None = None,
        body: str | None = None,
        detail: str | None = None,
    ):
        super().__init__(message, detail)
        self.upstream_status = upstream_status
        self.body = body


class TokenExpiredError(UpstreamError):
    """LeadConnector rejected the access token even after a refresh."""

    status_code = status.HTTP_401_UNAUTHORIZED
    kind = ErrorKind.TOKEN_EXPIRED


def error_body(kind: ErrorKind, message: str, detail: str | None = None) -> dict[str, Any]:
    """Build the error envelope as a plain dict."""
    return ErrorEnvelope(error=message, error_kind=kind, detail=detail).model_dump(mode="json")


_STATUS_KINDS = {
    status.HTTP_400_BAD_REQUEST: ErrorKind.VALIDATION,
    status.HTTP_401_UNAUTHORIZED: ErrorKind.AUTHENTICATION,
    status.HTTP_404_NOT_FOUND: ErrorKind.NOT_FOUND,
    status.HTTP_409_CONFLICT: ErrorKind.CONFLICT,
    422: ErrorKind.VALIDATION,
}


async def vox_error_handler(request: Request, exc: VoxError) -> JSONResponse:
    """Convert a VoxError into the error envelope."""
    if exc.status_code >= 500:
        logger.error(
            "%s %s failed (%s): %s %s",
            request.method, request.url.path, exc.kind.value, exc.message, exc.detail or "",
        )
    else:
        logger.info(
            "%s %s rejected (%s): %s",
            request.method, request.url.path, exc.kind.value, exc.message,
        )
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.kind, exc.message, exc.detail),
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Wrap framework HTTPExceptions (401 from deps, 404 routing, ...) in the envelope."""
    kind = _STATUS_KINDS.get(exc.status_code, ErrorKind.INTERNAL)
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(kind, str(exc.detail)),
        headers=getattr(exc, "headers", None),
    )


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """
    Report request validation failures as 400 with a field-specific message.

    The first error names the offending field, e.g. "conversationId: Field required".
    """
    errors = exc.errors()
    message = "Invalid request"
    if errors:
        first = errors[0]
        loc = [str(part) for part in first.get("loc", ()) if part not in ("body", "query", "path")]
        field = ".".join(loc)
        message = f"{field}: {first.get('msg')}" if field else str(first.get("msg"))
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=error_body(ErrorKind.VALIDATION, message),
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Last-resort handler: log the traceback, return a generic envelope."""
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_body(ErrorKind.INTERNAL, sanitize_error(exc, generic_message="Internal server error")),
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Register all envelope-producing handlers on the application."""
    app.add_exception_handler(VoxError, vox_error_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
