"""Exceptions and the error-handling collaborator.

Every per-request error ends up in `create_error_response`, so clients always
receive the same envelope regardless of which stage failed.
"""

from datetime import datetime

from fastapi import HTTPException, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from loguru import logger
from starlette.exceptions import HTTPException as StarletteHTTPException

from apphost.core.response import error


class BusinessException(HTTPException):
    """Base class for errors that map to a specific HTTP status."""

    def __init__(self, status_code, detail, error_code=None, errors=None, headers=None):
        super().__init__(status_code=status_code, detail=detail, headers=headers)
        self.error_code = error_code
        self.errors = errors or []


class PayloadTooLargeException(BusinessException):
    def __init__(self, limit, received=None, error_code="PAYLOAD_TOO_LARGE", detail=None):
        if detail is None:
            detail = f"Request body too large. Maximum size: {limit} bytes"
        super().__init__(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=detail,
            error_code=error_code,
        )
        self.limit = limit
        self.received = received


class MalformedBodyException(BusinessException):
    def __init__(self, detail):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=detail,
            error_code="MALFORMED_BODY",
        )


class RequestTimeoutException(BusinessException):
    def __init__(self, timeout):
        super().__init__(
            status_code=status.HTTP_504_GATEWAY_TIMEOUT,
            detail=f"Request timed out after {timeout:g} seconds",
            error_code="REQUEST_TIMEOUT",
        )
        self.timeout = timeout


class SerializationError(Exception):
    """Raised when a value cannot be encoded to or decoded from JSON."""


class ServerBindError(OSError):
    """The listener could not acquire its address. Fatal at startup."""

    def __init__(self, host, port, reason):
        super().__init__(f"Unable to bind {host}:{port}: {reason}")
        self.host = host
        self.port = port
        self.reason = reason


class ServerStartError(RuntimeError):
    """The server stopped, or was misused, before it accepted connections."""


class WebSocketInitializationError(RuntimeError):
    """The real-time subsystem was attached at the wrong point of startup."""


def create_error_response(status_code, message, error_code=None, headers=None):
    resp = error(message, status_code, error_code=error_code)
    content = resp.model_dump()
    if isinstance(content.get("timestamp"), datetime):
        content["timestamp"] = content["timestamp"].isoformat()
    return JSONResponse(status_code=status_code, content=content, headers=headers)


def _log_client_error(request, status_code, message):
    logger.warning(f"{request.method} {request.url.path} -> {status_code}: {message}")


async def business_exception_handler(request, exc):
    _log_client_error(request, exc.status_code, exc.detail)
    return create_error_response(
        status_code=exc.status_code,
        message=str(exc.detail),
        error_code=exc.error_code,
        headers=exc.headers,
    )


async def http_exception_handler(request, exc):
    _log_client_error(request, exc.status_code, exc.detail)
    return create_error_response(
        status_code=exc.status_code,
        message=str(exc.detail),
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(request, exc):
    _log_client_error(request, status.HTTP_422_UNPROCESSABLE_ENTITY, exc.errors())
    return create_error_response(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        message="Request validation failed",
        error_code="VALIDATION_ERROR",
    )


async def general_exception_handler(request, exc):
    logger.opt(exception=exc).error(f"Unhandled error on {request.method} {request.url.path}: {exc}")
    return create_error_response(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        message="Internal server error",
        error_code="INTERNAL_ERROR",
    )


async def handle_exception(request, exc):
    """Dispatch any exception to the handler that owns its type."""
    if isinstance(exc, BusinessException):
        return await business_exception_handler(request, exc)
    if isinstance(exc, StarletteHTTPException):
        return await http_exception_handler(request, exc)
    if isinstance(exc, RequestValidationError):
        return await validation_exception_handler(request, exc)
    return await general_exception_handler(request, exc)


def register_exception_handlers(app):
    app.add_exception_handler(BusinessException, business_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
