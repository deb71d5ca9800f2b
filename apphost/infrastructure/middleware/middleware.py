"""Request pipeline stages and their assembly order."""
import asyncio
from typing import ClassVar

from fastapi.middleware import Middleware
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger
from starlette.datastructures import Headers
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.middleware.gzip import GZipMiddleware
from starlette.requests import ClientDisconnect, Request

from apphost.core.exceptions import (
    RequestTimeoutException,
    create_error_response,
    handle_exception,
)
from apphost.infrastructure.middleware.body_parsers import (
    FormBodyParserMiddleware,
    JSONBodyParserMiddleware,
)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Defensive headers added to every HTTP response."""

    SECURITY_HEADERS: ClassVar[dict] = {
        "Content-Security-Policy": (
            "default-src 'self';base-uri 'self';font-src 'self' https: data:;"
            "form-action 'self';frame-ancestors 'self';img-src 'self' data:;"
            "object-src 'none';script-src 'self';script-src-attr 'none';"
            "style-src 'self' https: 'unsafe-inline';upgrade-insecure-requests"
        ),
        "Cross-Origin-Opener-Policy": "same-origin",
        "Cross-Origin-Resource-Policy": "same-origin",
        "Origin-Agent-Cluster": "?1",
        "Referrer-Policy": "no-referrer",
        "Strict-Transport-Security": "max-age=31536000; includeSubDomains",
        "X-Content-Type-Options": "nosniff",
        "X-DNS-Prefetch-Control": "off",
        "X-Download-Options": "noopen",
        "X-Frame-Options": "SAMEORIGIN",
        "X-Permitted-Cross-Domain-Policies": "none",
        "X-XSS-Protection": "0",
    }

    DISCLOSURE_HEADERS: ClassVar[tuple] = ("X-Powered-By", "Server")

    def __init__(self, app, hsts_preload: bool = False):
        super().__init__(app)
        self.headers = dict(self.SECURITY_HEADERS)
        if hsts_preload:
            self.headers["Strict-Transport-Security"] += "; preload"

    async def dispatch(self, request, call_next):
        response = await call_next(request)
        response.headers.update(self.headers)
        for name in self.DISCLOSURE_HEADERS:
            if name in response.headers:
                del response.headers[name]
        return response


class FrontendCORSMiddleware(CORSMiddleware):
    """CORS that answers only the configured origins.

    Requests from any other origin get no CORS headers at all, and their
    preflights are refused with a 403 error envelope.
    """

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        headers = Headers(scope=scope)
        origin = headers.get("origin")
        if origin is None or self.is_allowed_origin(origin=origin):
            await super().__call__(scope, receive, send)
            return

        if scope["method"] == "OPTIONS" and "access-control-request-method" in headers:
            logger.debug(f"Refused CORS preflight from {origin}")
            response = create_error_response(
                403, "Origin not allowed", error_code="CORS_ORIGIN_DENIED"
            )
            await response(scope, receive, send)
            return

        await self.app(scope, receive, send)


class ErrorHandlerMiddleware:
    """Turns any error raised further down the pipeline into the error envelope.

    Route-level `HTTPException`s are rendered by the app's exception handlers;
    this stage catches what the router does not, including failures raised by
    the body parsing and timeout stages.
    """

    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        response_started = False

        async def send_wrapper(message):
            nonlocal response_started
            if message["type"] == "http.response.start":
                response_started = True
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        except ClientDisconnect:
            logger.debug(f"Client disconnected during {scope.get('method')} {scope.get('path')}")
        except Exception as exc:
            if response_started:
                logger.opt(exception=exc).error(
                    f"Error after response started on {scope.get('method')} {scope.get('path')}"
                )
                raise
            response = await handle_exception(Request(scope), exc)
            await response(scope, receive, send)


class TimeoutMiddleware:
    """Fails requests that take longer than `timeout` seconds with a 504."""

    def __init__(self, app, timeout: float = 60.0):
        self.app = app
        self.timeout = timeout

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http" or not self.timeout:
            await self.app(scope, receive, send)
            return

        try:
            await asyncio.wait_for(self.app(scope, receive, send), timeout=self.timeout)
        except asyncio.TimeoutError:
            raise RequestTimeoutException(self.timeout)


# Outermost first. Starlette wraps the list so that index 0 sees the request
# first and the response last.
PIPELINE_ORDER = (
    "security_headers",
    "cors",
    "compression",
    "error_handler",
    "timeout",
    "json_body",
    "form_body",
)


def make_middlewares(settings=None):
    """Create the ordered middleware list for the application.

    Static files and the API router sit behind these stages; they are
    attached by `register_routes`.
    """
    if settings is None:
        from apphost.core.config import settings

    stages = {
        "security_headers": Middleware(
            SecurityHeadersMiddleware,
            hsts_preload=settings.is_production,
        ),
        "cors": Middleware(
            FrontendCORSMiddleware,
            allow_origins=settings.CORS_ORIGINS,
            allow_credentials=True,
            allow_methods=settings.CORS_ALLOW_METHODS,
            allow_headers=settings.CORS_ALLOW_HEADERS,
        ),
        "compression": Middleware(GZipMiddleware, minimum_size=settings.COMPRESSION_MIN_SIZE),
        "error_handler": Middleware(ErrorHandlerMiddleware),
        "timeout": Middleware(TimeoutMiddleware, timeout=settings.REQUEST_TIMEOUT),
        "json_body": Middleware(
            JSONBodyParserMiddleware,
            limit=settings.BODY_LIMIT,
            strict=settings.JSON_STRICT,
        ),
        "form_body": Middleware(
            FormBodyParserMiddleware,
            limit=settings.BODY_LIMIT,
            parameter_limit=settings.FORM_PARAMETER_LIMIT,
        ),
    }
    return [stages[name] for name in PIPELINE_ORDER]
