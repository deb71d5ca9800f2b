"""Request pipeline middleware"""

from apphost.infrastructure.middleware.body_parsers import (
    BodyParserMiddleware,
    FormBodyParserMiddleware,
    JSONBodyParserMiddleware,
)
from apphost.infrastructure.middleware.middleware import (
    PIPELINE_ORDER,
    ErrorHandlerMiddleware,
    FrontendCORSMiddleware,
    SecurityHeadersMiddleware,
    TimeoutMiddleware,
    make_middlewares,
)

__all__ = [
    "PIPELINE_ORDER",
    "BodyParserMiddleware",
    "ErrorHandlerMiddleware",
    "FormBodyParserMiddleware",
    "FrontendCORSMiddleware",
    "JSONBodyParserMiddleware",
    "SecurityHeadersMiddleware",
    "TimeoutMiddleware",
    "make_middlewares",
]
