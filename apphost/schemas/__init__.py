"""Request and response schemas"""

from .common import BaseResponse, HealthResponse

__all__ = [
    "BaseResponse",
    "HealthResponse",
]
