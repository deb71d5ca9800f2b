"""Common response schemas"""

from datetime import datetime
from typing import Generic, TypeVar

from pydantic import BaseModel, Field

T = TypeVar('T')


class BaseResponse(BaseModel, Generic[T]):
    success: bool = Field(default=True)
    code: int = Field(default=200)
    message: str = Field(default="")
    error_code: str | None = Field(default=None)
    data: T | None = Field(default=None)
    timestamp: datetime = Field(default_factory=datetime.now)


class HealthResponse(BaseModel):
    status: str
    version: str
    timestamp: str
