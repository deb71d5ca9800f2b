"""Base endpoints"""
from datetime import datetime

from fastapi import APIRouter, Request

from apphost.core.response import Messages, success
from apphost.schemas import HealthResponse
from apphost.schemas.common import BaseResponse

router = APIRouter()


@router.get(
    "/health",
    response_model=BaseResponse[HealthResponse],
    summary="Health check",
)
async def health_check(request: Request):
    payload = HealthResponse(
        status="healthy",
        version=request.app.state.settings.APP_VERSION,
        timestamp=datetime.now().isoformat()
    )
    return success(payload, message=Messages.QUERY_SUCCESS)
