"""WebSocket introspection endpoints"""
from fastapi import APIRouter, Request

from apphost.core.response import Messages, success
from apphost.services.websockets import websocket_service

router = APIRouter()


@router.get("/stats", summary="WebSocket connection statistics")
async def get_websocket_stats(request: Request):
    service = getattr(request.app.state, "websocket_service", websocket_service)
    return success(service.get_stats(), message=Messages.QUERY_SUCCESS)
