from fastapi import APIRouter

from apphost.api.routes.base import router as base_router
from apphost.api.routes.websocket import router as websocket_router

api_router = APIRouter()

api_router.include_router(base_router, tags=["Base"])
api_router.include_router(websocket_router, prefix="/ws", tags=["WebSocket"])

__all__ = ["api_router"]
