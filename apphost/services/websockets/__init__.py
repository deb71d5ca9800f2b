"""Real-time messaging"""
from apphost.services.websockets.websocket_connection_manager import WebSocketConnectionManager
from apphost.services.websockets.websocket_service import WebSocketService, websocket_service

__all__ = [
    "WebSocketConnectionManager",
    "WebSocketService",
    "websocket_service",
]
