"""Real-time messaging subsystem.

The service never opens a listener of its own: `initialize` installs the
upgrade endpoint on the application served by an `ApplicationServer`, which
must happen before that server starts accepting connections.
"""
from typing import Optional

from fastapi import WebSocket, WebSocketDisconnect
from loguru import logger
from starlette.routing import WebSocketRoute

from apphost.core.exceptions import WebSocketInitializationError
from apphost.services.websockets.websocket_connection_manager import WebSocketConnectionManager


def _has_websocket_route(app, path: str) -> bool:
    return any(
        isinstance(route, WebSocketRoute) and route.path == path
        for route in app.router.routes
    )


class WebSocketService:

    def __init__(self, manager: Optional[WebSocketConnectionManager] = None):
        self.manager = manager or WebSocketConnectionManager()
        self.path: Optional[str] = None
        self._initialized = False

    @property
    def initialized(self) -> bool:
        return self._initialized

    def initialize(self, server) -> None:
        """Attach the upgrade endpoint to `server.app`.

        Raises:
            WebSocketInitializationError: the server is already accepting connections
        """
        if server.is_serving:
            raise WebSocketInitializationError(
                "WebSocket service must be initialized before the server starts listening"
            )

        settings = server.settings
        self.manager.configure(
            max_connections=settings.WEBSOCKET_MAX_CONNECTIONS,
            ping_interval=settings.WEBSOCKET_PING_INTERVAL,
            pong_timeout=settings.WEBSOCKET_PONG_TIMEOUT,
            max_missed_pongs=settings.WEBSOCKET_MAX_MISSED_PONGS,
            inactive_timeout=settings.WEBSOCKET_INACTIVE_TIMEOUT,
        )

        path = settings.WEBSOCKET_PATH
        # restarting the same app must not stack a second route
        if not _has_websocket_route(server.app, path):
            server.app.add_api_websocket_route(path, self.endpoint, name="realtime")
        server.app.state.websocket_service = self

        self.path = path
        self._initialized = True
        logger.info(f"WebSocket endpoint attached at {path}")

    async def endpoint(self, websocket: WebSocket):
        connection_id = await self.manager.connect(websocket)
        if connection_id is None:
            return

        try:
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    logger.debug(f"WebSocket client left: {connection_id} (code={message.get('code')})")
                    break
                raw = message.get("text")
                if raw is None:
                    raw = (message.get("bytes") or b"").decode("utf-8", errors="replace")
                await self.manager.handle_client_message(connection_id, raw)
        except WebSocketDisconnect as e:
            logger.debug(f"WebSocket client left: {connection_id} (code={e.code})")
        finally:
            await self.manager.disconnect(connection_id)

    async def publish(self, channel: str, data) -> int:
        return await self.manager.publish(channel, data)

    async def broadcast(self, data) -> int:
        return await self.manager.broadcast(data)

    async def cleanup_inactive_connections(self) -> int:
        return await self.manager.cleanup_inactive_connections()

    def connection_count(self) -> int:
        return self.manager.registry.count()

    def get_stats(self) -> dict:
        return {
            **self.manager.get_stats(),
            "initialized": self._initialized,
            "path": self.path,
        }

    async def close(self) -> None:
        """Disconnect every client (code 1001) and stop the heartbeat."""
        await self.manager.shutdown()
        self._initialized = False


websocket_service = WebSocketService()
