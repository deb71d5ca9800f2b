"""
WebSocket connection manager.

Tracks connections and their channel subscriptions, runs heartbeat checks and
fans out published messages.
"""
import asyncio
import time
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone, timedelta
from enum import Enum
from typing import Callable, Dict, List, Optional, Set

from fastapi import WebSocket
from loguru import logger

from apphost.core.exceptions import SerializationError
from apphost.utils.serialization import from_json, to_json


class ConnectionState(Enum):
    CONNECTING = "connecting"
    CONNECTED = "connected"
    CLOSING = "closing"
    CLOSED = "closed"


@dataclass
class ConnectionInfo:
    connection_id: str
    websocket: WebSocket
    state: ConnectionState = ConnectionState.CONNECTING
    channels: Set[str] = field(default_factory=set)
    connected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    last_activity: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    last_ping: Optional[datetime] = None
    last_pong: Optional[datetime] = None
    messages_sent: int = 0
    messages_received: int = 0
    missed_pongs: int = 0


class ConnectionRegistry:
    """Connections by id plus a channel -> connection ids index."""

    def __init__(self, max_connections: int = 10000):
        self.max_connections = max_connections
        self._connections: Dict[str, ConnectionInfo] = {}
        self._channels: Dict[str, Set[str]] = defaultdict(set)
        self._lock = asyncio.Lock()

    async def add(self, conn: ConnectionInfo) -> bool:
        async with self._lock:
            if len(self._connections) >= self.max_connections:
                logger.error(f"WebSocket connection limit reached: {len(self._connections)}/{self.max_connections}")
                return False
            self._connections[conn.connection_id] = conn
            conn.state = ConnectionState.CONNECTED
            return True

    async def remove(self, connection_id: str) -> Optional[ConnectionInfo]:
        async with self._lock:
            conn = self._connections.pop(connection_id, None)
            if conn is None:
                return None
            for channel in conn.channels:
                members = self._channels.get(channel)
                if members is not None:
                    members.discard(connection_id)
                    if not members:
                        del self._channels[channel]
            conn.state = ConnectionState.CLOSED
            return conn

    async def subscribe(self, connection_id: str, channel: str) -> bool:
        async with self._lock:
            conn = self._connections.get(connection_id)
            if conn is None:
                return False
            conn.channels.add(channel)
            self._channels[channel].add(connection_id)
            return True

    async def unsubscribe(self, connection_id: str, channel: str) -> bool:
        async with self._lock:
            conn = self._connections.get(connection_id)
            if conn is None or channel not in conn.channels:
                return False
            conn.channels.discard(channel)
            members = self._channels.get(channel)
            if members is not None:
                members.discard(connection_id)
                if not members:
                    del self._channels[channel]
            return True

    def get(self, connection_id: str) -> Optional[ConnectionInfo]:
        return self._connections.get(connection_id)

    def all(self) -> List[ConnectionInfo]:
        return list(self._connections.values())

    def in_channel(self, channel: str) -> List[ConnectionInfo]:
        ids = self._channels.get(channel, ())
        return [self._connections[cid] for cid in list(ids) if cid in self._connections]

    def count(self) -> int:
        return len(self._connections)

    def channel_counts(self) -> Dict[str, int]:
        return {channel: len(ids) for channel, ids in self._channels.items()}


class HeartbeatManager:
    """Pings connected clients and reports the ones that stop answering."""

    def __init__(
        self,
        ping_interval: float = 30.0,
        pong_timeout: float = 10.0,
        max_missed_pongs: int = 3
    ):
        self.ping_interval = ping_interval
        self.pong_timeout = pong_timeout
        self.max_missed_pongs = max_missed_pongs
        self._task: Optional[asyncio.Task] = None
        self._running = False

    async def start(self, registry: ConnectionRegistry, on_timeout: Callable):
        if self._running:
            return

        self._running = True
        self._task = asyncio.create_task(self._heartbeat_loop(registry, on_timeout))
        logger.info(f"Heartbeat started: interval={self.ping_interval}s, timeout={self.pong_timeout}s")

    async def stop(self):
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Heartbeat stopped")

    async def _heartbeat_loop(self, registry: ConnectionRegistry, on_timeout: Callable):
        while self._running:
            try:
                await asyncio.sleep(self.ping_interval)
                await self._send_pings(registry, on_timeout)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Heartbeat loop error: {e}")

    async def _send_pings(self, registry: ConnectionRegistry, on_timeout: Callable):
        now = datetime.now(timezone.utc)

        for conn in registry.all():
            if conn.state != ConnectionState.CONNECTED:
                continue

            # a ping is outstanding when no pong arrived after it
            awaiting_pong = conn.last_ping and (not conn.last_pong or conn.last_pong < conn.last_ping)
            if awaiting_pong:
                if (now - conn.last_ping).total_seconds() <= self.pong_timeout:
                    continue
                conn.missed_pongs += 1
                if conn.missed_pongs >= self.max_missed_pongs:
                    logger.warning(f"Connection {conn.connection_id} missed {conn.missed_pongs} pongs, closing")
                    await on_timeout(conn)
                    continue

            try:
                await conn.websocket.send_text(to_json({"type": "ping", "timestamp": now.isoformat()}))
                conn.last_ping = now
            except Exception as e:
                logger.debug(f"Ping failed: {conn.connection_id}, {e}")
                await on_timeout(conn)

    def record_pong(self, conn: ConnectionInfo):
        conn.last_pong = datetime.now(timezone.utc)
        conn.missed_pongs = 0


class WebSocketConnectionManager:
    """Connection lifecycle, client message handling and channel broadcasts."""

    def __init__(
        self,
        max_connections: int = 10000,
        ping_interval: float = 30.0,
        pong_timeout: float = 10.0,
        max_missed_pongs: int = 3,
        inactive_timeout: float = 1800.0,
        send_timeout: float = 5.0
    ):
        self.registry = ConnectionRegistry(max_connections)
        self.heartbeat_manager = HeartbeatManager(ping_interval, pong_timeout, max_missed_pongs)
        self.inactive_timeout = inactive_timeout
        self.send_timeout = send_timeout

        self._stats = self._empty_stats()
        self._started = False

    @staticmethod
    def _empty_stats() -> dict:
        return {
            "total_connections": 0,
            "total_disconnections": 0,
            "rejected_connections": 0,
            "messages_sent": 0,
            "messages_received": 0,
            "errors_count": 0,
            "heartbeat_timeouts": 0,
            "start_time": datetime.now(timezone.utc),
        }

    def configure(
        self,
        max_connections: int,
        ping_interval: float,
        pong_timeout: float,
        max_missed_pongs: int,
        inactive_timeout: float
    ):
        """Apply settings; only valid while the manager is stopped."""
        if self._started:
            raise RuntimeError("Cannot reconfigure a running WebSocket manager")
        self.registry.max_connections = max_connections
        self.heartbeat_manager = HeartbeatManager(ping_interval, pong_timeout, max_missed_pongs)
        self.inactive_timeout = inactive_timeout

    @property
    def started(self) -> bool:
        return self._started

    async def start(self):
        if self._started:
            return

        self._started = True
        self._stats = self._empty_stats()
        await self.heartbeat_manager.start(self.registry, self._handle_heartbeat_timeout)
        logger.info("WebSocket connection manager started")

    async def shutdown(self):
        if not self._started:
            return

        logger.info("Shutting down WebSocket connection manager")
        self._started = False
        await self.heartbeat_manager.stop()

        for conn in self.registry.all():
            await self._drop(conn, code=1001, reason="Server shutting down")

        logger.info("WebSocket connection manager stopped")

    def _generate_connection_id(self, websocket: WebSocket) -> str:
        return f"ws_{id(websocket):x}_{time.time_ns()}"

    async def connect(self, websocket: WebSocket) -> Optional[str]:
        """Accept a client. Returns its connection id, or None when rejected."""
        if not self._started:
            await self.start()

        if self.registry.count() >= self.registry.max_connections:
            self._stats["rejected_connections"] += 1
            await websocket.close(code=1013, reason="Too many connections")
            return None

        connection_id = self._generate_connection_id(websocket)
        await websocket.accept()

        conn = ConnectionInfo(connection_id=connection_id, websocket=websocket)
        if not await self.registry.add(conn):
            self._stats["rejected_connections"] += 1
            await self._close(conn, code=1013, reason="Too many connections")
            return None

        self._stats["total_connections"] += 1
        logger.info(f"WebSocket connected: {connection_id}")

        await self._send(conn, {
            "type": "connected",
            "connection_id": connection_id,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "config": {
                "ping_interval": self.heartbeat_manager.ping_interval,
                "pong_timeout": self.heartbeat_manager.pong_timeout
            }
        })
        return connection_id

    async def disconnect(self, connection_id: str):
        conn = await self.registry.remove(connection_id)
        if conn is not None:
            self._stats["total_disconnections"] += 1
            logger.info(f"WebSocket disconnected: {connection_id}")

    async def handle_client_message(self, connection_id: str, raw: str):
        conn = self.registry.get(connection_id)
        if not conn:
            return

        conn.last_activity = datetime.now(timezone.utc)
        conn.messages_received += 1
        self._stats["messages_received"] += 1

        try:
            message = from_json(raw)
        except SerializationError:
            await self._send_error(conn, "Message is not valid JSON")
            return
        if not isinstance(message, dict):
            await self._send_error(conn, "Message must be a JSON object")
            return

        message_type = message.get("type")

        if message_type == "pong":
            self.heartbeat_manager.record_pong(conn)
        elif message_type == "ping":
            await self._send(conn, {
                "type": "pong",
                "timestamp": datetime.now(timezone.utc).isoformat()
            })
        elif message_type in ("subscribe", "unsubscribe"):
            channel = message.get("channel")
            if not isinstance(channel, str) or not channel:
                await self._send_error(conn, f"'{message_type}' requires a channel")
                return
            if message_type == "subscribe":
                await self.registry.subscribe(connection_id, channel)
            else:
                await self.registry.unsubscribe(connection_id, channel)
            await self._send(conn, {"type": f"{message_type}d", "channel": channel})
        else:
            logger.debug(f"Unsupported client message type: {message_type}")
            await self._send_error(conn, f"Unsupported message type: {message_type}")

    async def publish(self, channel: str, data) -> int:
        """Send `data` to subscribers of `channel`. Returns the number reached."""
        return await self._fan_out(self.registry.in_channel(channel), {
            "type": "message",
            "channel": channel,
            "data": data,
            "timestamp": datetime.now(timezone.utc).isoformat()
        })

    async def broadcast(self, data) -> int:
        """Send `data` to every connected client."""
        return await self._fan_out(self.registry.all(), {
            "type": "broadcast",
            "data": data,
            "timestamp": datetime.now(timezone.utc).isoformat()
        })

    async def _fan_out(self, connections: List[ConnectionInfo], message: dict) -> int:
        if not connections:
            return 0

        payload = to_json(message)

        async def send_to_connection(conn: ConnectionInfo) -> Optional[ConnectionInfo]:
            if conn.state != ConnectionState.CONNECTED:
                return None
            try:
                await asyncio.wait_for(conn.websocket.send_text(payload), timeout=self.send_timeout)
                conn.messages_sent += 1
                return None
            except asyncio.TimeoutError:
                logger.warning(f"Send timed out: {conn.connection_id}")
                return conn
            except Exception as e:
                logger.debug(f"Send failed: {conn.connection_id}, {e}")
                return conn

        results = await asyncio.gather(*(send_to_connection(c) for c in connections))

        delivered = 0
        for conn, failed in zip(connections, results):
            if failed is None and conn.state == ConnectionState.CONNECTED:
                delivered += 1
            elif failed is not None:
                self._stats["errors_count"] += 1
                await self._drop(failed, code=1011, reason="Send failed")

        self._stats["messages_sent"] += delivered
        return delivered

    async def cleanup_inactive_connections(self) -> int:
        cutoff = datetime.now(timezone.utc) - timedelta(seconds=self.inactive_timeout)
        cleaned = 0

        for conn in self.registry.all():
            if conn.last_activity < cutoff:
                await self._drop(conn, code=4009, reason="Connection inactive")
                cleaned += 1

        if cleaned:
            logger.info(f"Closed {cleaned} inactive WebSocket connections")
        return cleaned

    async def _handle_heartbeat_timeout(self, conn: ConnectionInfo):
        self._stats["heartbeat_timeouts"] += 1
        await self._drop(conn, code=4008, reason="Heartbeat timeout")

    async def _drop(self, conn: ConnectionInfo, code: int, reason: str):
        """Close a connection from the server side and forget it."""
        await self._close(conn, code=code, reason=reason)
        if await self.registry.remove(conn.connection_id) is not None:
            self._stats["total_disconnections"] += 1
            logger.info(f"WebSocket dropped: {conn.connection_id} ({code} {reason})")

    async def _close(self, conn: ConnectionInfo, code: int, reason: str):
        conn.state = ConnectionState.CLOSING
        try:
            await asyncio.wait_for(conn.websocket.close(code=code, reason=reason), timeout=self.send_timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Close timed out: {conn.connection_id}")
        except Exception as e:
            # already closed by the peer
            logger.debug(f"Ignoring close error for {conn.connection_id}: {e}")
        finally:
            conn.state = ConnectionState.CLOSED

    async def _send(self, conn: ConnectionInfo, message: dict):
        await conn.websocket.send_text(to_json(message))
        conn.messages_sent += 1
        self._stats["messages_sent"] += 1

    async def _send_error(self, conn: ConnectionInfo, message: str):
        await self._send(conn, {"type": "error", "message": message})

    def get_stats(self) -> dict:
        uptime = (datetime.now(timezone.utc) - self._stats["start_time"]).total_seconds()
        return {
            **self._stats,
            "start_time": self._stats["start_time"].isoformat(),
            "uptime_seconds": round(uptime, 2),
            "active_connections": self.registry.count(),
            "channels": self.registry.channel_counts(),
            "health": "healthy" if self._started else "stopped"
        }
