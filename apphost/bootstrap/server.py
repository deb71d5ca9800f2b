"""Listener lifecycle.

`ApplicationServer` owns the listening socket and drives startup in a fixed
order: bind the address, attach the WebSocket endpoint, start serving HTTP,
and only once the listener is live run the scheduled-task setup. A bind
failure aborts everything that comes after it.
"""
import asyncio
import contextlib
import os
import signal
import socket
from typing import Awaitable, Callable, Optional

import uvicorn
from fastapi import FastAPI
from loguru import logger

from apphost.core.config import Settings
from apphost.core.exceptions import ServerBindError, ServerStartError
from apphost.core.logging import build_uvicorn_log_config
from apphost.services.scheduler import setup_scheduled_tasks, shutdown_scheduled_tasks
from apphost.services.websockets import WebSocketService
from apphost.services.websockets import websocket_service as default_websocket_service

STARTUP_POLL_INTERVAL = 0.05


class _UvicornServer(uvicorn.Server):
    """uvicorn server that leaves signal handling to `run`."""

    @contextlib.contextmanager
    def capture_signals(self):
        yield

    def install_signal_handlers(self) -> None:
        pass


class ApplicationServer:

    def __init__(
        self,
        app: FastAPI,
        settings: Optional[Settings] = None,
        websocket_service: Optional[WebSocketService] = None,
        setup_tasks: Optional[Callable[..., Awaitable]] = None,
        shutdown_tasks: Optional[Callable[[], Awaitable]] = None,
    ):
        self.app = app
        self.settings = settings or app.state.settings
        self.websocket_service = websocket_service or default_websocket_service
        self.setup_tasks = setup_tasks or setup_scheduled_tasks
        self.shutdown_tasks = shutdown_tasks or shutdown_scheduled_tasks

        self._socket: Optional[socket.socket] = None
        self._port: Optional[int] = None
        self._server: Optional[_UvicornServer] = None
        self._serve_task: Optional[asyncio.Task] = None

    @property
    def is_serving(self) -> bool:
        return (
            self._server is not None
            and self._server.started
            and not self._server.should_exit
        )

    @property
    def port(self) -> Optional[int]:
        """The bound port. Resolves `PORT=0` to the port the OS picked."""
        return self._port

    @property
    def serve_task(self) -> Optional[asyncio.Task]:
        return self._serve_task

    def bind(self) -> socket.socket:
        """Acquire the listening address.

        Raises:
            ServerBindError: the address is in use, not permitted or invalid
        """
        host, port = self.settings.HOST, self.settings.PORT
        family = socket.AF_INET6 if ":" in host else socket.AF_INET
        sock = socket.socket(family, socket.SOCK_STREAM)
        try:
            # on Windows SO_REUSEADDR lets a second process steal the port
            if os.name != "nt":
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((host, port))
        except (OSError, OverflowError) as e:
            sock.close()
            raise ServerBindError(host, port, e) from e

        sock.set_inheritable(True)
        self._socket = sock
        self._port = sock.getsockname()[1]
        logger.debug(f"Bound {host}:{self._port}")
        return sock

    async def start(self) -> None:
        """Bind, attach WebSockets, serve, then start the scheduled tasks.

        Raises:
            ServerBindError: the listener could not bind; nothing else was started
            WebSocketInitializationError: the WebSocket endpoint could not be attached
            ServerStartError: the server stopped before accepting connections
        """
        if self._serve_task is not None:
            raise ServerStartError("Server is already running")

        self.bind()
        try:
            self.websocket_service.initialize(self)
        except Exception:
            self._close_socket()
            raise

        config = uvicorn.Config(
            self.app,
            lifespan="on",
            log_config=build_uvicorn_log_config(self.settings.LOG_LEVEL),
            timeout_keep_alive=self.settings.KEEP_ALIVE_TIMEOUT,
            timeout_graceful_shutdown=self.settings.SHUTDOWN_GRACE_PERIOD,
            server_header=False,
        )
        self._server = _UvicornServer(config)
        self._serve_task = asyncio.create_task(self._server.serve(sockets=[self._socket]))

        try:
            await self._wait_until_started()
        except ServerStartError:
            await self.websocket_service.close()
            await self._reset()
            raise

        try:
            await self.setup_tasks(self.settings, self.websocket_service)
        except Exception as e:
            logger.error(f"Scheduled task setup failed: {e}")
            await self.stop()
            raise ServerStartError(f"Scheduled task setup failed: {e}") from e

        logger.info(f"Server running on port {self.port}")

    async def _wait_until_started(self) -> None:
        while not self._server.started:
            if self._serve_task.done():
                exc = None if self._serve_task.cancelled() else self._serve_task.exception()
                raise ServerStartError(f"Server exited during startup: {exc or 'lifespan startup failed'}")
            await asyncio.sleep(STARTUP_POLL_INTERVAL)

    async def stop(self) -> None:
        """Stop scheduled tasks, close WebSocket clients, then drain HTTP.

        In-flight requests get up to `SHUTDOWN_GRACE_PERIOD` seconds. The
        server can be started again afterwards.
        """
        if self._server is None:
            return

        logger.info("Shutting down server")
        try:
            await self.shutdown_tasks()
        except Exception as e:
            logger.error(f"Failed to stop scheduled tasks: {e}")

        try:
            await self.websocket_service.close()
        except Exception as e:
            logger.error(f"Failed to close WebSocket connections: {e}")

        await self._reset()
        logger.info("Server stopped")

    async def _reset(self) -> None:
        self._server.should_exit = True
        try:
            await self._serve_task
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.error(f"HTTP server exited with error: {e}")
        finally:
            self._server = None
            self._serve_task = None
            self._close_socket()

    def _close_socket(self) -> None:
        if self._socket is not None:
            self._socket.close()
            self._socket = None

    async def wait_closed(self, stop_requested: Optional[asyncio.Event] = None) -> None:
        """Block until the HTTP server exits or `stop_requested` is set."""
        if self._serve_task is None:
            return

        waiters = {self._serve_task}
        stop_waiter = None
        if stop_requested is not None:
            stop_waiter = asyncio.ensure_future(stop_requested.wait())
            waiters.add(stop_waiter)
        try:
            await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
        finally:
            if stop_waiter is not None:
                stop_waiter.cancel()


def _install_signal_handlers(stop_requested: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_requested.set)
        except (NotImplementedError, RuntimeError):
            # Windows or not the main thread: Ctrl+C surfaces as KeyboardInterrupt
            pass


async def run(settings: Optional[Settings] = None) -> None:
    """Build the application, serve it until a shutdown signal, then stop."""
    from apphost.bootstrap.app_factory import create_app

    if settings is None:
        from apphost.core.config import settings

    app = create_app(settings)
    server = ApplicationServer(app, settings)
    await server.start()

    stop_requested = asyncio.Event()
    _install_signal_handlers(stop_requested)
    try:
        await server.wait_closed(stop_requested)
    finally:
        await server.stop()
