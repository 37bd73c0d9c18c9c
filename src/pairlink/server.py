"""HTTP/WebSocket transport for the relay.

Single aiohttp server handling:
- / - WebSocket upgrade, or the health probe for plain GETs
- /ws - WebSocket upgrade
- /health - Health probe
"""

import asyncio
import logging
import time
from typing import Optional

from aiohttp import WSCloseCode, WSMsgType, web

from pairlink.router import Router

logger = logging.getLogger(__name__)


def client_address(request: web.Request) -> Optional[str]:
    """Best-effort origin address, preferring the first forwarded hop."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.remote


class RelayServer:
    """Accepts device sockets and hands every frame to the router."""

    def __init__(self, router: Optional[Router] = None):
        """Initialize relay server.

        Args:
            router: Protocol router. A fresh one is created if omitted.
        """
        self.router = router if router is not None else Router()
        self._started_at = time.monotonic()

        self.app = web.Application()
        self._setup_routes()
        self.app.on_shutdown.append(self._on_shutdown)

        # Close paths still broadcasting after their handler was cancelled
        self._closing: set[asyncio.Task] = set()

        self._runner: Optional[web.AppRunner] = None
        self._site: Optional[web.TCPSite] = None
        self._port: int = 0

    def _setup_routes(self) -> None:
        self.app.router.add_get("/", self._handle_root)
        self.app.router.add_get("/ws", self._handle_websocket)
        self.app.router.add_get("/health", self._handle_health)

    # =========================================================================
    # Health
    # =========================================================================

    def uptime(self) -> float:
        """Seconds since this server was constructed.

        The relay builds its server once at startup, so this is the relay's
        uptime, not the interpreter's. Embedders that build a server late
        report time since that point.
        """
        return time.monotonic() - self._started_at

    def health(self) -> dict:
        return {
            "status": "running",
            "connectedDevices": len(self.router.registry),
            "uptime": self.uptime(),
        }

    async def _handle_health(self, request: web.Request) -> web.Response:
        """Health check endpoint."""
        return web.json_response(self.health())

    async def _handle_root(self, request: web.Request) -> web.StreamResponse:
        """WebSocket upgrade if requested, health probe otherwise."""
        ws = web.WebSocketResponse()
        if ws.can_prepare(request).ok:
            return await self._serve_socket(ws, request)
        return await self._handle_health(request)

    # =========================================================================
    # WebSocket sessions
    # =========================================================================

    async def _handle_websocket(self, request: web.Request) -> web.WebSocketResponse:
        return await self._serve_socket(web.WebSocketResponse(), request)

    async def _serve_socket(
        self, ws: web.WebSocketResponse, request: web.Request
    ) -> web.WebSocketResponse:
        """Run one device session from upgrade to close."""
        await ws.prepare(request)

        device = await self.router.on_connect(ws, ip=client_address(request))
        device_id = device.id

        try:
            async for msg in ws:
                if msg.type in (WSMsgType.TEXT, WSMsgType.BINARY):
                    await self.router.on_frame(device_id, msg.data)
                elif msg.type == WSMsgType.ERROR:
                    logger.error(f"WebSocket error for device {device_id}: {ws.exception()}")
        finally:
            # aiohttp cancels the handler when the peer goes away; the removal
            # and its broadcast must still run to completion.
            task = asyncio.ensure_future(self.router.on_close(device_id))
            self._closing.add(task)
            task.add_done_callback(self._closing.discard)
            await asyncio.shield(task)

        return ws

    async def _on_shutdown(self, app: web.Application) -> None:
        """Close live sockets once the listener has stopped."""
        count = len(self.router.connections)
        await self.router.connections.close_all(
            code=WSCloseCode.GOING_AWAY, message=b"Server shutdown"
        )
        if count:
            logger.info(f"Closed {count} device connections")

    # =========================================================================
    # Server lifecycle
    # =========================================================================

    async def start(self, host: str, port: int) -> web.AppRunner:
        """Start the server.

        Args:
            host: Host to bind to.
            port: Port to bind to (0 for random).

        Returns:
            App runner for cleanup.

        Raises:
            OSError: If the address cannot be bound.
        """
        self._runner = web.AppRunner(self.app)
        await self._runner.setup()
        self._site = web.TCPSite(self._runner, host, port)
        try:
            await self._site.start()
        except OSError:
            await self._runner.cleanup()
            self._runner = None
            raise

        # Get actual port
        if self._site._server and self._site._server.sockets:
            self._port = self._site._server.sockets[0].getsockname()[1]
        else:
            self._port = port

        logger.info(f"Relay server started on {host}:{self._port}")
        return self._runner

    def get_port(self) -> int:
        """Get the actual bound port."""
        return self._port

    async def close(self) -> None:
        """Stop accepting connections, close live sockets, stop server."""
        if self._runner:
            await self._runner.cleanup()
            self._runner = None

        if self._closing:
            await asyncio.wait(list(self._closing))

        logger.info("Relay server closed")
