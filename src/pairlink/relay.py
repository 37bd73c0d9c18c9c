"""Relay orchestration - ties config, state, and transport together."""

import asyncio
import logging
import signal
from typing import Optional

from pairlink.config import Config
from pairlink.connection_manager import ConnectionManager
from pairlink.history import HistoryStore
from pairlink.router import Router
from pairlink.server import RelayServer
from pairlink.session_registry import SessionRegistry

logger = logging.getLogger(__name__)


class StartupError(Exception):
    """Error during relay startup."""

    pass


class Relay:
    """One relay instance with its own registry and history.

    Responsibilities:
    - Build the registry, history store, router, and server
    - Bind the listening socket
    - Handle SIGTERM/SIGINT with a graceful shutdown
    """

    def __init__(self, config: Config, server: Optional[RelayServer] = None):
        """Initialize relay.

        Args:
            config: Relay configuration.
            server: Optional injected server (for testing).
        """
        self._config = config
        self._running = False
        self._stop_event: Optional[asyncio.Event] = None

        if server is None:
            router = Router(
                registry=SessionRegistry(),
                history=HistoryStore(),
                connections=ConnectionManager(send_timeout=config.send_timeout),
                history_limit=config.history_limit,
                handler_timeout=config.handler_timeout,
            )
            server = RelayServer(router)
        self.server = server

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the relay.

        Raises:
            StartupError: If the listening socket cannot be bound.
        """
        logger.info("Starting relay...")
        self._stop_event = asyncio.Event()

        try:
            await self.server.start(
                host=self._config.bind_address,
                port=self._config.port,
            )
        except OSError as e:
            raise StartupError(
                f"Cannot listen on {self._config.bind_address}:{self._config.port}: {e}"
            ) from e

        self._setup_signals()
        self._running = True

        logger.info("Ready to accept device connections")
        logger.info(f"Server URL: {self._config.advertised_url()}")

    async def run_forever(self) -> None:
        """Run relay until shutdown signal."""
        if not self._running:
            await self.start()

        try:
            await self._stop_event.wait()
        except asyncio.CancelledError:
            pass
        finally:
            await self._shutdown()

    async def stop(self) -> None:
        """Request a graceful stop."""
        if self._stop_event is not None:
            self._stop_event.set()

    def _setup_signals(self) -> None:
        """Set up signal handlers for graceful shutdown."""
        loop = asyncio.get_running_loop()

        for sig in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.add_signal_handler(sig, self._stop_event.set)
            except (NotImplementedError, RuntimeError):
                # Not available on this platform or outside the main thread
                logger.debug(f"Signal handler for {sig.name} not installed")

    async def _shutdown(self) -> None:
        """Perform graceful shutdown."""
        if not self._running:
            return
        logger.info("Relay shutting down...")
        self._running = False

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.remove_signal_handler(sig)
            except (NotImplementedError, RuntimeError):
                pass

        await self.server.close()
        logger.info("Relay stopped")
