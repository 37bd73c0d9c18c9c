"""Track live device sockets and deliver envelopes to them."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Optional, Protocol, Union

from pairlink.message import Event, encode_envelope

logger = logging.getLogger(__name__)


class SocketProtocol(Protocol):
    """The part of aiohttp's WebSocketResponse the relay writes to."""

    @property
    def closed(self) -> bool:
        ...

    async def send_str(self, data: str) -> None:
        ...

    async def close(self, *, code: int = ..., message: bytes = ...) -> bool:
        ...


@dataclass
class Connection:
    """A device's socket."""

    device_id: str
    socket: Any  # SocketProtocol

    @property
    def is_open(self) -> bool:
        return not self.socket.closed

    async def send(self, text: str) -> None:
        await self.socket.send_str(text)

    async def close(self, code: int, message: bytes = b"") -> None:
        await self.socket.close(code=code, message=message)


class ConnectionManager:
    """Live sockets keyed by device id.

    Delivery is best-effort: sockets that are no longer open are skipped,
    and send failures are logged and dropped. Nothing is queued or retried.
    """

    def __init__(self, send_timeout: float = 5.0):
        """Initialize connection manager.

        Args:
            send_timeout: Timeout for a single send (seconds).
        """
        self.connections: dict[str, Connection] = {}
        self._send_timeout = send_timeout

    def add(self, device_id: str, socket: SocketProtocol) -> Connection:
        """Track a newly accepted socket."""
        conn = Connection(device_id=device_id, socket=socket)
        self.connections[device_id] = conn
        return conn

    def remove(self, device_id: str) -> Optional[Connection]:
        """Stop tracking a socket."""
        return self.connections.pop(device_id, None)

    def get(self, device_id: str) -> Optional[Connection]:
        return self.connections.get(device_id)

    async def send(self, device_id: str, envelope: Union[Event, dict[str, Any]]) -> bool:
        """Send one envelope to one device.

        Returns:
            True if the frame was handed to the socket, False if dropped.
        """
        conn = self.connections.get(device_id)
        if conn is None:
            logger.debug(f"Dropping frame for offline device {device_id}")
            return False
        return await self._send_to(conn, encode_envelope(envelope))

    async def broadcast(self, text: str) -> int:
        """Send the same text frame to every open socket concurrently.

        Args:
            text: Serialized envelope.

        Returns:
            Number of sockets the frame was delivered to.
        """
        # Snapshot so connects/disconnects during the sends can't affect iteration
        conns = list(self.connections.values())
        if not conns:
            return 0

        results = await asyncio.gather(
            *[self._send_to(conn, text) for conn in conns],
        )
        return sum(1 for delivered in results if delivered)

    async def _send_to(self, conn: Connection, text: str) -> bool:
        if not conn.is_open:
            return False
        try:
            await asyncio.wait_for(conn.send(text), timeout=self._send_timeout)
            return True
        except asyncio.TimeoutError:
            logger.warning(f"Send timeout to {conn.device_id}")
        except (ConnectionError, RuntimeError) as e:
            # aiohttp raises these when the transport closes mid-send
            logger.warning(f"Send to {conn.device_id} failed: {e}")
        return False

    async def close_all(self, code: int, message: bytes = b"") -> None:
        """Close all sockets gracefully."""
        conns = list(self.connections.values())
        self.connections.clear()

        if conns:
            await asyncio.gather(
                *[conn.close(code, message) for conn in conns],
                return_exceptions=True,
            )

    def __len__(self) -> int:
        return len(self.connections)

    def __contains__(self, device_id: str) -> bool:
        return device_id in self.connections
