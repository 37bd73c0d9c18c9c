"""Device-side client for the relay.

This module provides:
- ReconnectPolicy: bounded exponential-backoff state machine
- RelayClient: connects, registers, and delivers typed events in order

Usage:
    async with RelayClient("ws://localhost:8080/ws", name="Laptop") as client:
        task = asyncio.create_task(client.run())
        event = await client.events.get()
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Union

import aiohttp

from pairlink.device import DeviceClass
from pairlink.errors import MessageError
from pairlink.message import (
    CONNECTION_REQUEST,
    CONNECTION_RESPONSE,
    DISCONNECT_REQUEST,
    GET_CONNECTION_HISTORY,
    REGISTER_DEVICE,
    DeviceRegistered,
    Event,
    decode_envelope,
    encode_envelope,
    parse_event,
)

logger = logging.getLogger(__name__)


class ReconnectState(str, Enum):
    IDLE = "idle"
    CONNECTED = "connected"
    WAITING = "waiting"
    FAILED = "failed"


class ReconnectPolicy:
    """Attempt counter with exponential delay and a terminal failure state.

    Delays are base_delay * 2 ** (attempt - 1): 1s, 2s, 4s, 8s, 16s with
    the defaults. A successful connect resets the counter.
    """

    def __init__(self, max_attempts: int = 5, base_delay: float = 1.0):
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.attempts = 0
        self.state = ReconnectState.IDLE

    @property
    def failed(self) -> bool:
        return self.state == ReconnectState.FAILED

    def on_connected(self) -> None:
        self.attempts = 0
        self.state = ReconnectState.CONNECTED

    def next_delay(self) -> Optional[float]:
        """Delay before the next attempt, or None once attempts are exhausted."""
        if self.failed or self.attempts >= self.max_attempts:
            self.state = ReconnectState.FAILED
            return None
        self.attempts += 1
        self.state = ReconnectState.WAITING
        return self.base_delay * 2 ** (self.attempts - 1)


@dataclass
class ClientConnected:
    pass


@dataclass
class ClientDisconnected:
    pass


@dataclass
class ConnectionFailed:
    """Reconnection attempts are exhausted; the client has stopped."""

    attempts: int


ClientEvent = Union[Event, ClientConnected, ClientDisconnected, ConnectionFailed]


class RelayClient:
    """One device's connection to the relay.

    Every inbound envelope, plus connection lifecycle changes, is put on
    the `events` queue in arrival order.
    """

    def __init__(
        self,
        url: str,
        name: Optional[str] = None,
        device_class: Union[DeviceClass, str] = DeviceClass.DESKTOP,
        policy: Optional[ReconnectPolicy] = None,
        http_session: Optional[aiohttp.ClientSession] = None,
    ):
        """Initialize client.

        Args:
            url: Relay WebSocket URL.
            name: Display name sent at registration.
            device_class: Device class sent at registration.
            policy: Reconnection policy (defaults to 5 attempts from 1s).
            http_session: Optional aiohttp session (for testing).
        """
        self.url = url
        self.name = name
        self.device_class = DeviceClass.parse(
            device_class.value if isinstance(device_class, DeviceClass) else device_class
        )
        self.policy = policy or ReconnectPolicy()
        self.events: asyncio.Queue[ClientEvent] = asyncio.Queue()

        self._session = http_session
        self._owns_session = http_session is None
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None
        self._device_id: Optional[str] = None
        self._closing = False

    async def __aenter__(self):
        """Enter async context, creating session if needed."""
        if self._session is None:
            self._session = aiohttp.ClientSession()
        return self

    async def __aexit__(self, *args):
        """Exit async context, closing socket and owned session."""
        await self.close()

    @property
    def device_id(self) -> Optional[str]:
        """Identifier assigned by the relay for the current connection."""
        return self._device_id

    def is_connected(self) -> bool:
        return self._ws is not None and not self._ws.closed

    async def run(self) -> None:
        """Connect and process frames, reconnecting per policy until closed."""
        if self._session is None:
            self._session = aiohttp.ClientSession()

        while not self._closing:
            try:
                async with self._session.ws_connect(self.url) as ws:
                    self._ws = ws
                    self.policy.on_connected()
                    logger.info(f"Connected to relay at {self.url}")
                    await self.events.put(ClientConnected())
                    await self._read_loop(ws)
            except (aiohttp.ClientError, OSError) as e:
                logger.warning(f"Relay connection failed: {e}")
            except RuntimeError:
                # close() shut the session while a connect was in flight
                if not self._closing:
                    raise
            finally:
                if self._ws is not None:
                    self._ws = None
                    self._device_id = None
                    await self.events.put(ClientDisconnected())

            if self._closing:
                break

            delay = self.policy.next_delay()
            if delay is None:
                logger.error("Max reconnection attempts reached")
                await self.events.put(ConnectionFailed(attempts=self.policy.attempts))
                return

            logger.info(f"Reconnecting in {delay}s (attempt {self.policy.attempts})")
            await asyncio.sleep(delay)

    async def _read_loop(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        async for msg in ws:
            if msg.type == aiohttp.WSMsgType.TEXT:
                await self._handle_frame(msg.data)
            elif msg.type == aiohttp.WSMsgType.ERROR:
                logger.error(f"Relay socket error: {ws.exception()}")
                break

    async def _handle_frame(self, raw: str) -> None:
        try:
            event = parse_event(decode_envelope(raw))
        except MessageError as e:
            logger.warning(f"Ignoring bad frame from relay: {e}")
            return

        if event is None:
            logger.debug(f"Ignoring unknown envelope from relay: {raw[:80]}")
            return

        if isinstance(event, DeviceRegistered):
            self._device_id = event.device_id
            await self._register()

        await self.events.put(event)

    async def _send(self, envelope: dict[str, Any]) -> bool:
        if not self.is_connected():
            return False
        await self._ws.send_str(encode_envelope(envelope))
        return True

    async def _register(self) -> bool:
        return await self._send(
            {
                "type": REGISTER_DEVICE,
                "name": self.name,
                "deviceType": self.device_class.value,
            }
        )

    # Public operations. Each returns False when not connected.

    async def request_connection(self, target_device_id: str, message: Optional[str] = None) -> bool:
        return await self._send(
            {
                "type": CONNECTION_REQUEST,
                "targetDeviceId": target_device_id,
                "message": message or "Requesting connection",
            }
        )

    async def respond_to_connection(
        self, requester_id: str, accepted: bool, message: Optional[str] = None
    ) -> bool:
        envelope: dict[str, Any] = {
            "type": CONNECTION_RESPONSE,
            "requesterId": requester_id,
            "accepted": accepted,
        }
        if message is not None:
            envelope["message"] = message
        return await self._send(envelope)

    async def disconnect(self, target_device_id: str) -> bool:
        return await self._send(
            {"type": DISCONNECT_REQUEST, "targetDeviceId": target_device_id}
        )

    async def get_connection_history(self) -> bool:
        return await self._send({"type": GET_CONNECTION_HISTORY})

    async def close(self) -> None:
        """Close the socket and stop reconnecting."""
        self._closing = True
        if self._ws is not None and not self._ws.closed:
            await self._ws.close()
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None
