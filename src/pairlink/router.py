"""Pairing protocol: session lifecycle and inbound envelope handling.

Every handler re-resolves sender and target from the registry, since a
socket may close between any two frames. Lookups and registry/history
mutations never straddle an await, so they need no locking on the single
event loop.
"""

import logging
from typing import Any, Optional

from pairlink.broadcast import BroadcastCoordinator
from pairlink.connection_manager import ConnectionManager, SocketProtocol
from pairlink.device import Device, SessionState, new_device_id
from pairlink.errors import MessageError
from pairlink.history import HistoryStore
from pairlink.message import (
    CONNECTION_REQUEST,
    CONNECTION_RESPONSE,
    DISCONNECT_REQUEST,
    GET_CONNECTION_HISTORY,
    REGISTER_DEVICE,
    ConnectionErrorReply,
    ConnectionEstablished,
    ConnectionHistory,
    ConnectionRejected,
    ConnectionRequestSent,
    DeviceDisconnected,
    DeviceRegistered,
    DisconnectConfirmed,
    ErrorReply,
    IncomingConnectionRequest,
    RegistrationComplete,
    decode_envelope,
    envelope_type,
)
from pairlink.message_dispatcher import MessageDispatcher
from pairlink.session_registry import SessionRegistry

logger = logging.getLogger(__name__)


def _text_field(envelope: dict[str, Any], key: str) -> Optional[str]:
    """A non-empty string field, or None."""
    value = envelope.get(key)
    return value if isinstance(value, str) and value else None


class Router:
    """Executes the pairing protocol against a registry and history store.

    State is injected, so several independent routers can coexist (one per
    relay instance or test).
    """

    def __init__(
        self,
        registry: Optional[SessionRegistry] = None,
        history: Optional[HistoryStore] = None,
        connections: Optional[ConnectionManager] = None,
        history_limit: int = 10,
        handler_timeout: float = 10.0,
    ):
        """Initialize router.

        Args:
            registry: Live device registry.
            history: Pairing history store.
            connections: Live sockets for outbound delivery.
            history_limit: Entries returned by get_connection_history.
            handler_timeout: Maximum time for one handler (seconds).
        """
        self.registry = registry if registry is not None else SessionRegistry()
        self.history = history if history is not None else HistoryStore()
        self.connections = connections if connections is not None else ConnectionManager()
        self.broadcaster = BroadcastCoordinator(self.registry, self.connections)
        self.history_limit = history_limit

        # Offline snapshots of closed sessions, for external inspection only
        self.departed: dict[str, Device] = {}

        self._dispatcher = MessageDispatcher(handler_timeout=handler_timeout)
        self._register_handlers()

    def _register_handlers(self) -> None:
        self._dispatcher.register(REGISTER_DEVICE, self._handle_register_device)
        self._dispatcher.register(CONNECTION_REQUEST, self._handle_connection_request)
        self._dispatcher.register(CONNECTION_RESPONSE, self._handle_connection_response)
        self._dispatcher.register(DISCONNECT_REQUEST, self._handle_disconnect_request)
        self._dispatcher.register(GET_CONNECTION_HISTORY, self._handle_get_history)

    def _lookup(self, device_id: Any) -> Optional[Device]:
        if not isinstance(device_id, str):
            return None
        return self.registry.get(device_id)

    def _allocate_id(self) -> str:
        device_id = new_device_id()
        while device_id in self.registry or device_id in self.departed:
            device_id = new_device_id()
        return device_id

    # =========================================================================
    # Session lifecycle
    # =========================================================================

    async def on_connect(self, socket: SocketProtocol, ip: Optional[str] = None) -> Device:
        """Admit a new socket: assign identity, confirm it, broadcast.

        Args:
            socket: The accepted WebSocket.
            ip: Best-effort client address.

        Returns:
            The new live Device.
        """
        device = Device(id=self._allocate_id(), ip=ip)
        self.registry.put(device.id, device)
        self.connections.add(device.id, socket)

        logger.info(f"New device connected: {device.id} from {ip}")

        await self.connections.send(device.id, DeviceRegistered(device_id=device.id))
        device.state = SessionState.IDENTIFIED

        await self.broadcaster.broadcast_device_list()
        return device

    async def on_frame(self, device_id: str, raw: str | bytes) -> None:
        """Decode one inbound frame and dispatch it."""
        try:
            envelope = decode_envelope(raw)
        except MessageError as e:
            logger.warning(f"Bad frame from {device_id}: {e}")
            await self.connections.send(device_id, ErrorReply())
            return

        if device_id not in self.registry:
            return

        await self._dispatcher.dispatch(device_id, envelope_type(envelope), envelope)

    async def on_close(self, device_id: str) -> Optional[Device]:
        """Remove a closed session and broadcast the new membership.

        Returns:
            The offline snapshot, or None if the device was already gone.
        """
        self.connections.remove(device_id)
        device = self.registry.remove(device_id)
        if device is None:
            return None

        snapshot = device.offline_snapshot()
        self.departed[device_id] = snapshot
        logger.info(f"Device disconnected: {device_id}")

        await self.broadcaster.broadcast_device_list()
        return snapshot

    # =========================================================================
    # Envelope handlers
    # =========================================================================

    async def _handle_register_device(self, device_id: str, envelope: dict[str, Any]) -> None:
        sender = self._lookup(device_id)
        if sender is None:
            return

        sender.register(envelope.get("name"), envelope.get("deviceType"))
        logger.info(
            f"Device registered: {sender.display_name} ({sender.display_class.value})"
        )

        await self.connections.send(device_id, RegistrationComplete(device_info=sender.ref()))
        await self.broadcaster.broadcast_device_list()

    async def _handle_connection_request(self, device_id: str, envelope: dict[str, Any]) -> None:
        sender = self._lookup(device_id)
        if sender is None:
            return

        target = self._lookup(envelope.get("targetDeviceId"))
        if target is None:
            await self.connections.send(device_id, ConnectionErrorReply())
            return

        logger.info(f"Connection request: {sender.display_name} -> {target.display_name}")

        message = (
            _text_field(envelope, "message")
            or f"{sender.display_name} wants to connect to your device"
        )
        await self.connections.send(
            target.id, IncomingConnectionRequest(sender=sender.ref(), message=message)
        )
        await self.connections.send(device_id, ConnectionRequestSent(to=target.ref()))

    async def _handle_connection_response(self, device_id: str, envelope: dict[str, Any]) -> None:
        sender = self._lookup(device_id)
        requester = self._lookup(envelope.get("requesterId"))
        if sender is None or requester is None:
            return

        if envelope.get("accepted"):
            logger.info(
                f"Connection accepted: {requester.display_name} <-> {sender.display_name}"
            )
            sender_ref = sender.ref()
            requester_ref = requester.ref()
            self.history.append(requester.id, sender.id, requester_ref, sender_ref)

            await self.connections.send(
                requester.id,
                ConnectionEstablished(
                    peer=sender_ref, message=f"Connected to {sender_ref.name}"
                ),
            )
            await self.connections.send(
                sender.id,
                ConnectionEstablished(
                    peer=requester_ref, message=f"Connected to {requester_ref.name}"
                ),
            )
        else:
            logger.info(
                f"Connection rejected: {requester.display_name} <- {sender.display_name}"
            )
            message = (
                _text_field(envelope, "message")
                or f"{sender.display_name} rejected the connection"
            )
            await self.connections.send(
                requester.id, ConnectionRejected(by=sender.ref(), message=message)
            )

    async def _handle_disconnect_request(self, device_id: str, envelope: dict[str, Any]) -> None:
        sender = self._lookup(device_id)
        target = self._lookup(envelope.get("targetDeviceId"))
        if sender is None or target is None:
            return

        logger.info(f"Disconnect request: {sender.display_name} -X- {target.display_name}")

        await self.connections.send(target.id, DeviceDisconnected(sender=sender.ref()))
        await self.connections.send(device_id, DisconnectConfirmed(peer=target.ref()))

    async def _handle_get_history(self, device_id: str, envelope: dict[str, Any]) -> None:
        if self._lookup(device_id) is None:
            return

        entries = self.history.recent(device_id, self.history_limit)
        await self.connections.send(device_id, ConnectionHistory(history=entries))
