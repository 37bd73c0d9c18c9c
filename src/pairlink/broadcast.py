"""Push the online-device snapshot to every live socket."""

import logging

from pairlink.connection_manager import ConnectionManager
from pairlink.device import utc_now
from pairlink.message import DeviceListUpdated, encode_envelope
from pairlink.session_registry import SessionRegistry

logger = logging.getLogger(__name__)


class BroadcastCoordinator:
    """Builds device_list_updated snapshots and fans them out.

    Called after any registry change to membership or identity fields
    (connect, register, disconnect).
    """

    def __init__(self, registry: SessionRegistry, connections: ConnectionManager):
        self._registry = registry
        self._connections = connections

    def snapshot(self) -> DeviceListUpdated:
        """Current online devices, detached from the live records."""
        return DeviceListUpdated(
            devices=[device.public_info() for device in self._registry.list_all()],
            timestamp=utc_now(),
        )

    async def broadcast_device_list(self) -> int:
        """Send one serialized snapshot to all open sockets.

        Returns:
            Number of sockets reached.
        """
        event = self.snapshot()
        # Serialize once so every socket receives identical bytes
        text = encode_envelope(event)
        delivered = await self._connections.broadcast(text)
        logger.debug(
            f"Broadcast device list ({event.total_devices} devices) "
            f"to {delivered} sockets"
        )
        return delivered
