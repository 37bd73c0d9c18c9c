"""Registry of live devices keyed by device id."""

from typing import Optional

from pairlink.device import Device


class SessionRegistry:
    """Single source of truth for which devices are online.

    Stores live Device records by id. Offline devices are removed, never
    kept. This is a simple state container - business logic belongs
    elsewhere.
    """

    def __init__(self):
        """Initialize empty registry."""
        self._devices: dict[str, Device] = {}

    def put(self, device_id: str, device: Device) -> None:
        """Add or replace a device in the registry.

        Args:
            device_id: Device identifier.
            device: Live device record.
        """
        self._devices[device_id] = device

    def get(self, device_id: str) -> Optional[Device]:
        """Get device by ID.

        Returns:
            Device if online, None otherwise.
        """
        return self._devices.get(device_id)

    def remove(self, device_id: str) -> Optional[Device]:
        """Remove and return device by ID.

        Returns:
            Removed Device if found, None otherwise.
        """
        return self._devices.pop(device_id, None)

    def list_all(self) -> list[Device]:
        """Get a fresh list of all online devices."""
        return list(self._devices.values())

    def __len__(self) -> int:
        """Return number of online devices."""
        return len(self._devices)

    def __contains__(self, device_id: str) -> bool:
        """Check if device is online."""
        return device_id in self._devices
