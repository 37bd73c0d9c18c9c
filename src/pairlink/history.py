"""Append-only pairing history, kept independently of device liveness."""

import logging
import uuid
from dataclasses import dataclass
from typing import Any, Optional

from pairlink.device import DeviceRef, utc_now

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HistoryEntry:
    """One directional copy of a completed pairing.

    Both copies of an event share id, timestamp, device1 and device2;
    connected_to is the other party from the owner's point of view.
    """

    id: str
    timestamp: str
    device1: DeviceRef
    device2: DeviceRef
    connected_to: DeviceRef
    status: str = "connected"
    duration: Optional[float] = None  # Not tracked

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "device1": self.device1.to_dict(),
            "device2": self.device2.to_dict(),
            "duration": self.duration,
            "status": self.status,
            "connectedTo": self.connected_to.to_dict(),
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "HistoryEntry":
        """Create from dictionary."""
        return cls(
            id=d["id"],
            timestamp=d["timestamp"],
            device1=DeviceRef.from_dict(d["device1"]),
            device2=DeviceRef.from_dict(d["device2"]),
            connected_to=DeviceRef.from_dict(d["connectedTo"]),
            status=d.get("status", "connected"),
            duration=d.get("duration"),
        )


class HistoryStore:
    """Per-device pairing log. Entries are never mutated or deleted."""

    def __init__(self):
        self._entries: dict[str, list[HistoryEntry]] = {}

    def append(
        self,
        device_a_id: str,
        device_b_id: str,
        snapshot_a: DeviceRef,
        snapshot_b: DeviceRef,
    ) -> HistoryEntry:
        """Record one pairing event under both participants.

        Args:
            device_a_id: First participant (the requester).
            device_b_id: Second participant (the accepter).
            snapshot_a: Identity of device A at pairing time.
            snapshot_b: Identity of device B at pairing time.

        Returns:
            The entry stored under device A.
        """
        event_id = str(uuid.uuid4())
        timestamp = utc_now()

        entry_a = HistoryEntry(
            id=event_id,
            timestamp=timestamp,
            device1=snapshot_a,
            device2=snapshot_b,
            connected_to=snapshot_b,
        )
        entry_b = HistoryEntry(
            id=event_id,
            timestamp=timestamp,
            device1=snapshot_a,
            device2=snapshot_b,
            connected_to=snapshot_a,
        )

        self._entries.setdefault(device_a_id, []).append(entry_a)
        self._entries.setdefault(device_b_id, []).append(entry_b)

        logger.debug(
            f"History updated for {snapshot_a.name} and {snapshot_b.name}"
        )
        return entry_a

    def recent(self, device_id: str, n: int) -> list[HistoryEntry]:
        """Most recent entries for a device, oldest first.

        Args:
            device_id: Device to look up. Unknown ids yield [].
            n: Maximum number of entries.
        """
        if n <= 0:
            return []
        return list(self._entries.get(device_id, [])[-n:])

    def count(self, device_id: str) -> int:
        """Total stored entries for a device."""
        return len(self._entries.get(device_id, []))
