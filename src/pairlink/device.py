"""Live device records and their public projections."""

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


class DeviceClass(str, Enum):
    """Kind of device as reported at registration."""

    DESKTOP = "desktop"
    MOBILE = "mobile"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: Any) -> "DeviceClass":
        """Map a wire value to a DeviceClass, falling back to UNKNOWN."""
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN


class DeviceStatus(str, Enum):
    ONLINE = "online"
    OFFLINE = "offline"


class SessionState(str, Enum):
    """Per-connection protocol state.

    CONNECTING -> IDENTIFIED -> REGISTERED -> CLOSED
    """

    CONNECTING = "connecting"
    IDENTIFIED = "identified"
    REGISTERED = "registered"
    CLOSED = "closed"


def utc_now() -> str:
    """Current UTC time as ISO-8601 with millisecond precision."""
    return (
        datetime.now(timezone.utc)
        .isoformat(timespec="milliseconds")
        .replace("+00:00", "Z")
    )


def new_device_id() -> str:
    return str(uuid.uuid4())


def placeholder_name(device_id: str) -> str:
    """Display name for a device that has not registered one."""
    return f"Device-{device_id[:8]}"


@dataclass(frozen=True)
class DeviceRef:
    """Public identity of a device, detached from the live record.

    Used inside envelopes and history entries.
    """

    id: str
    name: str
    type: str

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "type": self.type}

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "DeviceRef":
        return cls(
            id=d.get("id", ""),
            name=d.get("name") or "",
            type=d.get("type") or DeviceClass.UNKNOWN.value,
        )


@dataclass
class Device:
    """One live connection and its identity metadata."""

    id: str
    ip: Optional[str] = None
    name: Optional[str] = None
    device_class: Optional[DeviceClass] = None
    status: DeviceStatus = DeviceStatus.ONLINE
    state: SessionState = SessionState.CONNECTING
    connected_at: str = field(default_factory=utc_now)
    last_seen: str = field(default_factory=utc_now)

    @property
    def display_name(self) -> str:
        return self.name or placeholder_name(self.id)

    @property
    def display_class(self) -> DeviceClass:
        return self.device_class or DeviceClass.UNKNOWN

    def register(self, name: Any, device_class: Any) -> None:
        """Apply registration metadata. Re-registration overwrites.

        Args:
            name: Requested display name; empty or missing uses placeholder.
            device_class: Requested device class wire value.
        """
        self.name = name if isinstance(name, str) and name else placeholder_name(self.id)
        self.device_class = DeviceClass.parse(device_class)
        self.state = SessionState.REGISTERED

    def ref(self) -> DeviceRef:
        """Snapshot of the public identity fields."""
        return DeviceRef(
            id=self.id,
            name=self.display_name,
            type=self.display_class.value,
        )

    def public_info(self) -> dict[str, Any]:
        """Projection sent in device_list_updated broadcasts."""
        return {
            "id": self.id,
            "name": self.display_name,
            "type": self.display_class.value,
            "status": self.status.value,
            "connectedAt": self.connected_at,
            "lastSeen": self.last_seen,
        }

    def offline_snapshot(self) -> "Device":
        """Detached copy marked offline with a refreshed last_seen."""
        return replace(
            self,
            status=DeviceStatus.OFFLINE,
            state=SessionState.CLOSED,
            last_seen=utc_now(),
        )
