"""JSON envelope protocol between relay and devices.

This module provides:
- decode_envelope / encode_envelope: wire (de)serialization
- Inbound type names handled by the relay
- Event dataclasses: the typed catalog of relay -> device envelopes
- parse_event: turn a decoded outbound envelope back into an Event
"""

import json
from dataclasses import dataclass, field
from typing import Any, ClassVar, Optional, Union

from pairlink.device import DeviceRef
from pairlink.errors import MessageError
from pairlink.history import HistoryEntry

__all__ = [
    "Event",
    "MessageError",
    "decode_envelope",
    "encode_envelope",
    "parse_event",
]

# Inbound (device -> relay) envelope types
REGISTER_DEVICE = "register_device"
CONNECTION_REQUEST = "connection_request"
CONNECTION_RESPONSE = "connection_response"
DISCONNECT_REQUEST = "disconnect_request"
GET_CONNECTION_HISTORY = "get_connection_history"

INVALID_FORMAT_MESSAGE = "Invalid message format"


def decode_envelope(raw: Union[str, bytes]) -> dict[str, Any]:
    """Decode one inbound frame.

    Args:
        raw: Text frame, or binary frame holding UTF-8 JSON.

    Returns:
        The decoded JSON object.

    Raises:
        MessageError: If the frame is not a UTF-8 JSON object.
    """
    try:
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        data = json.loads(raw)
    except (UnicodeDecodeError, json.JSONDecodeError, RecursionError) as e:
        raise MessageError(f"Undecodable frame: {e}") from e

    if not isinstance(data, dict):
        raise MessageError(f"Envelope must be a JSON object, got {type(data).__name__}")
    return data


def envelope_type(data: dict[str, Any]) -> Optional[str]:
    """The envelope's type discriminator, or None if missing or not a string."""
    value = data.get("type")
    return value if isinstance(value, str) else None


def encode_envelope(envelope: Union["Event", dict[str, Any]]) -> str:
    """Serialize an outbound envelope to a JSON text frame."""
    if isinstance(envelope, Event):
        envelope = envelope.to_dict()
    return json.dumps(envelope)


# =============================================================================
# Outbound events
# =============================================================================


class Event:
    """Base class for relay -> device envelopes."""

    TYPE: ClassVar[str] = ""

    def payload(self) -> dict[str, Any]:
        raise NotImplementedError

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.TYPE, **self.payload()}

    @classmethod
    def from_payload(cls, d: dict[str, Any]) -> "Event":
        raise NotImplementedError


@dataclass
class DeviceRegistered(Event):
    """Identity confirmation sent as soon as a socket is accepted."""

    TYPE: ClassVar[str] = "device_registered"

    device_id: str
    message: str = "Device registered successfully"

    def payload(self) -> dict[str, Any]:
        return {"deviceId": self.device_id, "message": self.message}

    @classmethod
    def from_payload(cls, d: dict[str, Any]) -> "DeviceRegistered":
        return cls(device_id=d["deviceId"], message=d.get("message", ""))


@dataclass
class RegistrationComplete(Event):
    TYPE: ClassVar[str] = "registration_complete"

    device_info: DeviceRef

    def payload(self) -> dict[str, Any]:
        return {"deviceInfo": self.device_info.to_dict()}

    @classmethod
    def from_payload(cls, d: dict[str, Any]) -> "RegistrationComplete":
        return cls(device_info=DeviceRef.from_dict(d["deviceInfo"]))


@dataclass
class ConnectionRequestSent(Event):
    TYPE: ClassVar[str] = "connection_request_sent"

    to: DeviceRef

    def payload(self) -> dict[str, Any]:
        return {"to": self.to.to_dict()}

    @classmethod
    def from_payload(cls, d: dict[str, Any]) -> "ConnectionRequestSent":
        return cls(to=DeviceRef.from_dict(d["to"]))


@dataclass
class IncomingConnectionRequest(Event):
    TYPE: ClassVar[str] = "incoming_connection_request"

    sender: DeviceRef
    message: str

    def payload(self) -> dict[str, Any]:
        return {"from": self.sender.to_dict(), "message": self.message}

    @classmethod
    def from_payload(cls, d: dict[str, Any]) -> "IncomingConnectionRequest":
        return cls(sender=DeviceRef.from_dict(d["from"]), message=d.get("message", ""))


@dataclass
class ConnectionEstablished(Event):
    TYPE: ClassVar[str] = "connection_established"

    peer: DeviceRef
    message: str

    def payload(self) -> dict[str, Any]:
        return {"with": self.peer.to_dict(), "message": self.message}

    @classmethod
    def from_payload(cls, d: dict[str, Any]) -> "ConnectionEstablished":
        return cls(peer=DeviceRef.from_dict(d["with"]), message=d.get("message", ""))


@dataclass
class ConnectionRejected(Event):
    TYPE: ClassVar[str] = "connection_rejected"

    by: DeviceRef
    message: str

    def payload(self) -> dict[str, Any]:
        return {"by": self.by.to_dict(), "message": self.message}

    @classmethod
    def from_payload(cls, d: dict[str, Any]) -> "ConnectionRejected":
        return cls(by=DeviceRef.from_dict(d["by"]), message=d.get("message", ""))


@dataclass
class DeviceDisconnected(Event):
    TYPE: ClassVar[str] = "device_disconnected"

    sender: DeviceRef

    def payload(self) -> dict[str, Any]:
        return {"from": self.sender.to_dict()}

    @classmethod
    def from_payload(cls, d: dict[str, Any]) -> "DeviceDisconnected":
        return cls(sender=DeviceRef.from_dict(d["from"]))


@dataclass
class DisconnectConfirmed(Event):
    TYPE: ClassVar[str] = "disconnect_confirmed"

    peer: DeviceRef

    def payload(self) -> dict[str, Any]:
        return {"with": self.peer.to_dict()}

    @classmethod
    def from_payload(cls, d: dict[str, Any]) -> "DisconnectConfirmed":
        return cls(peer=DeviceRef.from_dict(d["with"]))


@dataclass
class ConnectionHistory(Event):
    TYPE: ClassVar[str] = "connection_history"

    history: list[HistoryEntry] = field(default_factory=list)

    def payload(self) -> dict[str, Any]:
        return {"history": [entry.to_dict() for entry in self.history]}

    @classmethod
    def from_payload(cls, d: dict[str, Any]) -> "ConnectionHistory":
        return cls(history=[HistoryEntry.from_dict(e) for e in d.get("history", [])])


@dataclass
class DeviceListUpdated(Event):
    """Full snapshot of online devices."""

    TYPE: ClassVar[str] = "device_list_updated"

    devices: list[dict[str, Any]]
    timestamp: str

    @property
    def total_devices(self) -> int:
        return len(self.devices)

    def payload(self) -> dict[str, Any]:
        return {
            "devices": self.devices,
            "totalDevices": self.total_devices,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_payload(cls, d: dict[str, Any]) -> "DeviceListUpdated":
        return cls(devices=list(d.get("devices", [])), timestamp=d.get("timestamp", ""))


@dataclass
class ConnectionErrorReply(Event):
    """A connection request named a device that is not online."""

    TYPE: ClassVar[str] = "connection_error"

    message: str = "Target device not found or disconnected"

    def payload(self) -> dict[str, Any]:
        return {"message": self.message}

    @classmethod
    def from_payload(cls, d: dict[str, Any]) -> "ConnectionErrorReply":
        return cls(message=d.get("message", ""))


@dataclass
class ErrorReply(Event):
    TYPE: ClassVar[str] = "error"

    message: str = INVALID_FORMAT_MESSAGE

    def payload(self) -> dict[str, Any]:
        return {"message": self.message}

    @classmethod
    def from_payload(cls, d: dict[str, Any]) -> "ErrorReply":
        return cls(message=d.get("message", ""))


EVENT_TYPES: dict[str, type[Event]] = {
    cls.TYPE: cls
    for cls in (
        DeviceRegistered,
        RegistrationComplete,
        ConnectionRequestSent,
        IncomingConnectionRequest,
        ConnectionEstablished,
        ConnectionRejected,
        DeviceDisconnected,
        DisconnectConfirmed,
        ConnectionHistory,
        DeviceListUpdated,
        ConnectionErrorReply,
        ErrorReply,
    )
}


def parse_event(data: dict[str, Any]) -> Optional[Event]:
    """Build the typed Event for a decoded outbound envelope.

    Returns:
        The Event, or None for an unknown type.

    Raises:
        MessageError: If a known envelope is missing required fields.
    """
    cls = EVENT_TYPES.get(envelope_type(data) or "")
    if cls is None:
        return None
    try:
        return cls.from_payload(data)
    except (KeyError, TypeError, AttributeError) as e:
        raise MessageError(f"Malformed {cls.TYPE} envelope: {e}") from e
