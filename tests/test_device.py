"""Tests for device records."""

import re

import pytest

from pairlink.device import (
    Device,
    DeviceClass,
    DeviceStatus,
    SessionState,
    new_device_id,
    placeholder_name,
    utc_now,
)


class TestDeviceClass:
    @pytest.mark.parametrize("value", ["desktop", "mobile", "unknown"])
    def test_parse_known_values(self, value):
        """Known device classes parse to themselves."""
        assert DeviceClass.parse(value).value == value

    @pytest.mark.parametrize("value", [None, "", "tablet", 3, ["mobile"]])
    def test_parse_falls_back_to_unknown(self, value):
        """Anything else parses as unknown."""
        assert DeviceClass.parse(value) is DeviceClass.UNKNOWN


class TestDevice:
    def test_new_device_is_unregistered_and_online(self):
        """A new device is online with no metadata."""
        device = Device(id="0123456789abcdef")

        assert device.name is None
        assert device.device_class is None
        assert device.status is DeviceStatus.ONLINE
        assert device.state is SessionState.CONNECTING

    def test_unregistered_device_renders_placeholder(self):
        """An unregistered device shows the placeholder name."""
        device = Device(id="0123456789abcdef")

        assert device.display_name == "Device-01234567"
        assert device.display_class is DeviceClass.UNKNOWN

    def test_register_sets_metadata(self):
        """Registration sets name and class."""
        device = Device(id="0123456789abcdef")

        device.register("Laptop", "desktop")

        assert device.name == "Laptop"
        assert device.device_class is DeviceClass.DESKTOP
        assert device.state is SessionState.REGISTERED

    @pytest.mark.parametrize("name", [None, "", 42])
    def test_register_without_usable_name_uses_placeholder(self, name):
        """A blank or non-string name falls back to the placeholder."""
        device = Device(id="0123456789abcdef")

        device.register(name, None)

        assert device.name == placeholder_name(device.id)
        assert device.device_class is DeviceClass.UNKNOWN

    def test_reregister_overwrites(self):
        """A second registration replaces the first."""
        device = Device(id="0123456789abcdef")
        device.register("Old", "mobile")

        device.register("New", "desktop")

        assert device.name == "New"
        assert device.device_class is DeviceClass.DESKTOP

    def test_public_info_projection(self):
        """public_info uses the wire field names."""
        device = Device(id="0123456789abcdef", ip="10.0.0.5")
        device.register("Phone", "mobile")

        info = device.public_info()

        assert info == {
            "id": "0123456789abcdef",
            "name": "Phone",
            "type": "mobile",
            "status": "online",
            "connectedAt": device.connected_at,
            "lastSeen": device.last_seen,
        }
        assert "ip" not in info

    def test_offline_snapshot_is_detached(self):
        """The offline snapshot does not track later changes."""
        device = Device(id="0123456789abcdef")
        device.register("Phone", "mobile")

        snapshot = device.offline_snapshot()
        device.register("Renamed", "desktop")

        assert snapshot.status is DeviceStatus.OFFLINE
        assert snapshot.state is SessionState.CLOSED
        assert snapshot.name == "Phone"
        assert device.status is DeviceStatus.ONLINE

    def test_ref_is_frozen_snapshot(self):
        """A ref keeps the name it was taken with."""
        device = Device(id="0123456789abcdef")
        device.register("Phone", "mobile")

        ref = device.ref()
        device.register("Renamed", "desktop")

        assert ref.name == "Phone"
        assert ref.type == "mobile"


class TestHelpers:
    def test_utc_now_format(self):
        """Timestamps are UTC with millisecond precision."""
        assert re.fullmatch(r"\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}\.\d{3}Z", utc_now())

    def test_new_device_ids_are_unique(self):
        """Generated ids do not repeat."""
        ids = {new_device_id() for _ in range(1000)}
        assert len(ids) == 1000
