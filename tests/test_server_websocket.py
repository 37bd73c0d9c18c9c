"""Tests for the relay's HTTP/WebSocket transport."""

import asyncio
from unittest.mock import MagicMock

import aiohttp
import pytest
import pytest_asyncio
from aiohttp import WSMsgType

from pairlink.router import Router
from pairlink.server import RelayServer
from tests.conftest import FakeSocket

pytestmark = pytest.mark.integration


async def receive_type(ws, message_type: str, timeout: float = 2.0) -> dict:
    """Read frames until one of the given type arrives."""
    while True:
        data = await asyncio.wait_for(ws.receive_json(), timeout=timeout)
        if data["type"] == message_type:
            return data


async def join(client, name: str, device_type: str, path: str = "/ws"):
    """Open a socket, register it, and return (ws, device_id)."""
    ws = await client.ws_connect(path)
    registered = await receive_type(ws, "device_registered")
    await ws.send_json({"type": "register_device", "name": name, "deviceType": device_type})
    await receive_type(ws, "registration_complete")
    return ws, registered["deviceId"]


@pytest.fixture
def server():
    return RelayServer(Router())


@pytest_asyncio.fixture
async def client(aiohttp_client, server):
    return await aiohttp_client(server.app)


class TestHealth:
    @pytest.mark.asyncio
    async def test_health_endpoint(self, client):
        """/health reports status, devices and uptime."""
        resp = await client.get("/health")

        assert resp.status == 200
        body = await resp.json()
        assert body["status"] == "running"
        assert body["connectedDevices"] == 0
        assert body["uptime"] >= 0

    @pytest.mark.asyncio
    async def test_root_without_upgrade_is_health(self, client):
        """A plain GET on / is a health probe."""
        resp = await client.get("/")

        assert resp.status == 200
        assert (await resp.json())["connectedDevices"] == 0

    @pytest.mark.asyncio
    async def test_health_counts_live_devices(self, client):
        """Health counts connected devices."""
        ws, _ = await join(client, "Alice", "mobile")

        body = await (await client.get("/health")).json()

        assert body["connectedDevices"] == 1
        await ws.close()


class TestWebSocketSession:
    @pytest.mark.asyncio
    async def test_connect_on_root_path(self, client):
        """/ accepts WebSocket upgrades."""
        ws = await client.ws_connect("/")

        first = await ws.receive_json(timeout=2)

        assert first["type"] == "device_registered"
        assert first["deviceId"]
        await ws.close()

    @pytest.mark.asyncio
    async def test_identity_then_device_list(self, client):
        """The first two frames are identity then device list."""
        ws = await client.ws_connect("/ws")

        first = await ws.receive_json(timeout=2)
        second = await ws.receive_json(timeout=2)

        assert first["type"] == "device_registered"
        assert second["type"] == "device_list_updated"
        assert second["devices"][0]["id"] == first["deviceId"]
        await ws.close()

    @pytest.mark.asyncio
    async def test_client_address_recorded(self, client, server):
        """The first forwarded address is recorded."""
        ws = await client.ws_connect("/ws", headers={"X-Forwarded-For": "203.0.113.9, 10.0.0.1"})
        registered = await receive_type(ws, "device_registered")

        device = server.router.registry.get(registered["deviceId"])

        assert device.ip == "203.0.113.9"
        await ws.close()

    @pytest.mark.asyncio
    async def test_malformed_frame_keeps_connection_open(self, client):
        """A malformed frame does not close the socket."""
        ws, device_id = await join(client, "Alice", "mobile")

        await ws.send_str("definitely not json")
        error = await receive_type(ws, "error")
        await ws.send_json({"type": "get_connection_history"})
        history = await receive_type(ws, "connection_history")

        assert error["message"] == "Invalid message format"
        assert history["history"] == []
        await ws.close()

    @pytest.mark.asyncio
    async def test_binary_utf8_frame_is_accepted(self, client):
        """Binary frames holding UTF-8 JSON are handled."""
        ws, _ = await join(client, "Alice", "mobile")

        await ws.send_bytes(b'{"type": "get_connection_history"}')

        history = await receive_type(ws, "connection_history")
        assert history["history"] == []
        await ws.close()

    @pytest.mark.asyncio
    async def test_close_removes_device_and_notifies_peers(self, client, server):
        """Closing a socket removes it and tells the peers."""
        alice, alice_id = await join(client, "Alice", "mobile")
        bob, bob_id = await join(client, "Bob", "desktop")

        await alice.close()

        while True:
            update = await receive_type(bob, "device_list_updated")
            if alice_id not in {d["id"] for d in update["devices"]}:
                break
        assert [d["id"] for d in update["devices"]] == [bob_id]
        assert alice_id not in server.router.registry
        assert server.router.departed[alice_id].status.value == "offline"
        await bob.close()


class IdleSocket(FakeSocket):
    """A socket that upgrades and then never delivers a frame."""

    def __init__(self):
        super().__init__()
        self.idle = asyncio.Event()

    async def prepare(self, request) -> None:
        pass

    def __aiter__(self):
        return self

    async def __anext__(self):
        self.idle.set()
        await asyncio.Event().wait()


class TestCancelledSession:
    @pytest.mark.asyncio
    async def test_cancelled_handler_still_broadcasts_departure(self, server):
        """Peers learn of the departure even when aiohttp cancels the handler."""
        peer = FakeSocket()
        peer_device = await server.router.on_connect(peer)
        request = MagicMock(headers={}, remote="127.0.0.1")
        socket = IdleSocket()

        task = asyncio.create_task(server._serve_socket(socket, request))
        await asyncio.wait_for(socket.idle.wait(), timeout=2)
        peer.clear()

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        await server.close()

        [update] = peer.of_type("device_list_updated")
        assert [d["id"] for d in update["devices"]] == [peer_device.id]
        assert len(server.router.registry) == 1


class TestPairingFlow:
    @pytest.mark.asyncio
    async def test_request_accept_history(self, client):
        """Full request, accept and history exchange."""
        alice, alice_id = await join(client, "Alice", "mobile")
        bob, bob_id = await join(client, "Bob", "desktop")

        await alice.send_json(
            {"type": "connection_request", "targetDeviceId": bob_id, "message": "pair?"}
        )
        incoming = await receive_type(bob, "incoming_connection_request")
        sent = await receive_type(alice, "connection_request_sent")

        assert incoming["from"]["id"] == alice_id
        assert incoming["message"] == "pair?"
        assert sent["to"]["name"] == "Bob"

        await bob.send_json(
            {"type": "connection_response", "requesterId": alice_id, "accepted": True}
        )
        established_alice = await receive_type(alice, "connection_established")
        established_bob = await receive_type(bob, "connection_established")

        assert established_alice["with"]["id"] == bob_id
        assert established_bob["with"]["id"] == alice_id

        await alice.send_json({"type": "get_connection_history"})
        history = (await receive_type(alice, "connection_history"))["history"]

        assert len(history) == 1
        assert history[0]["connectedTo"] == {"id": bob_id, "name": "Bob", "type": "desktop"}

        await alice.close()
        await bob.close()

    @pytest.mark.asyncio
    async def test_request_to_unknown_target(self, client):
        """Unknown targets get connection_error over the wire."""
        alice, _ = await join(client, "Alice", "mobile")

        await alice.send_json({"type": "connection_request", "targetDeviceId": "ghost"})

        error = await receive_type(alice, "connection_error")
        assert error["message"] == "Target device not found or disconnected"
        await alice.close()


class TestShutdown:
    @pytest.mark.asyncio
    async def test_server_close_sends_going_away(self):
        """Server shutdown closes sockets with 1001."""
        server = RelayServer(Router())
        await server.start("127.0.0.1", 0)

        async with aiohttp.ClientSession() as session:
            ws = await session.ws_connect(f"http://127.0.0.1:{server.get_port()}/ws")
            await receive_type(ws, "device_registered")

            # The client must keep reading so it can answer the close handshake
            close_task = asyncio.create_task(server.close())
            msg = await asyncio.wait_for(ws.receive(), timeout=5)
            while msg.type == WSMsgType.TEXT:
                msg = await asyncio.wait_for(ws.receive(), timeout=5)
            await asyncio.wait_for(close_task, timeout=5)

            assert msg.type in (WSMsgType.CLOSE, WSMsgType.CLOSED)
            assert ws.close_code == 1001
            assert len(server.router.registry) == 0
