"""Pytest configuration and shared fixtures."""

import json

import pytest

from pairlink.connection_manager import ConnectionManager
from pairlink.history import HistoryStore
from pairlink.router import Router
from pairlink.session_registry import SessionRegistry


@pytest.fixture(autouse=True)
def reset_logging_state():
    """Reset logging state before each test."""
    from pairlink.logging import reset_logging

    reset_logging()
    yield
    reset_logging()


class FakeSocket:
    """Records frames the relay sends; stands in for a WebSocketResponse."""

    def __init__(self):
        self.closed = False
        self.sent: list[str] = []
        self.close_code = None

    async def send_str(self, data: str) -> None:
        if self.closed:
            raise ConnectionResetError("Cannot write to closing transport")
        self.sent.append(data)

    async def close(self, *, code: int = 1000, message: bytes = b"") -> bool:
        self.closed = True
        self.close_code = code
        return True

    def frames(self) -> list[dict]:
        return [json.loads(s) for s in self.sent]

    def of_type(self, message_type: str) -> list[dict]:
        return [f for f in self.frames() if f["type"] == message_type]

    def clear(self) -> None:
        self.sent.clear()


@pytest.fixture
def router():
    """Router with fresh, independent state."""
    return Router(
        registry=SessionRegistry(),
        history=HistoryStore(),
        connections=ConnectionManager(send_timeout=1.0),
    )
