from __future__ import annotations

import os
from typing import Any, Optional

import pytest

# Keep the idle timeout out of the way of end-to-end websocket tests.
os.environ.setdefault("IDLE_TIMEOUT_SECONDS", "0")

from backend import RoomRegistry, SessionStore  # noqa: E402
from relay import BroadcastRelay  # noqa: E402


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


class FakeConnection:
    """Stands in for a ConnectionHandler and records everything sent to it."""

    def __init__(self, connection_id: str, *, fail: bool = False) -> None:
        self.connection_id = connection_id
        self.current_room: Optional[str] = None
        self.fail = fail
        self.sent: list[dict[str, Any]] = []

    async def send(self, message: dict[str, Any]) -> None:
        if self.fail:
            raise ConnectionResetError("peer went away")
        self.sent.append(message)

    def types(self) -> list[str]:
        return [m["type"] for m in self.sent]

    def of_type(self, kind: str) -> list[dict[str, Any]]:
        return [m for m in self.sent if m["type"] == kind]

    def clear(self) -> None:
        self.sent.clear()


@pytest.fixture
def session_store() -> SessionStore:
    return SessionStore()


@pytest.fixture
def room_registry() -> RoomRegistry:
    return RoomRegistry()


@pytest.fixture
def relay(session_store: SessionStore, room_registry: RoomRegistry) -> BroadcastRelay:
    return BroadcastRelay(session_store, room_registry)


@pytest.fixture
def make_connection(relay: BroadcastRelay):
    async def _make(connection_id: str, *, fail: bool = False) -> FakeConnection:
        conn = FakeConnection(connection_id, fail=fail)
        await relay.connect(conn)
        return conn

    return _make
