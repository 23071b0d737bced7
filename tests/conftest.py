"""pytest configuration and shared fakes for relay tests."""

from __future__ import annotations

import asyncio
import json

import pytest

from relay.channels.base import ChannelAuthError, ChannelError, RemoteChannel
from relay.registry import ConnectionRegistry, Transport, TransportError


def pytest_configure(config):
    config.addinivalue_line(
        "markers", "asyncio: mark test as async"
    )


class FakeClock:
    """Manually advanced clock, callable like ``time.time``."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeTransport(Transport):
    """Records sent frames (decoded) and terminate calls."""

    def __init__(self, fail: bool = False) -> None:
        self.sent: list[dict] = []
        self.open = True
        self.fail = fail
        self.terminated = 0

    @property
    def is_open(self) -> bool:
        return self.open

    async def send_text(self, data: str) -> None:
        if self.fail:
            raise TransportError("broken pipe")
        self.sent.append(json.loads(data))

    async def terminate(self) -> None:
        self.terminated += 1
        self.open = False


class FakeChannel(RemoteChannel):
    """Scripted chat backend.  Inbound messages are pushed via :attr:`queue`."""

    name = "fake"

    def __init__(
        self,
        chats: dict[str, str] | None = None,
        fail_verify: bool = False,
        fail_send: bool = False,
        stream_error: Exception | None = None,
    ) -> None:
        self.chats = chats if chats is not None else {"100": "100", "-200": "-200"}
        self.stream_error = stream_error
        self.fail_verify = fail_verify
        self.fail_send = fail_send
        self.sent: list[tuple[str, str]] = []
        self.queue: asyncio.Queue | None = None
        self.closed = False

    async def verify(self) -> dict:
        if self.fail_verify:
            raise ChannelAuthError("bad token")
        return {"id": 1, "username": "relay_bot"}

    async def resolve(self, target: str) -> str:
        if target.startswith("@"):
            raise ChannelError(f"cannot resolve {target!r}: numeric chat id required")
        if target not in self.chats:
            raise ChannelError(f"chat not found: {target}")
        return self.chats[target]

    async def send_message(self, chat_id: str, text: str) -> None:
        if self.fail_send:
            raise ChannelError("send failed")
        self.sent.append((chat_id, text))

    async def messages(self):
        self.queue = asyncio.Queue()
        if self.stream_error is not None:
            raise self.stream_error
        while True:
            yield await self.queue.get()

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def registry(clock):
    return ConnectionRegistry(clock=clock)


@pytest.fixture()
def channel():
    return FakeChannel()
