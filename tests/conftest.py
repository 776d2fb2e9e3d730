"""Pytest configuration for all tests."""

from __future__ import annotations

import asyncio
import logging
import socket
from collections import deque
from typing import Any, AsyncIterator, Iterator

import pytest
import pytest_asyncio

from nvimrpc.codec import StreamDecoder, encode
from nvimrpc.session import RpcSession
from nvimrpc.wire import (
    WireMessage,
    WireNotification,
    WireRequest,
    WireResponse,
    parse_message,
)

# Sentinel pushed into an inbox when the other side closes
EOF = object()

RECEIVE_TIMEOUT_SECONDS = 2.0


class MemoryTransport:
    """In-memory byte transport for testing."""

    def __init__(self, inbox: asyncio.Queue[Any], outbox: asyncio.Queue[Any], name: str = "") -> None:
        self._inbox = inbox
        self._outbox = outbox
        self.name = name
        self.closed = False
        self.close_count = 0
        self.written: list[bytes] = []
        self.fail_writes = False

    async def read(self) -> bytes:
        if self.closed and self._inbox.empty():
            raise ConnectionError("Transport closed")
        data = await self._inbox.get()
        if data is EOF:
            self.closed = True
            raise ConnectionError("Transport closed")
        return data

    async def write(self, data: bytes) -> None:
        if self.closed:
            raise ConnectionError("Transport closed")
        if self.fail_writes:
            raise BrokenPipeError("Broken pipe")
        self.written.append(data)
        await self._outbox.put(data)

    async def close(self) -> None:
        self.close_count += 1
        if self.closed:
            return
        self.closed = True
        self._outbox.put_nowait(EOF)
        self._inbox.put_nowait(EOF)


def create_transport_pair() -> tuple[MemoryTransport, MemoryTransport]:
    """Create a pair of connected transports."""
    a_to_b: asyncio.Queue[Any] = asyncio.Queue()
    b_to_a: asyncio.Queue[Any] = asyncio.Queue()
    client = MemoryTransport(b_to_a, a_to_b, "client")
    peer = MemoryTransport(a_to_b, b_to_a, "peer")
    return client, peer


class FakePeer:
    """Scripted remote end of a session, driven by the test."""

    def __init__(self, transport: MemoryTransport) -> None:
        self.transport = transport
        self._decoder = StreamDecoder()
        self._buffered: deque[WireMessage] = deque()

    async def receive(self) -> WireMessage:
        """Next message written by the session."""

        async def _next() -> WireMessage:
            while not self._buffered:
                chunk = await self.transport.read()
                self._buffered.extend(parse_message(v) for v in self._decoder.feed(chunk))
            return self._buffered.popleft()

        return await asyncio.wait_for(_next(), RECEIVE_TIMEOUT_SECONDS)

    async def expect_request(self, method: str | None = None) -> WireRequest:
        message = await self.receive()
        assert isinstance(message, WireRequest), message
        if method is not None:
            assert message.method == method
        return message

    async def expect_response(self, request_id: int | None = None) -> WireResponse:
        message = await self.receive()
        assert isinstance(message, WireResponse), message
        if request_id is not None:
            assert message.request_id == request_id
        return message

    async def send(self, message: WireMessage | list[Any]) -> None:
        value = message if isinstance(message, list) else message.to_wire()
        await self.transport.write(encode(value))

    async def send_raw(self, data: bytes) -> None:
        await self.transport.write(data)

    async def respond(self, request: WireRequest, result: Any = None, error: Any = None) -> None:
        await self.send(WireResponse(request.request_id, error, result))

    async def notify(self, method: str, args: list[Any]) -> None:
        await self.send(WireNotification(method, args))

    async def request(self, request_id: int, method: str, args: list[Any]) -> None:
        await self.send(WireRequest(request_id, method, args))

    async def disconnect(self) -> None:
        await self.transport.close()


async def settle(rounds: int = 10) -> None:
    """Let pending tasks run for a few loop iterations."""
    for _ in range(rounds):
        await asyncio.sleep(0)


def find_free_port() -> int:
    """Find a free port on 127.0.0.1."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


@pytest_asyncio.fixture
async def transports() -> tuple[MemoryTransport, MemoryTransport]:
    return create_transport_pair()


@pytest_asyncio.fixture
async def session(transports: tuple[MemoryTransport, MemoryTransport]) -> AsyncIterator[RpcSession]:
    """A started session on the client end of the transport pair."""
    s = RpcSession(transports[0])
    s.start()
    yield s
    await s.detach()


@pytest_asyncio.fixture
async def peer(transports: tuple[MemoryTransport, MemoryTransport]) -> FakePeer:
    return FakePeer(transports[1])


@pytest.fixture
def restore_package_logger() -> Iterator[None]:
    """create_logger changes process-wide logger state; undo it."""
    package_logger = logging.getLogger("nvimrpc")
    level = package_logger.level
    handlers = list(package_logger.handlers)
    yield
    for handler in list(package_logger.handlers):
        if handler not in handlers:
            package_logger.removeHandler(handler)
            handler.close()
    package_logger.setLevel(level)
