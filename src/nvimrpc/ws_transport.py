"""WebSocket transport for msgpack-rpc.

Some setups expose a Neovim instance through a WebSocket bridge instead of a
raw socket. Each binary frame carries a slice of the msgpack byte stream;
frame boundaries need not align with message boundaries.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import aiohttp

from nvimrpc.error import RpcError

if TYPE_CHECKING:
    from aiohttp import ClientWebSocketResponse

logger = logging.getLogger(__name__)


class WebSocketTransport:
    """WebSocket client transport implementing ``RpcTransport``.

    Example:
        ```python
        transport = WebSocketTransport("ws://localhost:8080/nvim")
        await transport.connect()
        ```
    """

    def __init__(self, url: str) -> None:
        """Initialize the transport.

        Args:
            url: WebSocket URL (e.g., "ws://localhost:8080/nvim")
        """
        self.url = url
        self._session: aiohttp.ClientSession | None = None
        self._ws: ClientWebSocketResponse | None = None
        self._closed = False

    async def connect(self) -> None:
        """Connect to the WebSocket server."""
        self._session = aiohttp.ClientSession()
        try:
            self._ws = await self._session.ws_connect(self.url)
        except aiohttp.ClientError:
            await self._session.close()
            self._session = None
            raise
        logger.debug("Connected to %s", self.url)

    @property
    def closed(self) -> bool:
        return self._closed

    async def read(self) -> bytes:
        if self._ws is None or self._closed:
            raise ConnectionError("WebSocket not connected")

        msg = await self._ws.receive()

        if msg.type == aiohttp.WSMsgType.BINARY:
            return msg.data
        elif msg.type == aiohttp.WSMsgType.TEXT:
            raise RpcError.protocol("Expected a binary frame, got text")
        elif msg.type in (
            aiohttp.WSMsgType.CLOSE,
            aiohttp.WSMsgType.CLOSING,
            aiohttp.WSMsgType.CLOSED,
        ):
            self._closed = True
            raise ConnectionError("WebSocket closed")
        elif msg.type == aiohttp.WSMsgType.ERROR:
            self._closed = True
            raise ConnectionError(f"WebSocket error: {self._ws.exception()}")
        else:
            raise ValueError(f"Unexpected message type: {msg.type}")

    async def write(self, data: bytes) -> None:
        if self._ws is None or self._closed:
            raise ConnectionError("WebSocket not connected")
        try:
            await self._ws.send_bytes(data)
        except (aiohttp.ClientError, RuntimeError) as e:
            self._closed = True
            raise ConnectionError(f"WebSocket send failed: {e}") from e

    async def close(self) -> None:
        """Close the connection."""
        self._closed = True
        if self._ws:
            await self._ws.close()
            self._ws = None
        if self._session:
            await self._session.close()
            self._session = None


async def connect_websocket(url: str) -> WebSocketTransport:
    """Create and connect a ``WebSocketTransport``."""
    transport = WebSocketTransport(url)
    await transport.connect()
    return transport

