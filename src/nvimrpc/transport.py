"""Byte-stream transports for the session engine.

The engine only needs ``read``/``write``/``close``. ``StreamTransport`` adapts
an asyncio ``StreamReader``/``StreamWriter`` pair, which covers Unix domain
sockets and TCP.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from typing import Protocol

logger = logging.getLogger(__name__)

# Constants
DEFAULT_READ_SIZE = 64 * 1024


class RpcTransport(Protocol):
    """Interface for a duplex byte stream.

    Implement this for sockets, pipes, WebSockets, etc.
    """

    async def read(self) -> bytes:
        """Read the next chunk of bytes. Raises ``ConnectionError`` on close."""
        ...

    async def write(self, data: bytes) -> None:
        """Write bytes to the peer. Raises ``ConnectionError`` on failure."""
        ...

    async def close(self) -> None:
        """Close the connection. Safe to call more than once."""
        ...


class StreamTransport:
    """Transport over an asyncio stream pair.

    Example:
        ```python
        transport = await StreamTransport.open_unix("/tmp/nvim.sock")
        await transport.write(data)
        ```
    """

    __slots__ = ("_reader", "_writer", "_read_size", "_closed")

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        read_size: int = DEFAULT_READ_SIZE,
    ) -> None:
        """Initialize the transport.

        Args:
            reader: Stream to read incoming bytes from
            writer: Stream to write outgoing bytes to
            read_size: Maximum number of bytes returned by one ``read()``
        """
        self._reader = reader
        self._writer = writer
        self._read_size = read_size
        self._closed = False

    @classmethod
    async def open_unix(cls, path: str, read_size: int = DEFAULT_READ_SIZE) -> StreamTransport:
        """Connect to a Unix domain socket."""
        reader, writer = await asyncio.open_unix_connection(path)
        logger.debug("Connected to unix socket %s", path)
        return cls(reader, writer, read_size)

    @classmethod
    async def open_tcp(
        cls, host: str, port: int, read_size: int = DEFAULT_READ_SIZE
    ) -> StreamTransport:
        """Connect to a TCP address."""
        reader, writer = await asyncio.open_connection(host, port)
        logger.debug("Connected to %s:%d", host, port)
        return cls(reader, writer, read_size)

    @property
    def closed(self) -> bool:
        return self._closed

    async def read(self) -> bytes:
        if self._closed:
            raise ConnectionError("Transport is closed")
        data = await self._reader.read(self._read_size)
        if not data:
            self._closed = True
            raise ConnectionError("Connection closed by peer")
        return data

    async def write(self, data: bytes) -> None:
        if self._closed:
            raise ConnectionError("Transport is closed")
        self._writer.write(data)
        await self._writer.drain()

    async def close(self) -> None:
        if self._closed and self._writer.is_closing():
            return
        self._closed = True
        self._writer.close()
        # The peer may already be gone; closing is best effort.
        with suppress(ConnectionError, OSError):
            await self._writer.wait_closed()
