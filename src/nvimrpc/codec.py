"""MessagePack codec for the wire format.

``encode`` turns one wire message (a plain array) into bytes. ``StreamDecoder``
accepts arbitrary byte chunks and yields every complete value buffered so far,
keeping partial trailing bytes for the next chunk.
"""

from __future__ import annotations

from collections.abc import Iterator
from typing import Any

import msgpack

from nvimrpc.error import RpcError

# Same as msgpack.Unpacker's default
DEFAULT_MAX_BUFFER_SIZE = 100 * 1024 * 1024


def encode(value: Any) -> bytes:
    """Encode a value as msgpack.

    Raises:
        TypeError: If the value contains something msgpack cannot represent,
            including integers outside the 64-bit range and values nested
            too deeply
    """
    try:
        return msgpack.packb(value, use_bin_type=True)
    except (ValueError, OverflowError) as e:
        raise TypeError(str(e)) from e


def decode(data: bytes) -> Any:
    """Decode exactly one msgpack value.

    Raises:
        RpcError: With code ``PROTOCOL`` on malformed or trailing bytes
    """
    try:
        return msgpack.unpackb(data, raw=False, strict_map_key=False)
    except (ValueError, TypeError, msgpack.UnpackException) as e:
        raise RpcError.protocol(f"Malformed msgpack data: {e}") from e


class StreamDecoder:
    """Incremental msgpack decoder over a byte stream."""

    __slots__ = ("_unpacker",)

    def __init__(self, max_buffer_size: int = DEFAULT_MAX_BUFFER_SIZE) -> None:
        self._unpacker = msgpack.Unpacker(
            raw=False, strict_map_key=False, max_buffer_size=max_buffer_size
        )

    def feed(self, chunk: bytes) -> Iterator[Any]:
        """Buffer a chunk and yield every complete value it finishes.

        Args:
            chunk: Raw bytes read from the transport, any length

        Returns:
            Iterator over decoded values in stream order

        Raises:
            RpcError: With code ``PROTOCOL`` if the buffered bytes are not
                valid msgpack. The decoder is unusable afterwards.
        """
        try:
            self._unpacker.feed(chunk)
        except msgpack.BufferFull as e:
            raise RpcError.protocol(f"Incoming message too large: {e}") from e
        return self._drain()

    def _drain(self) -> Iterator[Any]:
        try:
            yield from self._unpacker
        except (ValueError, TypeError, msgpack.UnpackException) as e:
            raise RpcError.protocol(f"Malformed msgpack data: {e}") from e
