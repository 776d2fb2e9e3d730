"""Message framing on top of a byte-stream transport.

``MessageStream`` is the decoder loop: it pulls chunks from the transport,
feeds them to a ``StreamDecoder`` and yields complete wire messages in arrival
order. Every message buffered from one chunk is handed out before the next
read is issued.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator

from nvimrpc.codec import StreamDecoder
from nvimrpc.transport import RpcTransport
from nvimrpc.wire import WireMessage, parse_message

logger = logging.getLogger(__name__)


class MessageStream:
    """Async iterator of ``WireMessage`` values read from a transport.

    Iteration ends normally when the transport reports a closed connection
    (``ConnectionError``). Malformed bytes or an invalid message shape raise
    ``RpcError`` with code ``PROTOCOL``; nothing is read after that.

    Example:
        ```python
        async for message in MessageStream(transport):
            router.dispatch(message)
        ```
    """

    def __init__(self, transport: RpcTransport) -> None:
        self.transport = transport
        self._decoder = StreamDecoder()
        self.bytes_read = 0
        self.messages_read = 0

    def __aiter__(self) -> AsyncIterator[WireMessage]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[WireMessage]:
        while True:
            try:
                chunk = await self.transport.read()
            except ConnectionError as e:
                logger.debug("Transport closed: %s", e)
                return
            if not chunk:
                logger.debug("Transport returned EOF")
                return

            self.bytes_read += len(chunk)
            for value in self._decoder.feed(chunk):
                message = parse_message(value)
                self.messages_read += 1
                yield message
