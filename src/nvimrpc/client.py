"""Attach to a msgpack-rpc peer.

``attach`` is the usual entry point: it opens the transport matching the
address, starts a session and announces the client to the peer.

Example:
    ```python
    nvim = await attach(socket=os.environ["NVIM"], client={"name": "my_plugin"})
    try:
        await nvim.call("nvim_command", ["echo 'hello'"])
    finally:
        await nvim.detach()
    ```
"""

from __future__ import annotations

import logging
from typing import Any

from nvimrpc.config import AttachConfig
from nvimrpc.logger import create_logger
from nvimrpc.session import RpcSession
from nvimrpc.transport import DEFAULT_READ_SIZE, RpcTransport, StreamTransport
from nvimrpc.ws_transport import connect_websocket

logger = logging.getLogger(__name__)


def parse_tcp_address(address: str) -> tuple[str, int] | None:
    """Split a "host:port" address; returns None for anything else.

    Addresses containing a path separator are socket paths.
    """
    if "/" in address or "\\" in address:
        return None
    host, sep, port = address.rpartition(":")
    if not sep or not host or not port.isdigit():
        return None
    return host.strip("[]"), int(port)


async def open_transport(address: str, read_size: int = DEFAULT_READ_SIZE) -> RpcTransport:
    """Open the transport for an address.

    Args:
        address: ``ws://``/``wss://`` URL, "host:port", or Unix socket path
        read_size: Maximum chunk size for stream sockets

    Returns:
        A connected transport
    """
    if address.startswith(("ws://", "wss://")):
        return await connect_websocket(address)
    tcp = parse_tcp_address(address)
    if tcp is not None:
        return await StreamTransport.open_tcp(tcp[0], tcp[1], read_size)
    return await StreamTransport.open_unix(address, read_size)


async def attach(config: AttachConfig | None = None, **kwargs: Any) -> RpcSession:
    """Connect to a peer and return a started session.

    The ``nvim_set_client_info`` request is written before this returns, so
    it precedes any call made on the session. Its response is handled in the
    background.

    Args:
        config: Attach configuration; if omitted, keyword arguments are
            validated into an ``AttachConfig``

    Returns:
        An open ``RpcSession``
    """
    if config is None:
        config = AttachConfig(**kwargs)
    elif kwargs:
        raise TypeError("Pass either an AttachConfig or keyword arguments, not both")

    transport = await open_transport(config.socket, config.options.read_chunk_size)
    session = RpcSession(
        transport,
        options=config.options,
        logger=create_logger(config.client.name, config.logging),
    )
    session.start()
    await session.announce(config.client)
    logger.debug("Attached to %s as %s", config.socket, config.client.name)
    return session
