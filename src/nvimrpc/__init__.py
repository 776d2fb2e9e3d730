"""nvimrpc - asyncio msgpack-rpc client

This package implements a bidirectional msgpack-rpc session over a single
socket connection, as spoken by Neovim: call remote methods, receive
notifications and serve requests from the peer.
"""

from nvimrpc.client import attach, open_transport, parse_tcp_address
from nvimrpc.codec import StreamDecoder, decode, encode
from nvimrpc.config import (
    AttachConfig,
    ClientInfo,
    ClientVersion,
    LoggingConfig,
    MethodSpec,
    SessionConfig,
)
from nvimrpc.error import ErrorCode, RpcError
from nvimrpc.logger import create_logger
from nvimrpc.router import HandlerRegistry, NotificationHandler, RequestHandler
from nvimrpc.session import ConnectionState, PendingCall, RpcSession
from nvimrpc.stream import MessageStream
from nvimrpc.transport import RpcTransport, StreamTransport
from nvimrpc.wire import (
    MessageType,
    WireMessage,
    WireNotification,
    WireRequest,
    WireResponse,
    parse_message,
)
from nvimrpc.ws_transport import WebSocketTransport

__version__ = "0.1.0"

__all__ = [
    # Entry point
    "attach",
    "open_transport",
    "parse_tcp_address",
    # Session engine
    "RpcSession",
    "ConnectionState",
    "PendingCall",
    "HandlerRegistry",
    "NotificationHandler",
    "RequestHandler",
    "MessageStream",
    # Errors
    "RpcError",
    "ErrorCode",
    # Configuration (Pydantic models)
    "AttachConfig",
    "ClientInfo",
    "ClientVersion",
    "MethodSpec",
    "LoggingConfig",
    "SessionConfig",
    "create_logger",
    # Wire format
    "MessageType",
    "WireMessage",
    "WireRequest",
    "WireResponse",
    "WireNotification",
    "parse_message",
    "encode",
    "decode",
    "StreamDecoder",
    # Transports
    "RpcTransport",
    "StreamTransport",
    "WebSocketTransport",
]
