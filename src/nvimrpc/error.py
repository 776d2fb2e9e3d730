"""Error types for the msgpack-rpc session engine.

Every failure the engine reports to callers is an ``RpcError`` carrying an
``ErrorCode``. Only ``PROTOCOL`` and ``CONNECTION_CLOSED`` errors are fatal to
the session; the others are scoped to a single call or handler.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorCode(Enum):
    """Classification of RPC failures."""

    PROTOCOL = "protocol"
    REMOTE = "remote"
    INTERNAL = "internal"
    CONNECTION_CLOSED = "connection_closed"


class RpcError(Exception):
    """An RPC failure with a machine-readable code.

    Attributes:
        code: The failure class
        message: Human readable description
        data: Optional raw payload (e.g. the error value sent by the peer)
    """

    def __init__(self, code: ErrorCode, message: str, data: Any = None) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.data = data

    def __repr__(self) -> str:
        return f"RpcError({self.code.value}, {self.message!r})"

    @property
    def is_fatal(self) -> bool:
        """Whether this error ends the session."""
        return self.code in (ErrorCode.PROTOCOL, ErrorCode.CONNECTION_CLOSED)

    @classmethod
    def protocol(cls, message: str) -> RpcError:
        """Malformed bytes or an invalid message shape from the peer."""
        return cls(ErrorCode.PROTOCOL, message)

    @classmethod
    def remote(cls, error: Any) -> RpcError:
        """The peer answered a call with a non-nil error.

        Neovim reports errors as ``[error_type, message]`` pairs; other peers
        send a plain string. Both are reduced to a message string and the raw
        value is kept in ``data``.
        """
        if isinstance(error, (list, tuple)) and len(error) == 2 and isinstance(error[1], str):
            message = error[1]
        elif isinstance(error, bytes):
            message = error.decode("utf-8", errors="replace")
        else:
            message = str(error)
        return cls(ErrorCode.REMOTE, message, data=error)

    @classmethod
    def internal(cls, message: str) -> RpcError:
        return cls(ErrorCode.INTERNAL, message)

    @classmethod
    def connection_closed(cls, message: str = "Connection closed") -> RpcError:
        return cls(ErrorCode.CONNECTION_CLOSED, message)
