"""Wire message shapes for msgpack-rpc.

Every message is a fixed-arity array tagged by a leading integer:

    [0, id, method, args]      request
    [1, id, error, result]     response
    [2, method, args]          notification

This module only converts between decoded msgpack values and the
``WireMessage`` dataclasses. Byte-level encoding lives in ``nvimrpc.codec``.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Final

from nvimrpc.error import RpcError

# Request ids are msgpack uint32 values
MAX_REQUEST_ID: Final[int] = 2**32 - 1


class MessageType(IntEnum):
    """Leading discriminant of a wire message."""

    REQUEST = 0
    RESPONSE = 1
    NOTIFY = 2


def is_int_not_bool(x: object) -> bool:
    """Check if x is an int but not a bool.

    ``bool`` is a subclass of ``int``; a ``True`` id must not be mistaken
    for request id 1.
    """
    return isinstance(x, int) and not isinstance(x, bool)


@dataclass(frozen=True, slots=True)
class WireRequest:
    """Request message: [0, id, method, args]"""

    request_id: int
    method: str
    args: list[Any]

    def to_wire(self) -> list[Any]:
        return [MessageType.REQUEST.value, self.request_id, self.method, list(self.args)]


@dataclass(frozen=True, slots=True)
class WireResponse:
    """Response message: [1, id, error, result]

    Exactly one of ``error``/``result`` is meaningful: a non-nil error marks a
    failed call, otherwise the call succeeded even if the result is nil.
    """

    request_id: int
    error: Any | None
    result: Any

    @property
    def is_error(self) -> bool:
        return self.error is not None

    def to_wire(self) -> list[Any]:
        return [MessageType.RESPONSE.value, self.request_id, self.error, self.result]


@dataclass(frozen=True, slots=True)
class WireNotification:
    """Notification message: [2, method, args]"""

    method: str
    args: list[Any]

    def to_wire(self) -> list[Any]:
        return [MessageType.NOTIFY.value, self.method, list(self.args)]


WireMessage = WireRequest | WireResponse | WireNotification


def _check_request_id(value: Any) -> int:
    if not is_int_not_bool(value) or not 0 <= value <= MAX_REQUEST_ID:
        raise RpcError.protocol(f"Invalid request id: {value!r}")
    return value


def _check_method(value: Any) -> str:
    if isinstance(value, bytes):
        value = value.decode("utf-8", errors="replace")
    if not isinstance(value, str):
        raise RpcError.protocol(f"Method name must be a string, got {type(value).__name__}")
    return value


def _check_args(value: Any) -> list[Any]:
    if not isinstance(value, (list, tuple)):
        raise RpcError.protocol(f"Arguments must be an array, got {type(value).__name__}")
    return list(value)


def parse_message(value: Any) -> WireMessage:
    """Validate a decoded msgpack value and convert it to a wire message.

    Args:
        value: One complete value produced by the stream decoder

    Returns:
        The matching ``WireRequest``, ``WireResponse`` or ``WireNotification``

    Raises:
        RpcError: With code ``PROTOCOL`` if the value is not a valid message
    """
    if not isinstance(value, (list, tuple)) or not value:
        raise RpcError.protocol(f"Message must be a non-empty array, got {value!r}")

    kind = value[0]
    if not is_int_not_bool(kind):
        raise RpcError.protocol(f"Invalid message type: {kind!r}")

    match kind:
        case MessageType.REQUEST:
            if len(value) != 4:
                raise RpcError.protocol(f"Request must have 4 elements, got {len(value)}")
            return WireRequest(
                _check_request_id(value[1]),
                _check_method(value[2]),
                _check_args(value[3]),
            )
        case MessageType.RESPONSE:
            if len(value) != 4:
                raise RpcError.protocol(f"Response must have 4 elements, got {len(value)}")
            return WireResponse(_check_request_id(value[1]), value[2], value[3])
        case MessageType.NOTIFY:
            if len(value) != 3:
                raise RpcError.protocol(f"Notification must have 3 elements, got {len(value)}")
            return WireNotification(_check_method(value[1]), _check_args(value[2]))
        case _:
            raise RpcError.protocol(f"Unknown message type: {kind}")
