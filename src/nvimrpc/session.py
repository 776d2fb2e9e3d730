"""msgpack-rpc session engine.

One ``RpcSession`` owns one transport for its whole lifetime and multiplexes
over it:

1. Outgoing calls, correlated with their responses by request id only, so
   responses may arrive in any order
2. Incoming notifications, routed to every handler registered for the name
3. Incoming requests, answered with exactly one response each

A single read loop decodes the byte stream and hands every message to the
``Router`` without waiting on handlers. The session moves from CONNECTING to
OPEN on ``start()`` and to DETACHED on ``detach()``, on transport failure or
on a framing error. DETACHED is terminal: every pending call fails with a
connection error and later calls fail immediately.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Sequence
from enum import Enum
from typing import Any, Callable, Self

from nvimrpc.codec import encode
from nvimrpc.config import ClientInfo, SessionConfig
from nvimrpc.error import ErrorCode, RpcError
from nvimrpc.router import HandlerRegistry, NotificationHandler, RequestHandler, Router
from nvimrpc.stream import MessageStream
from nvimrpc.transport import RpcTransport
from nvimrpc.wire import (
    MAX_REQUEST_ID,
    WireMessage,
    WireNotification,
    WireRequest,
    WireResponse,
    is_int_not_bool,
)

logger = logging.getLogger(__name__)


class ConnectionState(Enum):
    """Lifecycle of a session. Transitions only move forward."""

    CONNECTING = "connecting"
    OPEN = "open"
    DETACHED = "detached"


class PendingCall:
    """An outgoing request waiting for its response."""

    __slots__ = ("request_id", "method", "future", "created_at")

    def __init__(self, request_id: int, method: str, future: asyncio.Future[Any]) -> None:
        self.request_id = request_id
        self.method = method
        self.future = future
        self.created_at = time.monotonic()

    def resolve(self, response: WireResponse) -> None:
        if self.future.done():
            return
        if response.is_error:
            self.future.set_exception(RpcError.remote(response.error))
        else:
            self.future.set_result(response.result)

    def fail(self, error: Exception) -> None:
        if not self.future.done():
            self.future.set_exception(error)


class RpcSession:
    """Bidirectional msgpack-rpc session over one transport.

    Example:
        ```python
        transport = await StreamTransport.open_unix(os.environ["NVIM"])
        async with RpcSession(transport) as nvim:
            nvim.on_notification("my_event", lambda args: print(args))
            buf = await nvim.call("nvim_get_current_buf", [])
        ```
    """

    def __init__(
        self,
        transport: RpcTransport,
        options: SessionConfig | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        """Initialize the session.

        Args:
            transport: Byte-stream transport, owned by this session from now on
            options: Optional session configuration
            logger: Application logger exposed as ``session.logger``
        """
        self.transport = transport
        self._options = options or SessionConfig()
        self.logger = logger

        self._state = ConnectionState.CONNECTING
        self._closed_reason: Exception | None = None
        self._closed_event = asyncio.Event()

        # Pending outgoing calls: request_id -> PendingCall
        self._pending: dict[int, PendingCall] = {}
        self._next_request_id = 0

        self._registry = HandlerRegistry()
        self._router = Router(self._registry, self._resolve_response, self._send_message)
        self._stream = MessageStream(transport)
        self._read_loop_task: asyncio.Task[None] | None = None

        # Serializes writes so concurrent senders never interleave bytes
        self._write_lock = asyncio.Lock()

        # Channel id discovered through the api-info bootstrap call
        self._channel_id: int | None = None
        self._channel_id_task: asyncio.Task[int] | None = None
        self.api_metadata: Any = None

        self._on_broken_callbacks: list[Callable[[Exception], None]] = []
        self._background_tasks: set[asyncio.Task[Any]] = set()
        self._close_task: asyncio.Task[None] | None = None

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def closed_reason(self) -> Exception | None:
        """Why the session was detached, or None while it is still usable."""
        return self._closed_reason

    def start(self) -> None:
        """Open the session and start the message read loop."""
        if self._state is ConnectionState.DETACHED:
            raise self._closed_error()
        if self._read_loop_task is None:
            self._state = ConnectionState.OPEN
            self._read_loop_task = asyncio.create_task(self._read_loop())

    async def detach(self) -> None:
        """Close the connection and fail every pending call.

        Idempotent. Handler tables are cleared and the transport is closed.
        """
        if self._state is not ConnectionState.DETACHED:
            logger.debug("Detaching session")
            self._teardown(RpcError.connection_closed("Session detached"))

        if self._close_task is not None:
            await self._close_task

        task = self._read_loop_task
        if task is not None and task is not asyncio.current_task():
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def wait_closed(self) -> None:
        """Wait until the session is detached for any reason."""
        await self._closed_event.wait()

    def on_broken(self, callback: Callable[[Exception], None]) -> None:
        """Register a callback run once with the reason when the session ends.

        If the session is already detached the callback runs immediately.
        """
        if self._state is ConnectionState.DETACHED:
            callback(self._closed_reason or RpcError.connection_closed())
            return
        self._on_broken_callbacks.append(callback)

    async def __aenter__(self) -> Self:
        self.start()
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.detach()

    def get_stats(self) -> dict[str, int]:
        """Get statistics about the session.

        Returns:
            Dict with 'pending_calls', 'notification_handlers' and
            'request_handlers' counts
        """
        return {
            "pending_calls": len(self._pending),
            "notification_handlers": self._registry.notification_handler_count,
            "request_handlers": self._registry.request_handler_count,
        }

    # -------------------------------------------------------------------------
    # Outgoing messages
    # -------------------------------------------------------------------------

    async def call(self, method: str, args: Sequence[Any] = ()) -> Any:
        """Call a method on the peer and wait for its result.

        Args:
            method: Remote method name, e.g. "nvim_buf_get_lines"
            args: Positional arguments; pass ``[]`` for none

        Returns:
            The decoded ``result`` of the response

        Raises:
            RpcError: REMOTE if the peer answered with an error,
                CONNECTION_CLOSED if the session is or becomes detached
            TypeError: If an argument cannot be encoded, including integers
                outside the 64-bit range
        """
        pending = await self._send_request(method, args)
        try:
            return await pending.future
        finally:
            self._forget(pending)

    async def notify(self, method: str, args: Sequence[Any] = ()) -> None:
        """Send a notification to the peer. No response is expected."""
        if not method:
            raise ValueError("Method name cannot be empty")
        self._check_open()
        await self._write(encode(WireNotification(method, _as_list(args)).to_wire()))

    async def channel_id(self) -> int:
        """Return the channel id the peer assigned to this connection.

        The first call performs the api-info bootstrap call and caches the id.
        Concurrent first callers share that single call; a failed bootstrap
        is not cached.
        """
        if self._channel_id is not None:
            return self._channel_id
        if self._channel_id_task is None:
            self._channel_id_task = asyncio.create_task(self._fetch_channel_id())
        return await asyncio.shield(self._channel_id_task)

    async def announce(self, client: ClientInfo) -> asyncio.Task[None]:
        """Send the client identification call.

        The request is written before this returns; its response is awaited
        in the background and a rejection is only logged.

        Returns:
            The background task, mostly useful for tests
        """
        pending = await self._send_request(self._options.client_info_method, client.to_wire_args())
        return self._spawn(self._await_announce(pending))

    # -------------------------------------------------------------------------
    # Handler registration
    # -------------------------------------------------------------------------

    def on_notification(self, name: str, handler: NotificationHandler) -> None:
        """Register a handler for notifications named ``name``.

        Several handlers may share a name; they run in registration order and
        each is awaited before the next. A handler returning ``True`` is
        removed after that invocation.
        """
        _check_handler(name, handler)
        self._registry.add_notification_handler(name, handler)

    def remove_notification_handler(self, name: str, handler: NotificationHandler) -> bool:
        """Unregister a notification handler. Returns False if it was unknown."""
        return self._registry.remove_notification_handler(name, handler)

    def on_request(self, name: str, handler: RequestHandler) -> None:
        """Register or replace the handler for requests to ``name``.

        The handler's return value is sent back as the result; raising sends
        the exception message back as the error.
        """
        _check_handler(name, handler)
        self._registry.set_request_handler(name, handler)

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _check_open(self) -> None:
        if self._state is ConnectionState.DETACHED:
            raise self._closed_error()
        if self._state is ConnectionState.CONNECTING:
            raise RuntimeError("Session not started")

    def _closed_error(self) -> RpcError:
        reason = self._closed_reason
        if isinstance(reason, RpcError) and reason.code is ErrorCode.CONNECTION_CLOSED:
            return RpcError.connection_closed(reason.message)
        if reason is not None:
            return RpcError.connection_closed(f"Connection closed: {reason}")
        return RpcError.connection_closed()

    def _allocate_request_id(self) -> int:
        # Wraps after the uint32 ceiling, skipping ids still in flight
        for _ in range(len(self._pending) + 1):
            request_id = self._next_request_id
            self._next_request_id = 0 if request_id >= MAX_REQUEST_ID else request_id + 1
            if request_id not in self._pending:
                return request_id
        raise RpcError.internal("No free request id")

    async def _send_request(self, method: str, args: Sequence[Any]) -> PendingCall:
        """Register and write a request; the caller awaits ``pending.future``."""
        if not method:
            raise ValueError("Method name cannot be empty")
        self._check_open()

        request_id = self._allocate_request_id()
        data = encode(WireRequest(request_id, method, _as_list(args)).to_wire())

        pending = PendingCall(request_id, method, asyncio.get_running_loop().create_future())
        self._pending[request_id] = pending
        try:
            await self._write(data)
        except RpcError:
            # The session is detached, which has already failed this call
            pass
        except BaseException:
            self._forget(pending)
            raise
        return pending

    def _forget(self, pending: PendingCall) -> None:
        if self._pending.get(pending.request_id) is pending:
            del self._pending[pending.request_id]

    async def _write(self, data: bytes) -> None:
        if self._state is ConnectionState.DETACHED:
            raise self._closed_error()
        try:
            async with self._write_lock:
                await self.transport.write(data)
        except OSError as e:
            logger.debug("Transport write failed: %s", e)
            error = RpcError.connection_closed(f"Write failed: {e}")
            self._teardown(error)
            raise error from e

    async def _send_message(self, message: WireMessage) -> None:
        await self._write(encode(message.to_wire()))

    def _resolve_response(self, response: WireResponse) -> None:
        pending = self._pending.pop(response.request_id, None)
        if pending is None:
            logger.warning("Response for unknown request id %d", response.request_id)
            return
        pending.resolve(response)

    async def _read_loop(self) -> None:
        """Decode incoming messages and route them until the stream ends."""
        reason: Exception
        try:
            async for message in self._stream:
                self._router.dispatch(message)
            reason = RpcError.connection_closed("Connection closed by peer")
        except RpcError as e:
            logger.error("Protocol error, detaching: %s", e.message)
            reason = e
        except Exception as e:
            logger.exception("Error in read loop")
            reason = RpcError.connection_closed(f"Read failed: {e}")
        self._teardown(reason)

    def _teardown(self, reason: Exception) -> None:
        """Move to DETACHED and release everything the session holds."""
        if self._state is ConnectionState.DETACHED:
            return
        self._state = ConnectionState.DETACHED
        self._closed_reason = reason
        error = self._closed_error()

        pending = list(self._pending.values())
        self._pending.clear()
        for call in pending:
            call.fail(error)
        if pending:
            logger.debug("Failed %d pending call(s): %s", len(pending), error.message)

        self._router.close()

        callbacks = self._on_broken_callbacks
        self._on_broken_callbacks = []
        for callback in callbacks:
            try:
                callback(reason)
            except Exception:
                logger.exception("on_broken callback failed")

        task = self._read_loop_task
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()

        self._close_task = self._spawn(self._close_transport())
        self._closed_event.set()

    async def _close_transport(self) -> None:
        try:
            await self.transport.close()
        except OSError as e:
            logger.debug("Error closing transport: %s", e)

    async def _fetch_channel_id(self) -> int:
        method = self._options.api_info_method
        try:
            info = await self.call(method, [])
            if not isinstance(info, (list, tuple)) or not info or not is_int_not_bool(info[0]):
                raise RpcError.internal(f"Unexpected {method} result: {info!r}")
            self._channel_id = info[0]
            self.api_metadata = info[1] if len(info) > 1 else None
            logger.debug("Channel id is %d", self._channel_id)
            return self._channel_id
        finally:
            self._channel_id_task = None

    async def _await_announce(self, pending: PendingCall) -> None:
        try:
            await pending.future
        except RpcError as e:
            logger.warning("Client info was not accepted: %s", e.message)
        finally:
            self._forget(pending)

    def _spawn(self, coro: Any) -> asyncio.Task[Any]:
        task = asyncio.create_task(coro)
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)
        return task


def _as_list(args: Sequence[Any]) -> list[Any]:
    if not isinstance(args, (list, tuple)):
        raise TypeError(f"args must be a list or tuple, got {type(args).__name__}")
    return list(args)


def _check_handler(name: str, handler: Callable[..., Any]) -> None:
    if not name:
        raise ValueError("Name cannot be empty")
    if not callable(handler):
        raise TypeError(f"Handler must be callable, got {type(handler).__name__}")
