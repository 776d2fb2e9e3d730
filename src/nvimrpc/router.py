"""Dispatch of incoming messages to pending calls and handlers.

``Router.dispatch`` is called by the session's read loop for every decoded
message and never awaits, so decoding keeps pace with the wire:

- responses resolve pending calls immediately,
- notifications are queued to one worker task per notification name, which
  runs the handlers of one notification to completion before the next,
- requests each get their own task, which always sends exactly one response.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable

from nvimrpc.error import RpcError
from nvimrpc.wire import WireMessage, WireNotification, WireRequest, WireResponse

logger = logging.getLogger(__name__)

# A handler receives the decoded argument list. Notification handlers return
# True to unregister themselves; request handlers return the call result.
NotificationHandler = Callable[[list[Any]], Any]
RequestHandler = Callable[[list[Any]], Any]


class HandlerRegistry:
    """Notification and request handler tables for one session."""

    __slots__ = ("_notification_handlers", "_request_handlers")

    def __init__(self) -> None:
        self._notification_handlers: dict[str, list[NotificationHandler]] = {}
        self._request_handlers: dict[str, RequestHandler] = {}

    def add_notification_handler(self, name: str, handler: NotificationHandler) -> None:
        """Append a handler; several handlers may share one name."""
        self._notification_handlers.setdefault(name, []).append(handler)

    def remove_notification_handler(self, name: str, handler: NotificationHandler) -> bool:
        """Remove the first registration of ``handler`` under ``name``.

        Returns:
            True if the handler was registered
        """
        handlers = self._notification_handlers.get(name)
        if not handlers:
            return False
        try:
            handlers.remove(handler)
        except ValueError:
            return False
        if not handlers:
            del self._notification_handlers[name]
        return True

    def notification_handlers(self, name: str) -> list[NotificationHandler]:
        """Snapshot of the handlers currently registered under ``name``."""
        return list(self._notification_handlers.get(name, ()))

    def has_notification_handlers(self, name: str) -> bool:
        return bool(self._notification_handlers.get(name))

    def set_request_handler(self, name: str, handler: RequestHandler) -> None:
        """Register the handler for ``name``, replacing any previous one."""
        if name in self._request_handlers:
            logger.debug("Replacing request handler for %s", name)
        self._request_handlers[name] = handler

    def get_request_handler(self, name: str) -> RequestHandler | None:
        return self._request_handlers.get(name)

    @property
    def notification_handler_count(self) -> int:
        return sum(len(handlers) for handlers in self._notification_handlers.values())

    @property
    def request_handler_count(self) -> int:
        return len(self._request_handlers)

    def clear(self) -> None:
        self._notification_handlers.clear()
        self._request_handlers.clear()


async def invoke_handler(handler: Callable[[list[Any]], Any], args: list[Any]) -> Any:
    """Call a sync or async handler and return its result."""
    result = handler(args)
    if inspect.isawaitable(result):
        result = await result
    return result


def error_message(error: BaseException) -> str:
    """Text sent back to the peer for a failed request handler."""
    if isinstance(error, RpcError):
        return error.message
    return str(error) or type(error).__name__


class Router:
    """Routes decoded messages for one session.

    Args:
        registry: Handler tables to look handlers up in
        on_response: Called synchronously with every incoming response
        send: Coroutine function that encodes and writes a message
    """

    def __init__(
        self,
        registry: HandlerRegistry,
        on_response: Callable[[WireResponse], None],
        send: Callable[[WireResponse], Awaitable[None]],
    ) -> None:
        self.registry = registry
        self._on_response = on_response
        self._send = send

        # notification name -> queue of argument lists and its worker task
        self._queues: dict[str, asyncio.Queue[list[Any]]] = {}
        self._workers: dict[str, asyncio.Task[None]] = {}

        # In-flight request handler tasks
        self._request_tasks: set[asyncio.Task[None]] = set()
        self._closed = False

    def dispatch(self, message: WireMessage) -> None:
        """Route one decoded message. Never blocks."""
        if self._closed:
            return
        match message:
            case WireResponse():
                self._on_response(message)
            case WireNotification():
                self._enqueue_notification(message)
            case WireRequest():
                task = asyncio.create_task(self._handle_request(message))
                self._request_tasks.add(task)
                task.add_done_callback(self._request_tasks.discard)
            case _:
                logger.warning("Unknown message type: %s", type(message))

    def close(self) -> None:
        """Stop all workers and request tasks and clear the handler tables."""
        if self._closed:
            return
        self._closed = True
        current = asyncio.current_task()
        for task in [*self._workers.values(), *self._request_tasks]:
            if task is not current:
                task.cancel()
        self._workers.clear()
        self._queues.clear()
        self._request_tasks.clear()
        self.registry.clear()

    # -------------------------------------------------------------------------
    # Notifications
    # -------------------------------------------------------------------------

    def _enqueue_notification(self, message: WireNotification) -> None:
        name = message.method
        if not self.registry.has_notification_handlers(name):
            logger.debug("No handler for notification %s, dropping it", name)
            return

        queue = self._queues.get(name)
        if queue is None:
            queue = asyncio.Queue()
            self._queues[name] = queue
            self._workers[name] = asyncio.create_task(self._notification_worker(name, queue))
        queue.put_nowait(message.args)

    async def _notification_worker(self, name: str, queue: asyncio.Queue[list[Any]]) -> None:
        """Handle notifications for one name strictly in arrival order."""
        while not self._closed:
            args = await queue.get()
            try:
                await self._run_notification_handlers(name, args)
            finally:
                queue.task_done()

    async def _run_notification_handlers(self, name: str, args: list[Any]) -> None:
        for handler in self.registry.notification_handlers(name):
            if self._closed:
                # A handler detached the session
                return
            try:
                result = await invoke_handler(handler, args)
            except Exception:
                logger.exception("Notification handler for %s failed", name)
                continue
            if result is True:
                self.registry.remove_notification_handler(name, handler)

    # -------------------------------------------------------------------------
    # Requests
    # -------------------------------------------------------------------------

    async def _handle_request(self, message: WireRequest) -> None:
        """Run the request handler and send exactly one response."""
        handler = self.registry.get_request_handler(message.method)
        if handler is None:
            logger.warning("Request for unknown method %s", message.method)
            response = WireResponse(message.request_id, f"Unknown method: {message.method}", None)
        else:
            try:
                result = await invoke_handler(handler, message.args)
            except Exception as e:
                logger.debug("Request handler for %s failed: %s", message.method, e)
                response = WireResponse(message.request_id, error_message(e), None)
            else:
                response = WireResponse(message.request_id, None, result)

        try:
            await self._respond(response)
        except RpcError as e:
            logger.debug("Could not answer request %d: %s", message.request_id, e.message)

    async def _respond(self, response: WireResponse) -> None:
        try:
            await self._send(response)
        except (TypeError, ValueError, OverflowError) as e:
            # Result is not msgpack-serializable; the peer still gets an answer
            logger.warning("Cannot encode result for request %d: %s", response.request_id, e)
            await self._send(
                WireResponse(response.request_id, f"Cannot encode result: {e}", None)
            )
