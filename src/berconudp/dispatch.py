from __future__ import annotations

import asyncio
import collections
import functools
import inspect
import logging
from dataclasses import dataclass
from typing import (
    TYPE_CHECKING,
    Any,
    Callable,
    Generic,
    ParamSpec,
    TypeVar,
    overload,
)

from .utils import MaybeCoroFunc, maybe_coro

if TYPE_CHECKING:
    from typing_extensions import Self

    from .io.connection import Connection, DisconnectReason
    from .protocol.packet import Packet

P = ParamSpec("P")
T = TypeVar("T")

log = logging.getLogger(__name__)


def _event_name(event: str) -> str:
    return event if event.startswith("on_") else "on_" + event


@dataclass
class _Waiter:
    future: asyncio.Future
    check: MaybeCoroFunc[..., Any] | None

    async def offer(self, args: tuple) -> None:
        if self.future.done():
            return

        try:
            accepted = self.check is None or await maybe_coro(self.check, *args)
        except Exception as e:
            if not self.future.done():
                self.future.set_exception(e)
        else:
            if accepted and not self.future.done():
                self.future.set_result(args)


class EventDispatcher:
    """Delivers events fired by a connection or transport to its listeners.

    Listeners can be regular or asynchronous functions, registered with
    :py:meth:`add_listener()` or the ``on_*`` decorators of a subclass::

        dispatch = ConnectionDispatcher()

        @dispatch.on_message
        async def on_message(message, packet):
            ...

    Events are delivered in the order they were fired: every listener of an
    event starts before any listener of a later event. Each listener runs in
    its own task held by the dispatcher until it finishes, so a slow listener
    never holds up the connection. Exceptions raised by listeners are logged.

    """

    _listeners: dict[str, list[MaybeCoroFunc[..., Any]]]
    _waiters: dict[str, list[_Waiter]]
    _tasks: set[asyncio.Task]

    def __init__(self) -> None:
        self._listeners = collections.defaultdict(list)
        self._waiters = collections.defaultdict(list)
        self._tasks = set()

    def __call__(self, event: str, *args) -> None:
        """Fires an event, e.g. ``dispatch("message", text, packet)``."""
        event = _event_name(event)
        log.debug(f"dispatching event {event}")

        for func in list(self._listeners[event]):
            self._spawn(maybe_coro(func, *args), event)

        for waiter in list(self._waiters[event]):
            self._spawn(waiter.offer(args), event)

    def add_listener(self, event: str, func: MaybeCoroFunc[..., Any]) -> None:
        """Adds a listener for an event, e.g. ``"on_connected"`` or ``"connected"``."""
        self._listeners[_event_name(event)].append(func)

    def remove_listener(self, event: str, func: MaybeCoroFunc[..., Any]) -> None:
        """Removes a listener from an event. Unknown listeners are ignored."""
        try:
            self._listeners[_event_name(event)].remove(func)
        except ValueError:
            pass

    async def wait_for(
        self,
        event: str,
        *,
        check: MaybeCoroFunc[..., Any] | None = None,
        timeout: float | None = None,
    ) -> tuple:
        """Waits for the next occurrence of an event and returns its arguments.

        :param event: The event to wait for, e.g. ``"connected"``.
        :param check:
            An optional predicate, regular or asynchronous, that receives
            the event's arguments and decides if the event is accepted.
        :param timeout: An optional timeout in seconds.
        :raises asyncio.TimeoutError: The timeout was exceeded.

        """
        event = _event_name(event)
        waiter = _Waiter(asyncio.get_running_loop().create_future(), check)
        self._waiters[event].append(waiter)

        try:
            return await asyncio.wait_for(waiter.future, timeout=timeout)
        finally:
            self._waiters[event].remove(waiter)

    async def wait_idle(self) -> None:
        """Waits until every listener started so far has finished."""
        while self._tasks:
            await asyncio.wait(list(self._tasks))

    def _spawn(self, coro, event: str) -> None:
        task = asyncio.create_task(coro, name=f"berconudp-{event}")
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return

        exc = task.exception()
        if exc is not None:
            log.error(f"listener task {task.get_name()} failed", exc_info=exc)


class typed_event(Generic[P, T]):
    """Declares an event of an :py:class:`EventDispatcher` subclass from
    a signature-only function named after it.

    On a dispatcher instance, the attribute becomes a decorator that
    registers a listener for the event.

    """

    def __init__(self, func: Callable[P, T], /) -> None:
        functools.update_wrapper(self, func)
        self.event = func.__name__
        self.__signature__ = inspect.signature(func)

    @overload
    def __get__(self, instance: None, owner: Any = None) -> Self: ...

    @overload
    def __get__(
        self,
        instance: EventDispatcher,
        owner: Any = None,
    ) -> Callable[[Callable[P, T]], Callable[P, T]]: ...

    def __get__(self, instance, owner=None):
        if instance is None:
            return self

        def decorator(callback: Callable[P, T]) -> Callable[P, T]:
            instance.add_listener(self.event, callback)
            return callback

        return decorator


class ConnectionDispatcher(EventDispatcher):
    """The events fired by a :py:class:`Connection`."""

    @typed_event
    def on_connected() -> Any:
        """Fired after the server accepted our login."""

    @typed_event
    def on_disconnected(reason: DisconnectReason, /) -> Any:
        """Fired when the connection transitions back to being disconnected.

        :param reason: Why the connection ended.

        """

    @typed_event
    def on_message(message: str, packet: Packet, /) -> Any:
        """Fired once for each distinct message pushed by the server.

        :param message: The text of the message.
        :param packet: The MESSAGE packet that was received.

        """

    @typed_event
    def on_command(response: str, resolved: bool, packet: Packet, /) -> Any:
        """Fired after receiving a complete command response.

        :param response: The full response from the server.
        :param resolved:
            Whether the response completed a command that was still
            waiting for it.
        :param packet: The packet that completed the response.

        """

    @typed_event
    def on_received(resolved: bool, packet: Packet, data: bytes, addr: tuple, /) -> Any:
        """Fired for every valid packet routed to this connection.

        :param resolved: Whether the packet completed a pending command.
        :param packet: The decoded packet.
        :param data: The raw datagram.
        :param addr: The address the datagram came from.

        """

    @typed_event
    def on_error(exc: Exception, /) -> Any:
        """Fired when a datagram for this connection could not be handled,
        or when an automatic login attempt failed.
        """

    @typed_event
    def on_debug(info: str, /) -> Any:
        """Fired with diagnostic information, e.g. dropped packets."""


class TransportDispatcher(EventDispatcher):
    """The events fired by a :py:class:`Transport`."""

    @typed_event
    def on_listening(transport: asyncio.DatagramTransport, /) -> Any:
        """Fired once the socket has been bound."""

    @typed_event
    def on_received(
        resolved: bool,
        packet: Packet,
        data: bytes,
        connection: Connection,
        addr: tuple,
        /,
    ) -> Any:
        """Fired for every valid packet routed to one of our connections."""

    @typed_event
    def on_sent(packet: Packet, data: bytes, nbytes: int, connection: Connection, /) -> Any:
        """Fired after a packet was handed to the socket."""

    @typed_event
    def on_error(exc: Exception, /) -> Any:
        """Fired for socket errors, unknown senders and invalid datagrams."""
