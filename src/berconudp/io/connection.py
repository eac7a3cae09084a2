from __future__ import annotations

import asyncio
import enum
import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from ..dispatch import ConnectionDispatcher
from ..errors import (
    AuthFailed,
    CommandTimeout,
    ConnectionLost,
    LoginTimeout,
    RCONError,
)
from ..protocol import (
    ClientAuthEvent,
    ClientCommandEvent,
    ClientEvent,
    ClientMessageEvent,
    ClientState,
    InvalidStateError,
    NonceCheck,
    Packet,
    PacketType,
    RCONClientProtocol,
)
from ..utils import connection_id, consume_exception, normalize_address

if TYPE_CHECKING:
    from .transport import Transport

log = logging.getLogger(__name__)


class DisconnectReason(enum.Enum):
    """Explains why a :py:class:`Connection` became disconnected."""

    AUTH_FAILED = "auth-failed"
    """The server rejected our password."""
    LOGIN_TIMEOUT = "login-timeout"
    """The server did not respond to our login in time."""
    TIMEOUT = "timeout"
    """Nothing was received from the server within the liveness window."""
    KILLED = "killed"
    """The connection was killed by the caller or by its transport."""


@dataclass
class ConnectionDetails:
    """The remote server to connect to."""

    ip: str
    """The numeric IPv4 or IPv6 address of the server."""
    port: int
    """The RCON port of the server."""
    password: str
    """The RCON password of the server."""


@dataclass
class ConnectionOptions:
    """Specifies the timings used by a :py:class:`Connection`."""

    login_timeout: float = 3.0
    """The amount of time in seconds to wait for a response to our login."""
    command_attempts: int = 3
    """The number of times a command is sent before giving up on it."""
    command_interval: float = 1.0
    """
    The amount of time in seconds to wait for a command response
    before sending the command again.
    """
    liveness_timeout: float = 45.0
    """
    The amount of time in seconds after which the server is presumed dead
    if nothing was received from it.
    """
    keep_alive_interval: float | None = 30.0
    """
    The amount of time in seconds since the last command after which an
    empty command is sent to keep the session alive. BattlEye servers drop
    clients that have not sent a command within 45 seconds, so this should
    stay below that. ``None`` disables keep alive packets.
    """
    message_window: int = 5
    """The number of recent message sequences remembered to skip duplicates."""

    def __post_init__(self):
        if self.command_attempts < 1:
            raise ValueError(f"command_attempts must be 1 or higher, not {self.command_attempts!r}")

        timeouts = {
            "login_timeout": self.login_timeout,
            "command_interval": self.command_interval,
            "liveness_timeout": self.liveness_timeout,
        }
        if self.keep_alive_interval is not None:
            timeouts["keep_alive_interval"] = self.keep_alive_interval

        for name, value in timeouts.items():
            if value <= 0:
                raise ValueError(f"{name} must be positive, not {value!r}")

        if self.message_window not in range(1, 256):
            raise ValueError(f"message_window must be within 1-255, not {self.message_window!r}")


@dataclass
class SendResult:
    """The outcome of :py:meth:`Transport.send()`."""

    sent: Packet
    """The packet that was sent, including any sequence assigned to it."""
    received: Packet | None
    """The packet that completed the response, if one was expected."""
    bytes: int
    """The size of the datagram that was sent."""
    connection: Connection
    """The connection the packet was sent to."""
    response: str | None = None
    """The full response to a COMMAND packet, if one was expected."""


@dataclass
class PendingCommand:
    """A command that was sent and is waiting for its response."""

    packet: Packet
    """The original packet, re-sent on every attempt."""
    bytes: int
    """The size of the datagram that was sent."""
    future: asyncio.Future[SendResult]
    """The future resolved once the full response arrives."""
    attempts: int = 1
    """The number of times the command has been sent."""
    created_at: float = field(default_factory=time.monotonic)
    timer: asyncio.TimerHandle | None = field(default=None, repr=False)

    @property
    def sequence(self) -> int:
        assert self.packet.sequence is not None
        return self.packet.sequence

    def cancel_timer(self) -> None:
        if self.timer is not None:
            self.timer.cancel()
            self.timer = None


class Connection:
    """A logical session with one BattlEye RCON server.

    Connections are created through :py:meth:`Transport.create_connection()`
    which routes datagrams from the server to :py:meth:`receive()`.

    :param transport: The transport used to send packets.
    :param details: The server to connect to.
    :param options:
        The timings to use. Defaults to an instance of
        :py:class:`ConnectionOptions`.
    :param dispatch:
        The dispatcher for this connection's events.
        Defaults to an instance of :py:class:`ConnectionDispatcher`.
    :param protocol:
        The Sans-IO protocol to use. Defaults to an instance of
        :py:class:`RCONClientProtocol` remembering
        :py:attr:`ConnectionOptions.message_window` messages.

    """

    last_activity_at: float | None
    """The :py:func:`time.monotonic()` time of the last valid packet received."""

    _pending: dict[int, PendingCommand]
    _login_future: asyncio.Future[None] | None
    _login_timer: asyncio.TimerHandle | None
    _liveness_timer: asyncio.TimerHandle | None
    _keep_alive_timer: asyncio.TimerHandle | None

    def __init__(
        self,
        transport: Transport,
        details: ConnectionDetails,
        options: ConnectionOptions | None = None,
        *,
        dispatch: ConnectionDispatcher | None = None,
        protocol: RCONClientProtocol | None = None,
    ):
        if options is None:
            options = ConnectionOptions()
        if dispatch is None:
            dispatch = ConnectionDispatcher()
        if protocol is None:
            protocol = RCONClientProtocol(
                message_check=NonceCheck(options.message_window)
            )

        self.ip, self.port = normalize_address(details.ip, details.port)
        self.id = connection_id(self.ip, self.port)
        self.password = details.password

        self.transport = transport
        self.options = options
        self.dispatch = dispatch
        self.protocol = protocol

        self.last_activity_at = None
        self._last_command = time.monotonic()
        self._pending = {}
        self._tasks: set[asyncio.Task] = set()
        self._login_future = None
        self._login_timer = None
        self._liveness_timer = None
        self._keep_alive_timer = None

    def __repr__(self) -> str:
        return "<{} {} {}, {} pending command(s)>".format(
            type(self).__name__,
            self.id,
            self.state.name.lower().replace("_", " "),
            len(self._pending),
        )

    @property
    def address(self) -> tuple[str, int]:
        """The (ip, port) pair datagrams are sent to."""
        return self.ip, self.port

    @property
    def state(self) -> ClientState:
        """The current state of the connection."""
        return self.protocol.state

    def is_connected(self) -> bool:
        """Indicates if the server has accepted our login."""
        return self.state is ClientState.CONNECTED

    # Operations

    def connect(self) -> asyncio.Future[None]:
        """Sends our password to the server.

        :returns:
            A future that resolves once the server accepts the login.
            It fails with :py:exc:`AuthFailed` if the password was rejected
            or :py:exc:`LoginTimeout` if the server did not respond.
        :raises AlreadyConnecting: A login is already in progress.
        :raises AlreadyConnected: The server has already accepted our login.

        """
        packet = self.protocol.authenticate(self.password)

        loop = asyncio.get_running_loop()
        self._login_future = fut = loop.create_future()
        log.info(f"{self.id}: logging in")

        exc = self._send(packet)
        if exc is not None and not fut.done():
            self._teardown(DisconnectReason.KILLED, exc)

        # A fatal socket error kills us before sendto() returns
        if fut.done() or self.state is not ClientState.LOGGING_IN:
            return fut

        self._login_timer = loop.call_later(
            self.options.login_timeout,
            self._on_login_timeout,
        )
        return fut

    async def command(self, command: str) -> str:
        """Sends a command to the server and waits for its response.

        The command is re-sent every :py:attr:`ConnectionOptions.command_interval`
        seconds until a response arrives or
        :py:attr:`ConnectionOptions.command_attempts` is reached.

        :param command: The command string to send.
        :returns: The server's full response.
        :raises NotConnected: The server has not accepted our login.
        :raises SequenceExhausted: 256 commands are already waiting for responses.
        :raises CommandTimeout: The server failed to respond to all attempts.
        :raises ConnectionLost: The connection was torn down before a response.

        """
        packet = self.protocol.send_command(command)
        sequence = packet.sequence
        assert sequence is not None
        self._last_command = time.monotonic()

        fut = self.transport.send(self, packet)
        if fut.done() and sequence not in self._pending:
            # Rejected before being stored, so nothing else frees the sequence
            self.protocol.invalidate_command(sequence)

        try:
            result = await fut
        except BaseException:
            # After a teardown the sequence may already belong to a newer command
            pending = self._pending.get(sequence)
            if pending is not None and pending.future is fut:
                self._discard(sequence)
            raise

        assert result.response is not None
        return result.response

    def kill(self, exc: BaseException | None = None) -> None:
        """Immediately disconnects from the server.

        Every timer is cancelled and every outstanding future fails with
        the given exception, or :py:exc:`ConnectionLost` if none is given.
        This method is idempotent.

        """
        if (
            self.state is ClientState.DISCONNECTED
            and self._login_future is None
            and not self._pending
        ):
            self._cancel_timers()
            return

        if exc is None:
            exc = ConnectionLost("connection was killed")
        self._teardown(DisconnectReason.KILLED, exc)

    # Transport hooks

    def store(self, pending: PendingCommand) -> None:
        """Registers a command handed to the socket so that its response
        can be matched by sequence. Called by the transport.

        :raises ValueError:
            The packet is not a COMMAND, or its sequence was never
            allocated or is already waiting for a response.

        """
        if pending.packet.type is not PacketType.COMMAND:
            raise ValueError(f"{pending.packet.type.name} packets do not receive responses")

        sequence = pending.sequence
        if sequence in self._pending:
            raise ValueError(f"command sequence {sequence} is already waiting for a response")
        elif not self.protocol.is_pending(sequence):
            raise ValueError(f"command sequence {sequence} was not allocated")

        self._pending[sequence] = pending
        self._arm_command_timer(pending)

    def receive(self, packet: Packet) -> bool:
        """Handles a valid packet routed to us by the transport.

        :returns: ``True`` if the packet completed a pending command.

        """
        self.last_activity_at = time.monotonic()

        try:
            self.protocol.receive_packet(packet)
        except InvalidStateError as e:
            log.debug(f"{self.id}: ignoring {packet.type.name} packet: {e}")
            self.dispatch("debug", f"ignored {packet.type.name} packet: {e}")
            return False

        if self.state is ClientState.CONNECTED:
            self._arm_liveness_timer()

        # Any fragment of a response counts as progress for its command
        if packet.type is PacketType.COMMAND and packet.sequence in self._pending:
            self._arm_command_timer(self._pending[packet.sequence])

        resolved = False
        for event in self.protocol.events_received():
            resolved = self._handle_event(event) or resolved
        for ack in self.protocol.packets_to_send():
            self._send(ack)

        return resolved

    # Event handling

    def _handle_event(self, event: ClientEvent) -> bool:
        if isinstance(event, ClientAuthEvent):
            self._handle_auth(event)
            return False

        elif isinstance(event, ClientCommandEvent):
            pending = self._pending.pop(event.sequence, None)
            resolved = pending is not None
            if pending is not None:
                pending.cancel_timer()
                if not pending.future.done():
                    pending.future.set_result(
                        SendResult(
                            sent=pending.packet,
                            received=event.packet,
                            bytes=pending.bytes,
                            connection=self,
                            response=event.message,
                        )
                    )

            self.dispatch("command", event.message, resolved, event.packet)
            return resolved

        elif isinstance(event, ClientMessageEvent):
            self.dispatch("message", event.message, event.packet)
            return False

        raise RuntimeError(f"unhandled event type {type(event)}")

    def _handle_auth(self, event: ClientAuthEvent) -> None:
        if self._login_timer is not None:
            self._login_timer.cancel()
            self._login_timer = None

        if not event.success:
            log.warning(f"{self.id}: password authentication was denied")
            self._teardown(
                DisconnectReason.AUTH_FAILED,
                AuthFailed("invalid password provided"),
            )
            return

        log.info(f"{self.id}: successfully logged in")
        fut, self._login_future = self._login_future, None
        self._last_command = time.monotonic()
        self._arm_liveness_timer()
        self._schedule_keep_alive()

        if fut is not None and not fut.done():
            fut.set_result(None)
        self.dispatch("connected")

    # Timers

    def _arm_command_timer(self, pending: PendingCommand) -> None:
        pending.cancel_timer()
        loop = asyncio.get_running_loop()
        pending.timer = loop.call_later(
            self.options.command_interval,
            self._on_command_timeout,
            pending.sequence,
        )

    def _on_command_timeout(self, sequence: int) -> None:
        pending = self._pending.get(sequence)
        if pending is None:
            return

        pending.timer = None
        if pending.attempts >= self.options.command_attempts:
            self._discard(sequence)
            log.warning(
                f"{self.id}: could not send command after {pending.attempts} "
                f"attempts (sequence {sequence})"
            )
            if not pending.future.done():
                pending.future.set_exception(
                    CommandTimeout(f"failed to send command: {pending.packet.text!r}")
                )
            return

        pending.attempts += 1
        log.debug(f"{self.id}: resending command (sequence {sequence}, attempt {pending.attempts})")
        self.dispatch("debug", f"resending command {sequence}, attempt {pending.attempts}")

        self._send(pending.packet)
        if self._pending.get(sequence) is pending:
            self._arm_command_timer(pending)

    def _on_login_timeout(self) -> None:
        self._login_timer = None
        if self.state is not ClientState.LOGGING_IN:
            return

        log.warning(f"{self.id}: no login response after {self.options.login_timeout} seconds")
        self._teardown(
            DisconnectReason.LOGIN_TIMEOUT,
            LoginTimeout("server did not respond to our login"),
        )

    def _arm_liveness_timer(self) -> None:
        if self._liveness_timer is not None:
            self._liveness_timer.cancel()

        loop = asyncio.get_running_loop()
        self._liveness_timer = loop.call_later(
            self.options.liveness_timeout,
            self._on_liveness_timeout,
        )

    def _on_liveness_timeout(self) -> None:
        self._liveness_timer = None
        log.warning(
            f"{self.id}: server has timed out "
            f"(last received {self.options.liveness_timeout:.0f} seconds ago)"
        )
        self._teardown(
            DisconnectReason.TIMEOUT,
            ConnectionLost("server stopped responding"),
        )

    def _schedule_keep_alive(self) -> None:
        interval = self.options.keep_alive_interval
        if interval is None:
            return

        if self._keep_alive_timer is not None:
            self._keep_alive_timer.cancel()

        delay = max(0.0, self._last_command + interval - time.monotonic())
        loop = asyncio.get_running_loop()
        self._keep_alive_timer = loop.call_later(delay, self._on_keep_alive)

    def _on_keep_alive(self) -> None:
        self._keep_alive_timer = None
        if self.state is not ClientState.CONNECTED:
            return

        assert self.options.keep_alive_interval is not None
        now = time.monotonic()
        if now - self._last_command >= self.options.keep_alive_interval:
            log.debug(f"{self.id}: sending keep alive packet")
            self._last_command = now
            task = asyncio.create_task(
                self._send_keep_alive(),
                name=f"berconudp-keep-alive-{self.id}",
            )
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

        self._schedule_keep_alive()

    async def _send_keep_alive(self) -> None:
        try:
            await self.command("")
        except RCONError as e:
            log.debug(f"{self.id}: keep alive failed: {e!r}")
            self.dispatch("debug", f"keep alive failed: {e!r}")

    def _cancel_timers(self) -> None:
        for handle in (self._login_timer, self._liveness_timer, self._keep_alive_timer):
            if handle is not None:
                handle.cancel()

        self._login_timer = None
        self._liveness_timer = None
        self._keep_alive_timer = None

    # Internal helpers

    def _discard(self, sequence: int) -> None:
        pending = self._pending.pop(sequence, None)
        if pending is not None:
            pending.cancel_timer()
        self.protocol.invalidate_command(sequence)

    def _send(self, packet: Packet) -> BaseException | None:
        """Sends a packet without waiting for a response.

        :returns: The exception raised by the transport, if any.

        """
        return consume_exception(self.transport.send(self, packet, track=False))

    def _teardown(self, reason: DisconnectReason, exc: BaseException) -> None:
        log.info(f"{self.id}: disconnected ({reason.value})")
        self.protocol.reset()
        self._cancel_timers()

        pending, self._pending = self._pending, {}
        for command in pending.values():
            command.cancel_timer()
            if not command.future.done():
                command.future.set_exception(exc)

        fut, self._login_future = self._login_future, None
        if fut is not None and not fut.done():
            fut.set_exception(exc)

        self.dispatch("disconnected", reason)
