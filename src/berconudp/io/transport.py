from __future__ import annotations

import asyncio
import functools
import logging

from ..dispatch import ConnectionDispatcher, TransportDispatcher
from ..errors import (
    ConnectionExists,
    DecodeError,
    InvalidPacket,
    RCONError,
    TransportError,
    UnknownConnection,
)
from ..protocol import InvalidStateError, Packet, PacketType, decode
from ..utils import connection_id, consume_exception
from .connection import (
    Connection,
    ConnectionDetails,
    ConnectionOptions,
    PendingCommand,
    SendResult,
)

log = logging.getLogger(__name__)

# Reported for a single remote on some platforms, e.g. ICMP port unreachable
NON_FATAL_ERRORS = (ConnectionRefusedError, ConnectionResetError)


class Transport(asyncio.DatagramProtocol):
    """Owns one UDP socket shared by any number of :py:class:`Connection`
    objects, one per remote server.

    Example usage::

        async with Transport() as transport:
            details = ConnectionDetails("127.0.0.1", 2302, "password")
            connection = transport.create_connection(details, auto_connect=False)
            await connection.connect()
            print(await connection.command("players"))

    :param host: The local address to bind to.
    :param port: The local port to bind to, or 0 for any port.
    :param dispatch:
        The dispatcher for transport-level events.
        Defaults to an instance of :py:class:`TransportDispatcher`.

    """

    _connections: dict[str, Connection]
    _deferred: list[Connection]
    """Connections waiting for the socket to be bound before logging in."""
    _transport: asyncio.DatagramTransport | None

    def __init__(
        self,
        *,
        host: str = "0.0.0.0",
        port: int = 0,
        dispatch: TransportDispatcher | None = None,
    ):
        if dispatch is None:
            dispatch = TransportDispatcher()

        self.host = host
        self.port = port
        self.dispatch = dispatch

        self._connections = {}
        self._deferred = []
        self._transport = None
        self._closed = False
        self._closed_event = asyncio.Event()
        self._sending = False
        self._send_error: OSError | None = None

    def __repr__(self) -> str:
        return "<{} {}, {} connection(s)>".format(
            type(self).__name__,
            "listening" if self.listening else "closed" if self._closed else "unbound",
            len(self._connections),
        )

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.close()
        await self.wait_closed()

    @property
    def connections(self) -> list[Connection]:
        """A list of every registered connection."""
        return list(self._connections.values())

    @property
    def listening(self) -> bool:
        """Indicates if the socket is bound and open."""
        return self._transport is not None and not self._transport.is_closing()

    @property
    def local_address(self) -> tuple | None:
        """The address the socket is bound to, if it is listening."""
        if self._transport is None:
            return None
        return self._transport.get_extra_info("sockname")

    async def start(self) -> None:
        """Binds the socket.

        :raises OSError: The socket could not be bound.
        :raises RuntimeError: The transport was already started or closed.

        """
        if self._closed:
            raise RuntimeError("transport has been closed")
        elif self._transport is not None:
            raise RuntimeError("transport is already listening")

        loop = asyncio.get_running_loop()
        try:
            await loop.create_datagram_endpoint(
                lambda: self,  # type: ignore
                local_addr=(self.host, self.port),
            )
        except OSError as e:
            log.error(f"could not bind to {self.host}:{self.port}", exc_info=e)
            self.dispatch("error", e)
            self.close(e)
            raise

    def close(self, exc: BaseException | None = None) -> None:
        """Kills every connection and closes the socket.

        This method is idempotent.

        :param exc:
            The exception to fail outstanding futures with.
            Defaults to :py:exc:`ConnectionLost`.

        """
        if self._closed:
            return

        self._closed = True
        log.debug("closing transport")

        connections, self._connections = self._connections, {}
        self._deferred.clear()
        for connection in connections.values():
            connection.kill(exc)

        if self._transport is not None:
            self._transport.close()
        else:
            self._closed_event.set()

    async def wait_closed(self) -> None:
        """Waits until the socket has finished closing."""
        await self._closed_event.wait()

    # Connection registry

    def get_connection(self, ip: str, port: int) -> Connection | None:
        """Returns the connection registered for an address, if any."""
        return self._connections.get(connection_id(ip, port))

    def create_connection(
        self,
        details: ConnectionDetails,
        options: ConnectionOptions | None = None,
        auto_connect: bool = True,
        *,
        dispatch: ConnectionDispatcher | None = None,
    ) -> Connection:
        """Creates and registers a connection to a server.

        Logging in happens in the background and is reported through the
        connection's events; failures of an automatic login are also
        dispatched as ``error`` events.

        :param details: The server to connect to.
        :param options: The timings to use for the connection.
        :param auto_connect:
            If ``True``, :py:meth:`Connection.connect()` is called as soon
            as the socket is bound.
        :param dispatch: The dispatcher to use for the connection's events.
        :raises ConnectionExists:
            A connection to the same address is already registered.
        :raises TransportError: The transport has been closed.
        :raises ValueError: The address is not a numeric IP and valid port.

        """
        if self._closed:
            raise TransportError("transport has been closed")

        conn_id = connection_id(details.ip, details.port)
        if conn_id in self._connections:
            raise ConnectionExists(conn_id)

        connection = Connection(self, details, options, dispatch=dispatch)
        self._connections[conn_id] = connection
        log.debug(f"{conn_id}: registered connection")

        if not auto_connect:
            pass
        elif self.listening:
            self._auto_connect(connection)
        else:
            self._deferred.append(connection)

        return connection

    def remove_connection(
        self,
        connection: Connection,
        exc: BaseException | None = None,
    ) -> None:
        """Kills and deregisters a connection.

        :raises ValueError: The connection is not registered to this transport.

        """
        if self._connections.get(connection.id) is not connection:
            raise ValueError(f"{connection!r} is not registered to this transport")

        del self._connections[connection.id]
        if connection in self._deferred:
            self._deferred.remove(connection)

        connection.kill(exc)
        log.debug(f"{connection.id}: removed connection")

    def _auto_connect(self, connection: Connection) -> None:
        try:
            fut = connection.connect()
        except InvalidStateError as e:
            # The caller already started logging in themselves
            log.debug(f"{connection.id}: skipping automatic login: {e}")
            return

        fut.add_done_callback(functools.partial(self._on_auto_connect_done, connection))

    def _on_auto_connect_done(self, connection: Connection, fut: asyncio.Future) -> None:
        exc = consume_exception(fut)
        if exc is not None:
            log.info(f"{connection.id}: automatic login failed: {exc!r}")
            self.dispatch("error", exc)
            connection.dispatch("error", exc)

    # Sending

    def send(
        self,
        connection: Connection,
        packet: Packet,
        track: bool = True,
    ) -> asyncio.Future[SendResult]:
        """Sends a packet to a connection's server.

        COMMAND packets without a sequence are assigned the connection's
        next free sequence.

        :param connection: The connection to send to.
        :param packet: The packet to send.
        :param track:
            If ``True``, the returned future resolves once the connection
            receives the full response to this COMMAND packet. Otherwise
            it resolves as soon as the packet is handed to the socket.
        :returns:
            A future resolving to a :py:class:`SendResult`, or failing
            with the error that prevented the packet from being sent.

        """
        fut: asyncio.Future[SendResult] = asyncio.get_running_loop().create_future()

        if not packet.valid:
            fut.set_exception(InvalidPacket(f"refusing to send invalid {packet}"))
            return fut
        elif self._connections.get(connection.id) is not connection:
            fut.set_exception(UnknownConnection(connection.id, connection.ip, connection.port))
            return fut
        elif not self.listening:
            fut.set_exception(TransportError("transport is not listening"))
            return fut

        assigned = False
        if packet.type is PacketType.COMMAND and packet.sequence is None:
            try:
                packet = packet.with_sequence(connection.protocol.allocate_sequence())
            except RCONError as e:
                fut.set_exception(e)
                return fut
            assigned = True

        try:
            data = packet.to_bytes()
        except ValueError as e:
            fut.set_exception(e)
            self._release(connection, packet, assigned)
            return fut

        exc = self._sendto(data, connection.address)
        if exc is not None:
            fut.set_exception(exc)
            self._release(connection, packet, assigned)
            if isinstance(exc, NON_FATAL_ERRORS):
                log.warning(f"{connection.id}: could not send {packet.type.name} packet: {exc!r}")
                self.dispatch("error", exc)
            else:
                log.error(f"{connection.id}: could not send {packet.type.name} packet", exc_info=exc)
                self._fatal_error(exc)
            return fut

        nbytes = len(data)
        log.debug(f"{connection.id}: sent {packet.type.name} packet ({nbytes} bytes)")
        self.dispatch("sent", packet, data, nbytes, connection)

        if not track:
            self._release(connection, packet, assigned)
            fut.set_result(SendResult(packet, None, nbytes, connection))
            return fut

        try:
            connection.store(PendingCommand(packet, nbytes, fut))
        except ValueError as e:
            fut.set_exception(e)
            self._release(connection, packet, assigned)

        return fut

    def _sendto(self, data: bytes, addr: tuple[str, int]) -> OSError | None:
        """Hands a datagram to the socket.

        asyncio reports a failed ``sendto()`` through :py:meth:`error_received()`
        before returning, so the error is captured there while sending.

        :returns: The error that prevented the datagram from being sent, if any.

        """
        assert self._transport is not None
        self._sending = True
        try:
            self._transport.sendto(data, addr)
        except OSError as e:
            return e
        finally:
            self._sending = False

        exc, self._send_error = self._send_error, None
        return exc

    @staticmethod
    def _release(connection: Connection, packet: Packet, assigned: bool) -> None:
        # Sequences we assigned are only kept while a response is awaited
        if assigned and packet.sequence is not None:
            connection.protocol.invalidate_command(packet.sequence)

    def _fatal_error(self, exc: Exception) -> None:
        self.dispatch("error", exc)
        self.close(exc)

    # DatagramProtocol

    def connection_made(self, transport):
        """Starts any automatic logins waiting for the socket to be bound.

        .. seealso:: :py:meth:`asyncio.BaseProtocol.connection_made()`

        """
        self._transport = transport
        log.debug(f"listening on {transport.get_extra_info('sockname')}")
        self.dispatch("listening", transport)

        deferred, self._deferred = self._deferred, []
        for connection in deferred:
            self._auto_connect(connection)

    def connection_lost(self, exc: Exception | None):
        """Shuts down every connection if the socket closed unexpectedly.

        .. seealso:: :py:meth:`asyncio.BaseProtocol.connection_lost()`

        """
        if exc is not None:
            log.error("socket has closed with error", exc_info=exc)
            self._fatal_error(exc)
        else:
            log.debug("socket has closed")
            self.close()

        self._closed_event.set()

    def datagram_received(self, data: bytes, addr):
        """Routes a datagram to the connection registered for its address.

        .. seealso:: :py:meth:`asyncio.DatagramProtocol.datagram_received()`

        """
        ip, port = addr[0], addr[1]
        try:
            conn_id = connection_id(ip, port)
        except ValueError:
            conn_id = f"{ip}:{port}"

        connection = self._connections.get(conn_id)
        if connection is None:
            log.debug(f"ignoring datagram from unknown address: {addr}")
            self.dispatch("error", UnknownConnection(conn_id, ip, port))
            return

        try:
            packet = decode(data)
        except DecodeError as e:
            log.debug(f"{conn_id}: ignoring malformed datagram", exc_info=e)
            self.dispatch("error", e)
            connection.dispatch("error", e)
            return

        if not packet.valid:
            e = InvalidPacket(f"CRC32 checksum mismatch in {packet.type.name} packet")
            log.debug(f"{conn_id}: ignoring packet with invalid checksum")
            self.dispatch("error", e)
            connection.dispatch("error", e)
            return

        log.debug(f"{conn_id}: {packet.type.name} received")
        resolved = connection.receive(packet)

        self.dispatch("received", resolved, packet, data, connection, addr)
        connection.dispatch("received", resolved, packet, data, addr)

    def error_received(self, exc: OSError):
        """Handles an error reported by the socket.

        .. seealso:: :py:meth:`asyncio.DatagramProtocol.error_received()`

        """
        if self._sending:
            # Handled by send() once sendto() returns
            self._send_error = exc
            return

        if isinstance(exc, NON_FATAL_ERRORS):
            log.warning(f"remote reported an error: {exc!r}")
            self.dispatch("error", exc)
            return

        log.error("unusual error occurred on socket", exc_info=exc)
        self._fatal_error(exc)
