import enum
import logging

from ..errors import InvalidPacket
from .check import Check, NonceCheck
from .errors import (
    AlreadyConnected,
    AlreadyConnecting,
    InvalidStateError,
    NotConnected,
    SequenceExhausted,
)
from .events import (
    ClientAuthEvent,
    ClientCommandEvent,
    ClientEvent,
    ClientMessageEvent,
)
from .packet import Packet, PacketType, decode

log = logging.getLogger(__name__)


class ClientState(enum.Enum):
    """Defines the current state of the protocol."""

    DISCONNECTED = enum.auto()
    """The client has not started logging in, or its session has ended."""
    LOGGING_IN = enum.auto()
    """The client has sent its password and is waiting for a response."""
    CONNECTED = enum.auto()
    """The client is logged in and able to send/receive messages."""


class RCONClientProtocol:
    """A Sans-IO implementation of the client-side portion of the protocol.

    :param message_check:
        A :py:class:`Check` that determines if a :py:class:`ClientMessageEvent`
        should be produced when a MESSAGE packet is received.
        If ``None``, defaults to :py:class:`NonceCheck(5)`.

    """

    state: ClientState
    """The current state of the protocol."""

    _events: list[ClientEvent]
    """A list of events waiting to be collected."""
    _command_queue: dict[int, dict[int, Packet]]
    """A mapping of command sequences to mappings of response indexes to their packets.

    When a sequence is allocated, an entry is added here to store the
    responses. Once every expected packet is received, they are joined
    into a single message and converted into a :py:class:`ClientCommandEvent`.

    """
    _next_sequence: int
    _to_send: list[Packet]

    def __init__(self, *, message_check: Check | None = None) -> None:
        if message_check is None:
            message_check = NonceCheck(5)

        self.message_check = message_check
        self.reset()

    def __repr__(self) -> str:
        return "<{} {}, {} pending command(s), {} event(s), {} packet(s) to send>".format(
            type(self).__name__,
            self.state.name.lower().replace("_", " "),
            len(self._command_queue),
            len(self._events),
            len(self._to_send),
        )

    def receive_datagram(self, data: bytes) -> Packet:
        """Parses and handles a datagram received from the server.

        :raises DecodeError: A malformed datagram was provided.
        :raises InvalidPacket: The datagram's checksum was incorrect.
        :raises InvalidStateError:
            The given packet cannot be handled in the current state.

        """
        packet = decode(data)
        self.receive_packet(packet)
        return packet

    def receive_packet(self, packet: Packet) -> None:
        """Handles a packet already decoded from the server.

        :raises InvalidPacket: The packet's checksum was incorrect.
        :raises InvalidStateError:
            The given packet cannot be handled in the current state.

        """
        if not packet.valid:
            raise InvalidPacket(f"CRC32 checksum does not match the given {packet}")

        if packet.type is PacketType.LOGIN:
            self._handle_login_packet(packet)
        elif packet.type is PacketType.COMMAND:
            self._handle_command_packet(packet)
        elif packet.type is PacketType.MESSAGE:
            self._handle_message_packet(packet)
        else:  # pragma: no cover
            raise RuntimeError(f"unhandled PacketType enum: {packet.type}")

    def events_received(self) -> list[ClientEvent]:
        """Retrieves all events that have been parsed since this was last called."""
        current_events = self._events
        self._events = []
        return current_events

    def packets_to_send(self) -> list[Packet]:
        """Returns a list of packets that should be sent to the server."""
        current_packets = self._to_send
        self._to_send = []
        return current_packets

    # Utility methods

    def authenticate(self, password: str) -> Packet:
        """Begins logging in and returns the packet to send to the server.

        :raises AlreadyConnecting: A login is already in progress.
        :raises AlreadyConnected: The client is already logged in.

        """
        expected = (ClientState.DISCONNECTED,)
        if self.state is ClientState.LOGGING_IN:
            raise AlreadyConnecting(self.state, expected)
        elif self.state is ClientState.CONNECTED:
            raise AlreadyConnected(self.state, expected)

        packet = Packet.client_login(password)
        self.state = ClientState.LOGGING_IN
        return packet

    def allocate_sequence(self) -> int:
        """Reserves the next free sequence number for a command.

        Sequences are handed out in increasing order, wrapping around
        after 255. Sequences still waiting for a response are skipped.

        :raises NotConnected: The client is not logged in.
        :raises SequenceExhausted: All 256 sequences are in use.

        """
        self._assert_connected()

        for _ in range(256):
            sequence = self._next_sequence
            self._next_sequence = (sequence + 1) % 256
            if sequence not in self._command_queue:
                self._command_queue[sequence] = {}
                return sequence

        raise SequenceExhausted("all 256 command sequences are waiting for a response")

    def send_command(self, command: str) -> Packet:
        """Returns a packet for sending a command.

        When retrying a command, the same packet should be re-sent
        to avoid executing the command multiple times.

        :raises NotConnected: The client is not logged in.
        :raises SequenceExhausted: All 256 sequences are in use.

        """
        sequence = self.allocate_sequence()
        return Packet.client_command(sequence, command)

    def invalidate_command(self, sequence: int) -> None:
        """Discards any responses received for a given command and frees
        its sequence number.

        If the command sequence was not allocated, this is a no-op.

        """
        self._command_queue.pop(sequence, None)

    def is_pending(self, sequence: int) -> bool:
        """Indicates if a command sequence is still waiting for its response."""
        return sequence in self._command_queue

    def reset(self) -> None:
        """Resets the protocol to the disconnected state, discarding
        every pending command and partial response.
        """
        self._events = []
        self._command_queue = {}
        self._next_sequence = 0
        self.state = ClientState.DISCONNECTED
        self._to_send = []

        self.message_check.reset()

    def _assert_connected(self) -> None:
        if self.state is not ClientState.CONNECTED:
            raise NotConnected(self.state, (ClientState.CONNECTED,))

    def _assert_state(self, *states: ClientState) -> None:
        if self.state not in states:
            raise InvalidStateError(self.state, states)

    def _handle_login_packet(self, packet: Packet) -> None:
        self._assert_state(ClientState.LOGGING_IN)

        success = bool(packet.login_success)
        if success:
            self.state = ClientState.CONNECTED
        else:
            self.state = ClientState.DISCONNECTED

        self._events.append(ClientAuthEvent(success, packet))

    def _handle_command_packet(self, packet: Packet) -> None:
        self._assert_state(ClientState.CONNECTED)
        assert packet.sequence is not None

        rest = self._command_queue.get(packet.sequence)
        if rest is None:
            log.debug(f"ignoring unexpected command response (sequence {packet.sequence})")
            return
        elif packet.index in rest:
            log.debug(
                f"ignoring repeated command response index {packet.index} "
                f"(sequence {packet.sequence})"
            )
            return
        elif rest and packet.total != (expected_total := next(iter(rest.values())).total):
            log.debug(
                f"ignoring command response total {packet.total} for index "
                f"{packet.index}, expected {expected_total} (sequence {packet.sequence})"
            )
            return

        # Packets may arrive in any order, only their indexes matter
        rest[packet.index] = packet
        if len(rest) < packet.total:
            return

        self.invalidate_command(packet.sequence)

        message_bytes = b"".join(rest[i].payload for i in range(packet.total))
        message_str = message_bytes.decode("utf-8", errors="replace")
        self._events.append(ClientCommandEvent(packet.sequence, message_str, packet))

    def _handle_message_packet(self, packet: Packet) -> None:
        self._assert_state(ClientState.CONNECTED)
        assert packet.sequence is not None

        # Repeated messages must still be acknowledged
        if self.message_check(packet):
            self._events.append(
                ClientMessageEvent(packet.sequence, packet.text, packet)
            )

        self._to_send.append(Packet.client_message(packet.sequence))
