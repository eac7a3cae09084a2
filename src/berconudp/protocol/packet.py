"""
Defines the wire format of the packets that can be sent and received
between the client and server.

Every packet starts with the same header::

    "B" "E" <CRC32, 4 bytes little-endian> 0xFF <type>

where the checksum covers every byte starting from the ``0xFF`` marker.
COMMAND and MESSAGE packets follow the header with a one byte sequence
number. Server responses to commands that do not fit in a single datagram
additionally carry a sub-header of ``0x00 <total> <index>`` before their
chunk of the response.
"""
import binascii
import dataclasses
import enum
from dataclasses import dataclass, field

from ..errors import DecodeError

__all__ = (
    "HEADER",
    "MAX_PACKET_SIZE",
    "PacketType",
    "Packet",
    "compute_checksum",
    "decode",
    "encode",
)

HEADER = b"BE"
MAX_PACKET_SIZE = 65507


class PacketType(enum.Enum):
    """The type of a packet.

    The :py:attr:`value` of this enum is the type byte sent on the wire.

    """

    LOGIN = 0x00
    """Used for the login process initiated by the client."""

    COMMAND = 0x01
    """Used for command/response exchanges between the client and server."""

    MESSAGE = 0x02
    """
    Used for messages pushed by the server and acknowledgements
    by the client.
    """


def compute_checksum(body: bytes) -> int:
    """Returns the CRC32 checksum of everything after the checksum field."""
    return binascii.crc32(body)


def _encode_body(
    ptype: PacketType,
    sequence: int | None,
    payload: bytes,
    total: int,
    index: int,
) -> bytes:
    buffer = bytearray((0xFF, ptype.value))

    if ptype is PacketType.LOGIN:
        if sequence is not None:
            raise ValueError("LOGIN packets cannot have a sequence")
    elif sequence is None:
        raise ValueError(f"{ptype.name} packets require a sequence")
    elif sequence not in range(256):
        raise ValueError(f"sequence must be within 0-255, not {sequence!r}")
    else:
        buffer.append(sequence)

    if total not in range(1, 256):
        raise ValueError(f"total must be within 1-255, not {total!r}")
    elif index not in range(total):
        raise ValueError(f"index must be below {total}, not {index!r}")
    elif total != 1:
        if ptype is not PacketType.COMMAND:
            raise ValueError(f"{ptype.name} packets cannot be split")
        buffer.extend((0, total, index))

    buffer.extend(payload)
    return bytes(buffer)


def encode(
    ptype: PacketType,
    sequence: int | None = None,
    payload: bytes = b"",
    *,
    total: int = 1,
    index: int = 0,
) -> bytes:
    """Encodes exactly one packet into its wire format.

    Splitting a payload across multiple packets is the caller's job;
    the ``total`` and ``index`` of the fragment being encoded can be
    passed for COMMAND packets.

    :raises ValueError:
        The sequence is missing or out of range, the fragment
        sub-header is invalid, or the packet is too large for a datagram.

    """
    body = _encode_body(ptype, sequence, payload, total, index)
    data = HEADER + compute_checksum(body).to_bytes(4, "little") + body

    over_size = len(data) - MAX_PACKET_SIZE
    if over_size > 0:
        raise ValueError(f"max packet size exceeded by {over_size} bytes")

    return data


def decode(data: bytes, *, from_client: bool = False) -> "Packet":
    """Parses a datagram into a :py:class:`Packet`.

    A checksum mismatch does not raise; the packet is returned with
    :py:attr:`Packet.valid` set to ``False`` instead.

    :param data: The datagram to parse.
    :param from_client:
        Whether the datagram was sent by a client. This is required
        to disambiguate LOGIN and COMMAND packets.
    :raises DecodeError:
        The datagram is truncated, has a malformed header,
        or contains content that cannot occur in a valid packet.

    """
    if len(data) < 8:
        raise DecodeError(f"expected at least 8 bytes, received {len(data)}")
    elif data[:2] != HEADER:
        raise DecodeError("expected BE as start of header")
    elif data[6] != 0xFF:
        raise DecodeError("expected 0xFF at end of header")

    try:
        ptype = PacketType(data[7])
    except ValueError:
        raise DecodeError(f"unknown packet type: {data[7]}") from None

    checksum = int.from_bytes(data[2:6], "little")
    valid = checksum == compute_checksum(data[6:])

    if ptype is PacketType.LOGIN:
        payload = bytes(data[8:])
        if valid and from_client and b"\x00" in payload:
            raise DecodeError("login password cannot have a null byte")
        elif valid and not from_client and payload not in (b"\x00", b"\x01"):
            raise DecodeError("login response must be a single 0 or 1 byte")
        return Packet(ptype, None, payload, checksum=checksum, valid=valid)

    if len(data) < 9:
        raise DecodeError(f"{ptype.name} packet is missing its sequence")

    sequence = data[8]
    total, index, payload = 1, 0, bytes(data[9:])

    if ptype is PacketType.COMMAND and not from_client and payload[:1] == b"\x00":
        if len(data) < 12:
            raise DecodeError("multi-packet header is truncated")
        total, index = data[10], data[11]
        payload = bytes(data[12:])
        if valid and index >= total:
            raise DecodeError(
                f"index ({index}) cannot equal or exceed total ({total})"
            )

    return Packet(ptype, sequence, payload, total, index, checksum, valid)


@dataclass(frozen=True)
class Packet:
    """A single datagram sent between the BattlEye RCON server and client.

    Packets constructed locally always have their :py:attr:`checksum`
    computed from their contents. Packets parsed by :py:func:`decode()`
    carry the checksum that was transmitted and may be :py:attr:`valid`
    or not.

    A COMMAND packet may be created without a sequence, in which case
    one is assigned right before it is sent.

    """

    type: PacketType
    """The packet's type defined in the protocol."""
    sequence: int | None = None
    """The sequence number of a COMMAND or MESSAGE packet."""
    payload: bytes = b""
    """The data following the header, excluding any multi-packet sub-header."""
    total: int = 1
    """The number of packets a COMMAND response was split into."""
    index: int = 0
    """The zero-based index of this packet in a COMMAND response."""
    checksum: int | None = field(default=None, compare=False)
    """The CRC32 checksum included in the header."""
    valid: bool = field(default=True, compare=False)
    """Indicates if the checksum matched the packet's contents."""

    def __post_init__(self):
        if self.sequence is not None and self.sequence not in range(256):
            raise ValueError(f"sequence must be within 0-255, not {self.sequence!r}")
        elif self.checksum is not None:
            return
        elif self.type is not PacketType.LOGIN and self.sequence is None:
            return

        body = _encode_body(
            self.type, self.sequence, self.payload, self.total, self.index
        )
        object.__setattr__(self, "checksum", compute_checksum(body))

    @property
    def login_success(self) -> bool | None:
        """Indicates if the server authenticated the client.

        This is only meaningful for LOGIN responses sent by the server.

        """
        if self.type is PacketType.LOGIN and len(self.payload) == 1:
            return bool(self.payload[0])
        return None

    @property
    def text(self) -> str:
        """The payload decoded as UTF-8."""
        return self.payload.decode("utf-8", errors="replace")

    def to_bytes(self) -> bytes:
        """Serializes the packet into its wire format.

        :raises ValueError: The packet cannot be encoded as-is.

        """
        return encode(
            self.type,
            self.sequence,
            self.payload,
            total=self.total,
            index=self.index,
        )

    def with_sequence(self, sequence: int) -> "Packet":
        """Returns a copy of this packet with a different sequence number."""
        return dataclasses.replace(self, sequence=sequence, checksum=None, valid=True)

    # Constructors for each packet in the protocol

    @classmethod
    def client_login(cls, password: str) -> "Packet":
        """Creates the packet used to log in a client."""
        return cls(PacketType.LOGIN, None, password.encode())

    @classmethod
    def client_command(cls, sequence: int | None, command: str) -> "Packet":
        """Creates the packet sent by the client issuing a command."""
        return cls(PacketType.COMMAND, sequence, command.encode())

    @classmethod
    def client_message(cls, sequence: int) -> "Packet":
        """Creates the packet acknowledging a given server message."""
        return cls(PacketType.MESSAGE, sequence)

    @classmethod
    def server_login(cls, success: bool) -> "Packet":
        """Creates the packet indicating if a login was successful."""
        return cls(PacketType.LOGIN, None, b"\x01" if success else b"\x00")

    @classmethod
    def server_command(
        cls,
        sequence: int,
        response: bytes,
        *,
        total: int = 1,
        index: int = 0,
    ) -> "Packet":
        """Creates one packet of the server's response to a command."""
        return cls(PacketType.COMMAND, sequence, response, total, index)

    @classmethod
    def server_message(cls, sequence: int, message: str) -> "Packet":
        """Creates the packet sharing a message with the client."""
        return cls(PacketType.MESSAGE, sequence, message.encode())
