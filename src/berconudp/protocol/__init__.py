"""Contains a Sans-IO implementation of the BattlEye RCON client protocol.

Suggested reading about sansio:
    https://fractalideas.com/blog/sans-io-when-rubber-meets-road/
    https://sans-io.readthedocs.io/index.html

"""

from .check import Check as Check, NonceCheck as NonceCheck
from .client import ClientState as ClientState, RCONClientProtocol as RCONClientProtocol
from .errors import (
    AlreadyConnected as AlreadyConnected,
    AlreadyConnecting as AlreadyConnecting,
    InvalidStateError as InvalidStateError,
    NotConnected as NotConnected,
    SequenceExhausted as SequenceExhausted,
)
from .events import (
    ClientAuthEvent as ClientAuthEvent,
    ClientCommandEvent as ClientCommandEvent,
    ClientEvent as ClientEvent,
    ClientMessageEvent as ClientMessageEvent,
)
from .packet import (
    MAX_PACKET_SIZE as MAX_PACKET_SIZE,
    Packet as Packet,
    PacketType as PacketType,
    compute_checksum as compute_checksum,
    decode as decode,
    encode as encode,
)
