from .dispatch import (
    ConnectionDispatcher as ConnectionDispatcher,
    EventDispatcher as EventDispatcher,
    TransportDispatcher as TransportDispatcher,
)
from .errors import (
    AuthFailed as AuthFailed,
    ChecksumInvalid as ChecksumInvalid,
    CommandTimeout as CommandTimeout,
    ConnectionExists as ConnectionExists,
    ConnectionLost as ConnectionLost,
    DecodeError as DecodeError,
    InvalidPacket as InvalidPacket,
    LoginFailure as LoginFailure,
    LoginTimeout as LoginTimeout,
    RCONCommandError as RCONCommandError,
    RCONError as RCONError,
    TransportError as TransportError,
    UnknownConnection as UnknownConnection,
)
from .io import (
    Connection as Connection,
    ConnectionDetails as ConnectionDetails,
    ConnectionOptions as ConnectionOptions,
    DisconnectReason as DisconnectReason,
    SendResult as SendResult,
    Transport as Transport,
)
from .protocol import (
    AlreadyConnected as AlreadyConnected,
    AlreadyConnecting as AlreadyConnecting,
    Check as Check,
    ClientState as ClientState,
    InvalidStateError as InvalidStateError,
    NonceCheck as NonceCheck,
    NotConnected as NotConnected,
    Packet as Packet,
    PacketType as PacketType,
    RCONClientProtocol as RCONClientProtocol,
    SequenceExhausted as SequenceExhausted,
)


def _get_version() -> str:
    from importlib.metadata import PackageNotFoundError, version

    try:
        return version("bercon-udp")
    except PackageNotFoundError:
        return "0.0.0"


__version__ = _get_version()
