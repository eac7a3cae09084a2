import asyncio


class RCONError(Exception):
    """The base class for RCON errors."""


class DecodeError(RCONError, ValueError):
    """Raised when a datagram is not a well-formed BattlEye packet."""


class InvalidPacket(RCONError, ValueError):
    """Raised when a packet's checksum does not match its contents."""


ChecksumInvalid = InvalidPacket


class TransportError(RCONError):
    """Raised when the transport cannot send or receive datagrams."""


class UnknownConnection(TransportError):
    """Raised when a datagram arrives from an address without a connection."""

    def __init__(self, id: str, ip: str, port: int):
        self.id = id
        self.ip = ip
        self.port = port
        super().__init__(f"received datagram from unknown address {id}")


class ConnectionExists(TransportError):
    """Raised when a connection for the same address is already registered."""

    def __init__(self, id: str):
        self.id = id
        super().__init__(f"a connection to {id} already exists")


class LoginFailure(RCONError):
    """Raised when the client could not log into the RCON server."""


class AuthFailed(LoginFailure):
    """Raised when the password given to the RCON server was incorrect."""


class LoginTimeout(LoginFailure, asyncio.TimeoutError):
    """Raised when the RCON server did not respond to our login attempt."""


class RCONCommandError(RCONError):
    """Raised when an issue occurs during execution of an RCON command."""


class CommandTimeout(RCONCommandError, asyncio.TimeoutError):
    """Raised when the server failed to respond to every command attempt."""


class ConnectionLost(RCONError):
    """Raised for outstanding work when a connection is torn down."""
