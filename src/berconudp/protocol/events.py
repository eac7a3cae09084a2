"""Provides classes to be used as facades for :py:class:`Packet` objects."""
from dataclasses import dataclass

from .packet import Packet


class ClientEvent:
    """The base class for events produced by :py:class:`RCONClientProtocol`."""


@dataclass
class ClientAuthEvent(ClientEvent):
    """Indicates if an authentication request was successful."""

    success: bool
    """``True`` if the client was authenticated, ``False`` otherwise."""
    packet: Packet
    """The LOGIN response that was received."""


@dataclass
class ClientCommandEvent(ClientEvent):
    """Represents the full response to a given command."""

    sequence: int
    """The sequence number of the command this is responding to."""
    message: str
    """The command's full response from the server."""
    packet: Packet
    """The packet that completed the response."""


@dataclass
class ClientMessageEvent(ClientEvent):
    """Represents a message pushed by the server.

    The protocol automatically generates an acknowledgement packet
    so nothing else needs to be done here.

    """

    sequence: int
    """The sequence number of the message."""
    message: str
    """The message given by the server."""
    packet: Packet
    """The MESSAGE packet that was received."""
