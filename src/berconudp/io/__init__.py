"""Contains the asyncio implementation of connections and their shared transport."""

from .connection import (
    Connection as Connection,
    ConnectionDetails as ConnectionDetails,
    ConnectionOptions as ConnectionOptions,
    DisconnectReason as DisconnectReason,
    PendingCommand as PendingCommand,
    SendResult as SendResult,
)
from .transport import Transport as Transport
