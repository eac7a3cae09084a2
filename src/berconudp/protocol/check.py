"""Filters deciding which server messages reach the caller.

The server resends a MESSAGE packet until it sees our acknowledgement,
so one message can arrive several times under the same sequence.
"""
from __future__ import annotations

import collections
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from .packet import Packet

__all__ = (
    "Check",
    "NonceCheck",
)


class Check(Protocol):
    """Decides whether a MESSAGE packet should produce an event."""

    def __call__(self, packet: Packet, /) -> bool: ...

    def reset(self) -> None:
        """Forgets every packet seen so far."""


class NonceCheck:
    """Accepts a MESSAGE packet only if its sequence is not among the
    last *max_size* distinct sequences accepted.

    :param max_size:
        How many recent sequences to remember. Sequences wrap around
        after 256 messages, so this must stay below 256 for a sequence
        to ever be accepted again.

    """

    def __init__(self, max_size: int = 5):
        if max_size not in range(1, 256):
            raise ValueError(f"max_size must be within 1-255, not {max_size!r}")

        self.max_size = max_size
        self._order: collections.deque[int] = collections.deque()
        self._seen: set[int] = set()

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {list(self._order)} (max {self.max_size})>"

    def __contains__(self, sequence: int) -> bool:
        return sequence in self._seen

    def __len__(self) -> int:
        return len(self._order)

    def __call__(self, packet: Packet) -> bool:
        sequence = packet.sequence
        if sequence is None:
            raise ValueError("cannot check a packet without a sequence")
        elif sequence in self._seen:
            return False

        if len(self._order) == self.max_size:
            self._seen.discard(self._order.popleft())

        self._order.append(sequence)
        self._seen.add(sequence)
        return True

    def reset(self) -> None:
        self._order.clear()
        self._seen.clear()
