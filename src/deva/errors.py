"""Exceptions raised by deva agents.

Offline and invalid-method outcomes are not exceptions: they come back as
ordinary return values. Only true failures are raised.
"""

from __future__ import annotations

from .states import NOTEXT


class DevaError(Exception):
    """Base class for deva errors."""


class NoTextError(DevaError):
    """A question was asked with empty text."""

    def __init__(self, message: str = NOTEXT):
        super().__init__(message)


class MissingPacketError(DevaError):
    """A packet-driven utility was called without a packet."""

    def __init__(self, message: str = "NO PACKET"):
        super().__init__(message)


class MissingProfileError(DevaError):
    """The agent has no profile, so it cannot be addressed on the bus."""


class AskTimeoutError(DevaError):
    """A remote agent did not answer an ask in time."""

    def __init__(self, key: str, packet_id: str, timeout_sec: float):
        super().__init__(f"No answer from {key} for {packet_id} after {timeout_sec:.1f}s")
        self.key = key
        self.packet_id = packet_id
        self.timeout_sec = timeout_sec


__all__ = [
    "DevaError",
    "NoTextError",
    "MissingPacketError",
    "MissingProfileError",
    "AskTimeoutError",
]
