"""Transport interface.

The ordering service only ever talks to a *stream*: a duplex channel that
carries protocol messages in both directions between one client and the
service. Broadcast and Deliver are written against this contract, so the
same state machines run over an in-memory pipe or over ZeroMQ.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional

from ..protocol.message import Message


# Transport agnostic exceptions

class TransportError(Exception):
    """Base class for all transport-layer errors."""


class TransportTimeout(TransportError):
    """A receive did not complete in the allotted time."""


class TransportConnectionError(TransportError):
    """The stream is closed, or the connection underneath it failed."""


class TransportPortError(TransportError):
    """No suitable port could be bound or connected."""


class Stream(ABC):
    """Minimal contract for one bidirectional message stream."""

    @abstractmethod
    def send(self, msg: Message) -> None:
        """Send a protocol Message to the peer."""

    @abstractmethod
    def recv(self, timeout: Optional[float] = None) -> Optional[Message]:
        """Receive the next protocol Message.

        Returns None once the peer has closed the stream. Raises
        TransportTimeout if *timeout* seconds pass first, and DecodeError
        if the peer sent something that is not the expected message.
        """

    @abstractmethod
    def close(self) -> None:
        """Close the stream; recv() at either end returns None thereafter."""

    @property
    def closed(self) -> bool:
        """Whether this end of the stream has been closed."""
        return False
