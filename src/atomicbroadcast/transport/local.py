"""In-memory streams.

A pipe connects two Stream ends inside one process. Messages are passed
as objects, not bytes; this is the transport used to run the service
state machines without a network, and by in-process clients.
"""

from __future__ import annotations

import queue
import threading
from typing import Optional, Tuple

from ..protocol.message import Message
from .base import Stream, TransportConnectionError, TransportTimeout

_CLOSED = object()


class PipeStream(Stream):
    """One end of a pipe. Use :func:`pipe` to create a connected pair."""

    def __init__(self, inbox: queue.Queue, outbox: queue.Queue):
        self._inbox = inbox
        self._outbox = outbox
        self._closed = False
        self._peer_closed = False
        self._lock = threading.Lock()
        self.peer: Optional[PipeStream] = None

    def send(self, msg: Message) -> None:
        with self._lock:
            if self._closed:
                raise TransportConnectionError("send on a closed stream")
            if self.peer is not None and self.peer.closed:
                # Nobody is listening any more.
                return
            self._outbox.put(msg)

    def recv(self, timeout: Optional[float] = None) -> Optional[Message]:
        if self._peer_closed:
            return None

        try:
            msg = self._inbox.get(timeout=timeout)
        except queue.Empty:
            raise TransportTimeout(f"no message in {timeout:.2f} sec") from None

        if msg is _CLOSED:
            self._peer_closed = True
            return None

        return msg

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._outbox.put(_CLOSED)
            self._inbox.put(_CLOSED)

    @property
    def closed(self) -> bool:
        return self._closed


def pipe() -> Tuple[PipeStream, PipeStream]:
    """Return two connected stream ends, (client, server)."""

    forward = queue.Queue()
    backward = queue.Queue()

    client = PipeStream(inbox=backward, outbox=forward)
    server = PipeStream(inbox=forward, outbox=backward)
    client.peer = server
    server.peer = client
    return client, server
