"""ZeroMQ stream transport.

A single ROUTER socket on the server, and a single DEALER socket per client
connection, carry any number of logical Broadcast and Deliver streams. Each
stream is identified by the client's socket identity plus a stream id
chosen by the client. The server runs the stream handler for every new
stream on its own thread; all socket I/O stays on one background thread
per socket, fed through a queue and an inproc signalling socket.

Public surface area:
    - Client / Server classes
    - client(address, port) cache helper
"""

from __future__ import annotations

import atexit
import collections
import itertools
import logging
import queue
import threading
from typing import Callable, Dict, Optional, Tuple

import zmq

from ...errors import DecodeError
from ...protocol.fields import BROADCAST, CLOSE, DELIVER
from ...protocol.message import (
    BroadcastMessage,
    BroadcastResponse,
    DeliverResponse,
    DeliverUpdate,
    Message,
)
from ..base import Stream, TransportConnectionError, TransportPortError, TransportTimeout
from .framing import from_frames, to_frames

logger = logging.getLogger(__name__)

minimum_port = 10079
maximum_port = 13679
zmq_context = zmq.Context()

_CLOSED = object()

# Message classes by stream kind: (what the server receives, what it sends).

_MESSAGES = {
    BROADCAST: (BroadcastMessage, BroadcastResponse),
    DELIVER: (DeliverUpdate, DeliverResponse),
}


class _QueueStream(Stream):
    """Shared machinery for both ends: an inbox of raw bodies, decoded into
    *inbound* messages on recv(), and an outbound path via *transmit*.
    """

    def __init__(self, transmit: Callable, stream_id: bytes, kind: str, target: str, inbound, prefix=()):
        self.stream_id = stream_id
        self.kind = kind
        self.target = target
        self.prefix = tuple(prefix)
        self._inbound = inbound
        self._transmit = transmit
        self._inbox = queue.Queue()
        self._closed = False
        self._peer_closed = False
        self._lock = threading.Lock()

    def _deliver(self, body: bytes) -> None:
        self._inbox.put(body)

    def _peer_close(self) -> None:
        self._inbox.put(_CLOSED)

    def send(self, msg: Message) -> None:
        with self._lock:
            if self._closed:
                raise TransportConnectionError("send on a closed stream")
            self._transmit(to_frames(self.stream_id, self.kind, self.target, msg.marshal(), self.prefix))

    def recv(self, timeout: Optional[float] = None) -> Optional[Message]:
        if self._peer_closed:
            return None

        try:
            body = self._inbox.get(timeout=timeout)
        except queue.Empty:
            raise TransportTimeout(f"no message in {timeout:.2f} sec") from None

        if body is _CLOSED:
            self._peer_closed = True
            return None

        return self._inbound.unmarshal(body)

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            try:
                self._transmit(to_frames(self.stream_id, CLOSE, self.target, b"", self.prefix))
            except TransportConnectionError:
                # The socket is gone, and the peer with it.
                pass
            finally:
                self._inbox.put(_CLOSED)

    @property
    def closed(self) -> bool:
        return self._closed


class _Socket:
    """A ZeroMQ socket serviced by one background thread. Outbound frames
    are queued from any thread and sent by the background thread.
    """

    def __init__(self, socket, name: str):
        self.socket = socket

        self._outbox = queue.SimpleQueue()

        internal = f"inproc://{name}:signal:{id(self)}"
        self._signal_rx = zmq_context.socket(zmq.PAIR)
        self._signal_rx.bind(internal)
        self._signal_tx = zmq_context.socket(zmq.PAIR)
        self._signal_tx.connect(internal)

        # ZeroMQ sockets are not thread safe; every thread signalling the
        # background thread goes through this lock.
        self._signal_lock = threading.Lock()

        self.shutdown = False
        self.thread = threading.Thread(target=self.run, daemon=True)

    def transmit(self, frames: Tuple[bytes, ...]) -> None:
        with self._signal_lock:
            if self.shutdown:
                raise TransportConnectionError("socket is closed")
            self._outbox.put(frames)
            self._signal_tx.send(b"")

    def _outgoing(self) -> None:
        # Clear one signal and send one message.
        self._signal_rx.recv(flags=zmq.NOBLOCK)
        try:
            frames = self._outbox.get(block=False)
        except queue.Empty:
            return
        self.socket.send_multipart(frames)

    def _incoming(self, parts) -> None:
        raise NotImplementedError

    def _disconnect(self) -> None:
        """Called once the socket stops; every open stream sees its peer
        close."""

        with self._streams_lock:
            streams = list(self._streams.values())
            self._streams.clear()

        for stream in streams:
            stream._peer_close()

    def run(self) -> None:
        poller = zmq.Poller()
        poller.register(self.socket, zmq.POLLIN)
        poller.register(self._signal_rx, zmq.POLLIN)

        while not self.shutdown:
            for active, _flag in poller.poll(1000):
                if active == self._signal_rx:
                    self._outgoing()
                elif active == self.socket:
                    parts = tuple(self.socket.recv_multipart())
                    try:
                        self._incoming(parts)
                    except Exception:
                        logger.exception("failed to handle inbound message")

        self._disconnect()

        self.socket.close(linger=0)
        self._signal_rx.close(linger=0)
        with self._signal_lock:
            self._signal_tx.close(linger=0)

    def close(self) -> None:
        with self._signal_lock:
            if self.shutdown:
                return
            self.shutdown = True
            self._signal_tx.send(b"")
        if self.thread is not threading.current_thread():
            self.thread.join(5)


class Server(_Socket):
    """Accept streams via a ZeroMQ ROUTER socket.

    The *handler* is invoked as handler(stream, kind, target) on a new
    thread for every stream a client opens; the stream is closed when the
    handler returns.
    """

    retired_limit = 4096

    def __init__(self, handler: Callable, address: str = "*", port: Optional[int] = None, avoid: Optional[set] = None):
        self.handler = handler
        self.address = address
        self.avoid = set(avoid or set())

        socket = zmq_context.socket(zmq.ROUTER)
        socket.setsockopt(zmq.LINGER, 0)

        if port is None:
            self.port = self._bind_any(socket)
        else:
            self.port = int(port)
            try:
                socket.bind(f"tcp://{self.address}:{self.port}")
            except zmq.ZMQError as exc:
                socket.close(linger=0)
                raise TransportPortError(f"port already in use: {self.port}") from exc

        self._streams: Dict[Tuple[Tuple[bytes, ...], bytes], _QueueStream] = {}
        self._streams_lock = threading.Lock()

        # Streams the server has closed. Late frames from the client for a
        # retired stream are dropped, rather than opening a new stream.
        self._retired = collections.OrderedDict()

        _Socket.__init__(self, socket, f"stream.Server:{self.port}")
        self.thread.start()

    def _bind_any(self, socket) -> int:
        for port in range(minimum_port, maximum_port + 1):
            if port in self.avoid:
                continue
            try:
                socket.bind(f"tcp://{self.address}:{port}")
                return port
            except zmq.ZMQError:
                continue
        socket.close(linger=0)
        raise TransportPortError(
            f"no ports available in range {minimum_port}:{maximum_port}"
        )

    def _incoming(self, parts) -> None:
        try:
            prefix, stream_id, kind, target, body = from_frames(parts)
        except DecodeError as exc:
            logger.debug("dropping malformed frames: %s", exc)
            return

        key = (prefix, stream_id)

        with self._streams_lock:
            stream = self._streams.get(key)

            if kind == CLOSE:
                if stream is not None:
                    del self._streams[key]
                    self._retire(key)
                    stream._peer_close()
                return

            if stream is None:
                if key in self._retired:
                    return
                inbound, _outbound = _MESSAGES[kind]
                stream = _QueueStream(self.transmit, stream_id, kind, target, inbound, prefix)
                self._streams[key] = stream
                new = True
            elif stream.kind != kind:
                logger.debug("dropping %s frame on a %s stream", kind, stream.kind)
                return
            else:
                new = False

        stream._deliver(body)

        if new:
            thread = threading.Thread(target=self._serve, args=(key, stream), daemon=True)
            thread.start()

    def _retire(self, key) -> None:
        self._retired[key] = True
        while len(self._retired) > self.retired_limit:
            self._retired.popitem(last=False)

    def _serve(self, key, stream: _QueueStream) -> None:
        try:
            self.handler(stream, stream.kind, stream.target)
        except Exception:
            logger.exception("%s stream handler failed", stream.kind)
        finally:
            with self._streams_lock:
                if self._streams.get(key) is stream:
                    del self._streams[key]
                    self._retire(key)
            stream.close()


class Client(_Socket):
    """Open streams to a server via a ZeroMQ DEALER socket."""

    def __init__(self, address: str, port: int):
        self.address = address
        self.port = int(port)

        socket = zmq_context.socket(zmq.DEALER)
        socket.setsockopt(zmq.LINGER, 0)
        socket.connect(f"tcp://{address}:{self.port}")

        self._streams: Dict[bytes, _QueueStream] = {}
        self._streams_lock = threading.Lock()
        self._ids = itertools.count()

        _Socket.__init__(self, socket, f"stream.Client:{address}:{self.port}")
        self.thread.start()

    def open(self, kind: str, chain_id: bytes) -> Stream:
        """Open a new stream of *kind* (BROADCAST or DELIVER) to the chain
        identified by *chain_id*.
        """

        _inbound, outbound = _MESSAGES[kind]
        stream_id = ("%08x" % next(self._ids)).encode()
        stream = _QueueStream(self.transmit, stream_id, kind, chain_id.hex(), outbound)

        with self._streams_lock:
            self._streams[stream_id] = stream

        return stream

    def _incoming(self, parts) -> None:
        try:
            _prefix, stream_id, kind, _target, body = from_frames(parts)
        except DecodeError as exc:
            logger.debug("dropping malformed frames: %s", exc)
            return

        with self._streams_lock:
            stream = self._streams.get(stream_id)
            if stream is not None and kind == CLOSE:
                del self._streams[stream_id]

        if stream is None:
            return

        if kind == CLOSE:
            stream._peer_close()
        else:
            stream._deliver(body)


# --- convenience helpers ---

_client_cache: Dict[Tuple[str, int], Client] = {}
_client_lock = threading.Lock()


def client(address: str, port: int) -> Client:
    key = (address, int(port))
    with _client_lock:
        c = _client_cache.get(key)
        if c is None:
            c = Client(address, int(port))
            _client_cache[key] = c
        return c


def _cleanup() -> None:
    with _client_lock:
        clients = list(_client_cache.values())
        _client_cache.clear()

    for c in clients:
        c.close()


atexit.register(_cleanup)
