import pytest
import threading
import atomicbroadcast

from atomicbroadcast import transport
from atomicbroadcast.errors import DecodeError
from atomicbroadcast.protocol import (
    BROADCAST,
    CLOSE,
    DELIVER,
    Acknowledgement,
    BroadcastMessage,
    BroadcastResponse,
    DeliverUpdate,
    STREAM_KINDS,
    Status,
)
from atomicbroadcast.transport import local
from atomicbroadcast.transport.zmq import framing


def test_pipe():

    one, two = local.pipe()

    one.send(BroadcastMessage(data=b'hello'))
    assert two.recv(1) == BroadcastMessage(data=b'hello')

    two.send(BroadcastResponse(status=Status.SUCCESS))
    assert one.recv(1).status == Status.SUCCESS

    with pytest.raises(transport.TransportTimeout):
        one.recv(0.05)

    one.close()
    assert one.closed == True
    assert two.recv(1) is None
    assert two.recv(1) is None

    with pytest.raises(transport.TransportConnectionError):
        one.send(BroadcastMessage(data=b'too late'))

    # Sending to a closed peer is not an error; nobody hears it.

    two.send(BroadcastResponse(status=Status.SUCCESS))

    # Closing an end also releases a recv waiting on that same end.

    three, four = local.pipe()
    received = list()

    waiting = threading.Thread(target=lambda: received.append(three.recv(5)))
    waiting.start()

    three.close()
    waiting.join(2)

    assert waiting.is_alive() == False
    assert received == [None]


def test_framing():

    frames = framing.to_frames(b'00000001', BROADCAST, 'ab', b'body')
    assert len(frames) == 5

    prefix, stream_id, kind, target, body = framing.from_frames(frames)
    assert prefix == ()
    assert stream_id == b'00000001'
    assert kind == BROADCAST
    assert target == 'ab'
    assert body == b'body'

    frames = framing.to_frames(b'00000002', CLOSE, 'ab', prefix=(b'\x00identity',))
    prefix, stream_id, kind, target, body = framing.from_frames(frames)
    assert prefix == (b'\x00identity',)
    assert kind == CLOSE
    assert body == b''

    for kind in STREAM_KINDS | set((CLOSE,)):
        frames = framing.to_frames(b'00000003', kind, 'ab')
        assert framing.from_frames(frames)[2] == kind

    with pytest.raises(DecodeError):
        framing.from_frames(())

    with pytest.raises(DecodeError):
        framing.from_frames((b'a', b'id', b'BROADCAST', b'ab'))

    with pytest.raises(DecodeError):
        framing.from_frames((b'a', b'id', b'SUBSCRIBE', b'ab', b''))

    with pytest.raises(DecodeError):
        framing.from_frames((b'\x00identity', b'z', b'id', b'BROADCAST', b'ab', b''))


@pytest.fixture
def echo_server():
    """ A ZeroMQ server on the loopback interface. Broadcast streams are
        answered with SUCCESS, except for the data b'close', which is
        answered with NOT_FOUND before the server closes the stream.
        Deliver streams are drained and recorded.
    """

    opened = list()
    updates = list()

    def handler(stream, kind, target):

        opened.append((kind, target))

        while True:
            message = stream.recv()

            if message is None:
                return

            if kind == DELIVER:
                updates.append(message)
                continue

            if message.data == b'close':
                stream.send(BroadcastResponse(status=Status.NOT_FOUND))
                return

            stream.send(BroadcastResponse(status=Status.SUCCESS))

    server = transport.Server(handler, address='127.0.0.1')
    server.opened = opened
    server.updates = updates

    yield server

    server.close()


def test_zmq_streams(echo_server):

    connection = transport.stream.Client('127.0.0.1', echo_server.port)

    try:
        first = connection.open(BROADCAST, b'chain')
        second = connection.open(BROADCAST, b'chain')

        first.send(BroadcastMessage(data=b'one'))
        second.send(BroadcastMessage(data=b'two'))

        assert first.recv(2).status == Status.SUCCESS
        assert second.recv(2).status == Status.SUCCESS

        assert (BROADCAST, b'chain'.hex()) in echo_server.opened
        assert len(echo_server.opened) == 2

        # The server ends the stream.

        first.send(BroadcastMessage(data=b'close'))
        assert first.recv(2).status == Status.NOT_FOUND
        assert first.recv(2) is None

        # The other stream on the same connection is unaffected.

        second.send(BroadcastMessage(data=b'three'))
        assert second.recv(2).status == Status.SUCCESS

        second.close()
        assert second.closed == True

        with pytest.raises(transport.TransportConnectionError):
            second.send(BroadcastMessage(data=b'four'))

        with pytest.raises(transport.TransportTimeout):
            connection.open(BROADCAST, b'chain').recv(0.1)

    finally:
        connection.close()


def test_zmq_deliver_updates(echo_server):

    connection = transport.stream.Client('127.0.0.1', echo_server.port)

    try:
        stream = connection.open(DELIVER, b'chain')
        stream.send(DeliverUpdate(acknowledgement=Acknowledgement(number=3)))
        stream.close()

        for attempt in range(100):
            if echo_server.updates:
                break
            threading.Event().wait(0.02)

        assert echo_server.updates == [DeliverUpdate(acknowledgement=Acknowledgement(number=3))]

    finally:
        connection.close()


def test_zmq_port_in_use(echo_server):

    def handler(stream, kind, target):
        pass

    with pytest.raises(transport.TransportPortError):
        transport.Server(handler, address='127.0.0.1', port=echo_server.port)

    other = transport.Server(handler, address='127.0.0.1', avoid=set((echo_server.port,)))

    try:
        assert other.port != echo_server.port
    finally:
        other.close()


def test_client_cache():

    first = transport.stream.client('127.0.0.1', 10079)
    second = transport.stream.client('127.0.0.1', '10079')

    assert first is second


# vim: set expandtab tabstop=8 softtabstop=4 shiftwidth=4 autoindent:
