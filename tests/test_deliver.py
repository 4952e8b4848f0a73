import pytest
import threading
import atomicbroadcast

from atomicbroadcast import client
from atomicbroadcast import deliver
from atomicbroadcast.errors import BadRequest
from atomicbroadcast.protocol import (
    Acknowledgement,
    DeliverUpdate,
    SeekInfo,
    StartType,
    Status,
)
from atomicbroadcast.transport import TransportTimeout, local


def grow(chain, count):
    """ Append *count* blocks of one transaction each. """

    for number in range(count):
        chain.broadcast(client.opaque(b'block %d' % (chain.ledger.height())).marshal())
        chain.assembler.flush()


def seek(start, window, number=0):
    return DeliverUpdate(seek=SeekInfo(start=start, specified_number=number, window_size=window))


def acknowledge(number):
    return DeliverUpdate(acknowledgement=Acknowledgement(number=number))


def serve(chain):
    """ Start a Deliver handler for *chain* on its own thread, returning
        the consumer end of the stream and the thread.
    """

    consumer, server = local.pipe()
    handler = chain.deliver_handler()

    thread = threading.Thread(target=handler.handle, args=(server,))
    thread.daemon = True
    thread.start()

    return consumer, thread


def block_number(response):
    assert response.type == 'block'
    return response.block.header.number


def test_newest_waits_for_next_block(chain):
    """ With only the genesis block, seeking NEWEST streams block 0 and
        then waits for block 1 to exist.
    """

    consumer, thread = serve(chain)
    consumer.send(seek(StartType.NEWEST, 2))

    assert block_number(consumer.recv(2)) == 0

    with pytest.raises(TransportTimeout):
        consumer.recv(0.3)

    grow(chain, 1)
    assert block_number(consumer.recv(2)) == 1

    consumer.close()
    thread.join(2)
    assert thread.is_alive() == False


def test_specified_beyond_newest(chain):
    """ Seeking a block that does not exist yet is not an error; delivery
        starts once it is appended.
    """

    grow(chain, 2)
    assert chain.ledger.height() == 3

    consumer, thread = serve(chain)
    consumer.send(seek(StartType.SPECIFIED, 10, number=5))

    with pytest.raises(TransportTimeout):
        consumer.recv(0.3)

    grow(chain, 2)

    with pytest.raises(TransportTimeout):
        consumer.recv(0.3)

    grow(chain, 1)
    assert block_number(consumer.recv(2)) == 5

    consumer.close()
    thread.join(2)


def test_window(chain):

    grow(chain, 5)

    consumer, thread = serve(chain)
    consumer.send(seek(StartType.OLDEST, 2))

    assert block_number(consumer.recv(2)) == 0
    assert block_number(consumer.recv(2)) == 1

    # The window is full until something is acknowledged.

    with pytest.raises(TransportTimeout):
        consumer.recv(0.3)

    consumer.send(acknowledge(0))
    assert block_number(consumer.recv(2)) == 2

    with pytest.raises(TransportTimeout):
        consumer.recv(0.3)

    consumer.send(acknowledge(2))
    assert block_number(consumer.recv(2)) == 3
    assert block_number(consumer.recv(2)) == 4

    with pytest.raises(TransportTimeout):
        consumer.recv(0.3)

    consumer.close()
    thread.join(2)


def test_session_state(chain):

    grow(chain, 5)
    session = deliver.DeliverSession(chain.ledger)

    assert session.state == deliver.AWAITING_SEEK
    assert session.next_block(timeout=0) == (None, None)

    session.update(seek(StartType.OLDEST, 3))
    assert session.state == deliver.STREAMING

    sent = list()
    while True:
        block, generation = session.next_block(timeout=0)
        if block is None:
            break
        sent.append(block.header.number)
        assert session.outstanding() <= 3

    assert sent == [0, 1, 2]
    assert session.outstanding() == 3

    # Acknowledgements below the window, or for blocks not yet sent, are
    # ignored.

    session.update(acknowledge(5))
    assert session.window_base == 0

    session.update(acknowledge(1))
    assert session.window_base == 2

    session.update(acknowledge(0))
    assert session.window_base == 2
    assert session.outstanding() == 1

    block, generation = session.next_block(timeout=0)
    assert block.header.number == 3

    session.close()
    assert session.state == deliver.CLOSED
    assert session.next_block(timeout=0) == (None, None)


def test_newest_seek_position(chain):

    grow(chain, 3)
    session = deliver.DeliverSession(chain.ledger)

    session.update(seek(StartType.NEWEST, 1))
    assert session.cursor == 3

    block, generation = session.next_block(timeout=0)
    assert block.header.number == 3

    session.close()


def test_reseek(chain):

    grow(chain, 4)

    consumer, thread = serve(chain)
    consumer.send(seek(StartType.OLDEST, 1))
    assert block_number(consumer.recv(2)) == 0

    consumer.send(seek(StartType.SPECIFIED, 1, number=3))
    assert block_number(consumer.recv(2)) == 3

    consumer.send(seek(StartType.OLDEST, 1))
    assert block_number(consumer.recv(2)) == 0

    consumer.close()
    thread.join(2)


def test_protocol_errors(chain):

    # Acknowledgement before any seek.

    consumer, thread = serve(chain)
    consumer.send(acknowledge(0))

    response = consumer.recv(2)
    assert response.type == 'error'
    assert response.error == Status.BAD_REQUEST
    assert consumer.recv(2) is None

    thread.join(2)
    assert thread.is_alive() == False

    # A window of zero.

    consumer, thread = serve(chain)
    consumer.send(seek(StartType.OLDEST, 0))

    response = consumer.recv(2)
    assert response.error == Status.BAD_REQUEST
    assert consumer.recv(2) is None

    # An update with nothing set.

    consumer, thread = serve(chain)
    consumer.send(DeliverUpdate())

    response = consumer.recv(2)
    assert response.error == Status.BAD_REQUEST

    # The session object itself raises.

    session = deliver.DeliverSession(chain.ledger)

    with pytest.raises(BadRequest):
        session.update(acknowledge(0))

    session.close()


def test_client_generator(chain):

    grow(chain, 3)

    consumer, thread = serve(chain)
    received = list()

    for block in client.deliver(consumer, client.seek(StartType.OLDEST, window=1), timeout=2):
        received.append(block.header.number)
        if len(received) == 4:
            break

    assert received == [0, 1, 2, 3]

    consumer.close()
    thread.join(2)


def test_consumers_agree(chain):
    """ Every session observes the same block sequence. """

    grow(chain, 3)

    first, first_thread = serve(chain)
    second, second_thread = serve(chain)

    one = client.deliver(first, client.seek(StartType.OLDEST, window=2), timeout=2)
    two = client.deliver(second, client.seek(StartType.OLDEST, window=5), timeout=2)

    blocks_one = [next(one) for count in range(4)]
    blocks_two = [next(two) for count in range(4)]

    assert blocks_one == blocks_two

    first.close()
    second.close()
    first_thread.join(2)
    second_thread.join(2)


def test_regenesis_ends_sessions(chain, genesis):
    """ Sessions reading the discarded ledger are told the chain is gone,
        rather than waiting for blocks that will never arrive.
    """

    grow(chain, 1)

    consumer, thread = serve(chain)
    consumer.send(seek(StartType.OLDEST, 10))

    assert block_number(consumer.recv(2)) == 0
    assert block_number(consumer.recv(2)) == 1

    chain.regenesis(genesis)
    grow(chain, 1)

    response = consumer.recv(2)
    assert response.type == 'error'
    assert response.error == Status.SERVICE_UNAVAILABLE
    assert consumer.recv(2) is None

    thread.join(2)
    assert thread.is_alive() == False

    # New sessions see the new chain.

    consumer, thread = serve(chain)
    blocks = client.deliver(consumer, client.seek(StartType.OLDEST, window=1), timeout=2)

    assert [next(blocks).header.number for count in range(2)] == [0, 1]
    assert chain.ledger.height() == 2

    consumer.close()
    thread.join(2)


def test_retired_ledger(chain):

    session = deliver.DeliverSession(chain.ledger)
    session.update(seek(StartType.OLDEST, 1))

    chain.ledger.retire()

    with pytest.raises(atomicbroadcast.errors.ServiceUnavailable):
        session.next_block(timeout=0)

    session.close()
    assert session.next_block(timeout=0) == (None, None)


def test_reject(chain):

    consumer, server = local.pipe()
    deliver.reject(server, Status.NOT_FOUND)

    with pytest.raises(atomicbroadcast.errors.NotFound):
        list(client.deliver(consumer, client.seek(), timeout=2))


# vim: set expandtab tabstop=8 softtabstop=4 shiftwidth=4 autoindent:
