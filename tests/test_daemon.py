import pytest
import threading
import atomicbroadcast

from atomicbroadcast import client
from atomicbroadcast import daemon
from atomicbroadcast.protocol import BROADCAST, DELIVER, StartType, Status
from atomicbroadcast.transport import local


@pytest.fixture
def running(settings):

    instance = atomicbroadcast.Daemon(settings)
    instance.serve()

    yield instance

    instance.stop()


def test_end_to_end(running, settings):

    connection = atomicbroadcast.Client('127.0.0.1', running.server.port)

    status = connection.broadcast('unittest', client.opaque(b'over the wire'), timeout=5)
    assert status == Status.SUCCESS

    chain = running.chain(b'unittest')
    chain.assembler.flush()

    stream = connection.deliver_stream('unittest')
    blocks = client.deliver(stream, client.seek(StartType.OLDEST, window=1), timeout=5)

    genesis = next(blocks)
    assert genesis.header.number == 0

    block = next(blocks)
    assert block.header.number == 1
    assert block == chain.ledger.get(1)

    transaction = atomicbroadcast.protocol.Transaction.unmarshal(block.data.data[0])
    assert transaction.opaque == b'over the wire'

    stream.close()


def test_configuration_over_the_wire(running, signers):

    alice = signers[0]
    chain = running.chain(b'unittest')
    manager = chain.configuration

    entries = list()
    for configuration, raw in manager.current.entries.values():
        if configuration.id != atomicbroadcast.configtx.BATCH_SIZE:
            entries.append(atomicbroadcast.protocol.ConfigurationEntry(configuration=raw))

    change = atomicbroadcast.protocol.Configuration(chain_id=b'unittest',
                id=atomicbroadcast.configtx.BATCH_SIZE, last_modified=1,
                type=atomicbroadcast.protocol.ConfigurationType.Chain,
                data=b'1', modification_policy='admins')
    entries.append(atomicbroadcast.protocol.ConfigurationEntry(configuration=change.marshal()))

    envelope = atomicbroadcast.protocol.ConfigurationEnvelope(sequence=1, chain_id=b'unittest', entries=entries)

    connection = atomicbroadcast.Client('127.0.0.1', running.server.port)

    unsigned = client.configuration_update(envelope)
    assert connection.broadcast('unittest', unsigned, timeout=5) == Status.FORBIDDEN

    signed = client.configuration_update(envelope, [alice])
    assert connection.broadcast('unittest', signed, timeout=5) == Status.SUCCESS

    assert manager.sequence == 1
    assert manager.batch_size() == 1


def test_unknown_chain(running):

    connection = atomicbroadcast.Client('127.0.0.1', running.server.port)

    status = connection.broadcast('nowhere', client.opaque(b'lost'), timeout=5)
    assert status == Status.NOT_FOUND

    stream = connection.deliver_stream('nowhere')

    with pytest.raises(atomicbroadcast.errors.NotFound):
        list(client.deliver(stream, client.seek(), timeout=5))


def test_handle_in_process(settings):

    instance = atomicbroadcast.Daemon(settings)

    try:
        # Not even valid hex.

        producer, server = local.pipe()
        thread = threading.Thread(target=instance.handle, args=(server, BROADCAST, 'zz'))
        thread.start()

        assert client.broadcast(producer, client.opaque(b'x'), timeout=2) == Status.NOT_FOUND
        thread.join(2)

        # A known chain.

        producer, server = local.pipe()
        thread = threading.Thread(target=instance.handle, args=(server, BROADCAST, b'unittest'.hex()))
        thread.start()

        assert client.broadcast(producer, client.opaque(b'x'), timeout=2) == Status.SUCCESS
        producer.close()
        thread.join(2)

        assert thread.is_alive() == False

        consumer, server = local.pipe()
        thread = threading.Thread(target=instance.handle, args=(server, DELIVER, b'unittest'.hex()))
        thread.start()

        first = next(client.deliver(consumer, client.seek(), timeout=2))
        assert first.header.number == 0

        consumer.close()
        thread.join(2)

    finally:
        instance.stop()


def test_chains(settings, genesis):

    instance = atomicbroadcast.Daemon(settings)

    try:
        with pytest.raises(ValueError):
            instance.add(genesis)

        other = dict(settings)
        other['chain_id'] = 'second'
        second = instance.add(atomicbroadcast.config.genesis(other))

        assert instance.chain(b'second') is second
        assert len(instance.chains) == 2

        with pytest.raises(atomicbroadcast.errors.NotFound):
            instance.chain(b'third')

    finally:
        instance.stop()


def test_arguments():

    args = daemon.arguments(['--config', 'settings.json', '--port', '12000', '--verbose'])

    assert args.config == 'settings.json'
    assert args.port == 12000
    assert args.verbose == True

    args = daemon.arguments([])

    assert args.config is None
    assert args.port is None
    assert args.verbose == False


def test_main_bad_settings(tmp_path):

    broken = tmp_path / 'settings.json'
    broken.write_text('{"batch_size": 0}')

    assert daemon.main(['--config', str(broken)]) == 1

    missing = tmp_path / 'missing.json'
    assert daemon.main(['--config', str(missing)]) == 1


# vim: set expandtab tabstop=8 softtabstop=4 shiftwidth=4 autoindent:
