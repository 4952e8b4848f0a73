import pytest

import atomicbroadcast

from atomicbroadcast.protocol import (
    Configuration,
    ConfigurationEntry,
    ConfigurationEnvelope,
    ConfigurationType,
)


@pytest.fixture
def signers():
    """ Three freshly generated ECDSA identities. The first two are the
        chain administrators in the default settings.
    """

    generated = list()

    for count in range(3):
        generated.append(atomicbroadcast.crypto.Signer.generate())

    return generated


@pytest.fixture
def evaluator():
    verifier = atomicbroadcast.crypto.ECDSAVerifier()
    return atomicbroadcast.policy.Evaluator(verifier)


@pytest.fixture
def settings(signers):

    admins = [signers[0].identity, signers[1].identity]

    return atomicbroadcast.config.settings(chain_id='unittest',
                batch_size=3, batch_timeout=0.2,
                admins=admins, admin_threshold=1)


@pytest.fixture
def genesis(settings):
    return atomicbroadcast.config.genesis(settings)


@pytest.fixture
def chain(settings, genesis, evaluator):

    chain = atomicbroadcast.Chain(genesis, evaluator,
                batch_size=settings['batch_size'],
                batch_timeout=settings['batch_timeout'])

    yield chain

    chain.stop()


@pytest.fixture
def batch_size_update(chain, signers):
    """ Return a function that builds a configuration transaction for the
        *chain* fixture, setting BatchSize to *size* at the next sequence.
        The transaction is endorsed by the first administrator unless other
        *endorsers* are specified.
    """

    def build(size, sequence=None, endorsers=None):

        manager = chain.configuration

        if sequence is None:
            sequence = manager.sequence + 1

        if endorsers is None:
            endorsers = signers[:1]

        entries = list()

        for configuration, raw in manager.current.entries.values():
            if configuration.id != atomicbroadcast.configtx.BATCH_SIZE:
                entries.append(ConfigurationEntry(configuration=raw))

        change = Configuration(chain_id=chain.chain_id, id=atomicbroadcast.configtx.BATCH_SIZE,
                    last_modified=sequence, type=ConfigurationType.Chain,
                    data=atomicbroadcast.json.dumps(size), modification_policy='admins')
        entries.append(ConfigurationEntry(configuration=change.marshal()))

        envelope = ConfigurationEnvelope(sequence=sequence, chain_id=chain.chain_id, entries=entries)
        return atomicbroadcast.client.configuration_update(envelope, endorsers)

    return build


# vim: set expandtab tabstop=8 softtabstop=4 shiftwidth=4 autoindent:
