""" A :class:`Chain` is one independently ordered log plus its
    configuration. It owns every piece of per-chain state: the ledger, the
    configuration manager, the block assembler, the sequencer, and the
    position counter that the sequencer advances for every admitted
    transaction.
"""

import logging

from . import configtx
from . import ledger
from .assembler import Assembler
from .broadcast import BroadcastHandler, Sequencer
from .deliver import DeliverHandler
from .protocol.message import ConfigurationEnvelope, Transaction

logger = logging.getLogger(__name__)


class Chain:
    """ Create a chain from its *genesis* :class:`ConfigurationEnvelope`.
        The genesis block, number 0, holds a single transaction carrying
        the genesis configuration. The *evaluator* is the
        :class:`policy.Evaluator` used for all configuration updates;
        the remaining arguments are the fallbacks for the batching policy
        and the admission size limit.
    """

    def __init__(self, genesis, evaluator, batch_size=10, batch_timeout=1.0, max_message_bytes=1048576):

        self.evaluator = evaluator
        self.batch_size = batch_size
        self.batch_timeout = batch_timeout
        self.max_message_bytes = max_message_bytes

        self.assembler = None
        self.configuration = None
        self.ledger = None
        self.sequencer = None
        self.position = None
        self.running = False

        self._genesis(genesis)


    def _genesis(self, genesis):

        if isinstance(genesis, (bytes, bytearray)):
            genesis = ConfigurationEnvelope.unmarshal(genesis)

        configuration = configtx.Manager(genesis, self.evaluator)

        log = ledger.Ledger()
        transaction = Transaction(configuration_envelope=genesis.marshal())
        log.append(ledger.new_block(None, [transaction.marshal()]))

        self.configuration = configuration
        self.ledger = log
        self.assembler = Assembler(log, configuration, self.batch_size, self.batch_timeout)
        if self.sequencer is None:
            self.sequencer = Sequencer(self, self.max_message_bytes)

        # The position counter is only ever advanced by the sequencer, while
        # holding its lock. It starts over only with a new genesis.

        self.position = 0
        self.running = True

        logger.info("chain %s created at configuration sequence %d", self.chain_id.hex(), configuration.sequence)


    @property
    def chain_id(self):
        return self.configuration.chain_id


    @property
    def halted(self):
        return self.assembler.halted


    def regenesis(self, genesis):
        """ Discard the entire chain and start over from a new *genesis*
            configuration, which must be for the same ChainID. The discarded
            ledger is retired: Deliver sessions reading it receive a
            SERVICE_UNAVAILABLE error and are closed.
        """

        if isinstance(genesis, (bytes, bytearray)):
            genesis = ConfigurationEnvelope.unmarshal(genesis)

        if genesis.chain_id != self.chain_id:
            raise ValueError('re-genesis must keep the ChainID')

        with self.sequencer.lock:
            discarded = self.ledger
            self._stop()
            self._genesis(genesis)

        discarded.retire()


    def broadcast(self, data):
        """ Convenience wrapper for :func:`Sequencer.broadcast`. """

        return self.sequencer.broadcast(data)


    def broadcast_handler(self):
        return BroadcastHandler(self.sequencer)


    def deliver_handler(self):
        return DeliverHandler(self.ledger)


    def stop(self):
        """ Stop accepting transactions. Anything pending in the assembler
            is cut into a final block first.
        """

        with self.sequencer.lock:
            self._stop()


    def _stop(self):

        self.running = False
        self.assembler.flush()
        self.assembler.stop()


# end of class Chain


# vim: set expandtab tabstop=8 softtabstop=4 shiftwidth=4 autoindent:
