""" The Broadcast side of the service: a single ordering point per chain
    that assigns every accepted transaction exactly one position in the
    total order, and a handler that runs one producer stream against it.
"""

import logging
import threading

from .errors import BadRequest, DecodeError, InvariantViolation, Rejected, ServiceUnavailable
from .protocol.fields import Status
from .protocol.message import BroadcastResponse, PayloadEnvelope, Transaction

logger = logging.getLogger(__name__)


class Sequencer:
    """ Admit transactions into the order for *chain*. Admission is
        serialized through :attr:`lock`; every admission attempt from every
        producer stream passes through it, so there is exactly one total
        order. Configuration transactions are validated inside the lock,
        against the configuration that will be active when they commit.

        A transaction that is rejected consumes no position. A transaction
        that is accepted has been handed to the block assembler, and will
        appear in a block, before :func:`broadcast` returns SUCCESS.
    """

    def __init__(self, chain, max_message_bytes=1048576):

        self.chain = chain
        self.max_message_bytes = max_message_bytes
        self.lock = threading.Lock()


    def broadcast(self, data):
        """ Decode *data* as a :class:`Transaction`, admit it, and return
            the :class:`Status` for the producer. Never raises for client
            errors.
        """

        try:
            self.admit(data)
        except Rejected as e:
            logger.debug("broadcast rejected (%s): %s", e.status.name, e.reason)
            return e.status
        except InvariantViolation:
            return Status.SERVICE_UNAVAILABLE

        return Status.SUCCESS


    def admit(self, data):
        """ As :func:`broadcast`, but raise a :class:`Rejected` subclass
            instead of returning a status. Returns the position assigned.
        """

        if data is None or len(data) == 0:
            raise BadRequest('empty transaction')

        if len(data) > self.max_message_bytes:
            raise BadRequest('transaction of %d bytes exceeds the %d byte limit' % (len(data), self.max_message_bytes))

        data = bytes(data)
        transaction = Transaction.unmarshal(data)

        for signed in transaction.signatures:
            PayloadEnvelope.unmarshal(signed.payload_envelope)

        kind = transaction.type

        if kind == 'opaque':
            configuration_update = False
        elif kind == 'configuration_envelope':
            configuration_update = True
        else:
            raise BadRequest('transaction has no type set')

        chain = self.chain

        with self.lock:
            if chain.running == False:
                raise ServiceUnavailable('chain is not accepting transactions')

            if configuration_update == True:
                proposal = chain.configuration.validate(transaction.configuration_envelope, transaction.signatures)
            else:
                proposal = None

            chain.assembler.ordered(data, proposal)

            position = chain.position
            chain.position += 1

        return position


# end of class Sequencer



class BroadcastHandler:
    """ Run a single producer stream: one :class:`BroadcastResponse` for
        every :class:`BroadcastMessage` received, in the order received,
        until the producer closes the stream.
    """

    def __init__(self, sequencer):
        self.sequencer = sequencer


    def handle(self, stream):

        while True:
            try:
                message = stream.recv()
            except DecodeError as e:
                logger.debug("undecodable broadcast message: %s", e)
                stream.send(BroadcastResponse(status=Status.BAD_REQUEST))
                continue

            if message is None:
                break

            status = self.sequencer.broadcast(message.data)
            stream.send(BroadcastResponse(status=status))

        stream.close()


# end of class BroadcastHandler



def reject(stream, status):
    """ Respond to the first message on a producer stream that cannot be
        served at all, such as one naming an unknown chain, and close it.
    """

    # The contents of the message are irrelevant.

    try:
        stream.recv()
    except DecodeError:
        pass

    stream.send(BroadcastResponse(status=status))
    stream.close()


# vim: set expandtab tabstop=8 softtabstop=4 shiftwidth=4 autoindent:
