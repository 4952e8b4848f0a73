""" Client-side helpers for producers and consumers. A :class:`Client`
    opens Broadcast and Deliver streams against a running daemon; the
    :func:`broadcast` and :func:`deliver` functions drive those streams, and
    work equally well with the in-memory streams from
    :func:`transport.local.pipe`.
"""

from . import crypto
from . import errors
from . import transport
from .protocol.fields import BROADCAST, DELIVER, StartType
from .protocol.message import (
    Acknowledgement,
    BroadcastMessage,
    DeliverUpdate,
    Message,
    SeekInfo,
    Transaction,
)


class Client:
    """ Connection to the daemon listening on *address* and *port*. Any
        number of streams, to any number of chains, share the connection.
    """

    def __init__(self, address, port):

        self.address = address
        self.port = int(port)
        self.connection = transport.stream.client(address, self.port)


    def broadcast_stream(self, chain_id):
        return self.connection.open(BROADCAST, _chain_id(chain_id))


    def deliver_stream(self, chain_id):
        return self.connection.open(DELIVER, _chain_id(chain_id))


    def broadcast(self, chain_id, transaction, timeout=None):
        """ Submit a single *transaction* on a fresh stream, returning the
            :class:`Status` received.
        """

        stream = self.broadcast_stream(chain_id)

        try:
            return broadcast(stream, transaction, timeout)
        finally:
            stream.close()


# end of class Client



def _chain_id(chain_id):

    if isinstance(chain_id, str):
        chain_id = chain_id.encode()

    return bytes(chain_id)



def sign(signer, payload):
    """ Return a :class:`SignedData` endorsement of *payload* by *signer*,
        a :class:`crypto.Signer` instance.
    """

    return signer.sign_payload(payload)



def opaque(data, signatures=()):
    """ Build a normal :class:`Transaction` carrying *data*. """

    return Transaction(opaque=data, signatures=list(signatures))



def configuration_update(envelope, signers=()):
    """ Build a configuration :class:`Transaction` from *envelope*, either a
        :class:`ConfigurationEnvelope` or its marshalled bytes. Each of the
        *signers* endorses the transaction by signing the SHA-256 of the
        envelope bytes.
    """

    if isinstance(envelope, Message):
        envelope = envelope.marshal()

    envelope = bytes(envelope)
    payload = crypto.digest(envelope)

    signatures = list()
    for signer in signers:
        signatures.append(sign(signer, payload))

    return Transaction(configuration_envelope=envelope, signatures=signatures)



def endorse(configuration, signers):
    """ Return :class:`SignedData` endorsements of a single marshalled
        :class:`Configuration`, suitable for the signatures of its
        :class:`ConfigurationEntry`.
    """

    if isinstance(configuration, Message):
        configuration = configuration.marshal()

    payload = crypto.digest(bytes(configuration))
    return [sign(signer, payload) for signer in signers]



def broadcast(stream, transaction, timeout=None):
    """ Send *transaction*, a :class:`Transaction` or its marshalled bytes,
        on a Broadcast *stream* and wait for the response. Returns the
        :class:`Status`, or the plain integer if the service answered with
        a code this client does not know. Raises
        :class:`transport.TransportConnectionError` if the stream closes
        first.
    """

    if isinstance(transaction, Message):
        transaction = transaction.marshal()

    stream.send(BroadcastMessage(data=transaction))
    response = stream.recv(timeout)

    if response is None:
        raise transport.TransportConnectionError('broadcast stream closed without a response')

    return response.status



def seek(start=StartType.OLDEST, number=0, window=10):
    """ Build a :class:`SeekInfo`; *number* only matters for a SPECIFIED
        *start*.
    """

    return SeekInfo(start=start, specified_number=number, window_size=window)



def deliver(stream, seek, timeout=None, acknowledge=True):
    """ Generator yielding blocks from a Deliver *stream*, starting from
        *seek*. Every block received is acknowledged, keeping the window
        moving, unless *acknowledge* is False. The generator ends when the
        stream closes; an error response from the service is raised as the
        matching :class:`errors.Rejected` subclass.
    """

    stream.send(DeliverUpdate(seek=seek))

    while True:
        response = stream.recv(timeout)

        if response is None:
            return

        kind = response.type

        if kind == 'error':
            raise errors.from_status(response.error)

        if kind != 'block':
            raise errors.DecodeError('deliver response has no type set')

        block = response.block
        yield block

        if acknowledge == True and stream.closed == False:
            update = DeliverUpdate(acknowledgement=Acknowledgement(number=block.header.number))
            stream.send(update)


# vim: set expandtab tabstop=8 softtabstop=4 shiftwidth=4 autoindent:
