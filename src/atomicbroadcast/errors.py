""" Exception taxonomy for the ordering service. Every foreseeable failure
    carries the :class:`Status` that is returned to the client; the
    Sequencer and Configuration Manager convert these exceptions into
    status codes rather than letting them escape onto a stream.
"""

from .protocol.fields import Status


class Rejected(Exception):
    """ Base class for failures that map onto a wire :class:`Status`. """

    status = None

    def __init__(self, reason=''):
        Exception.__init__(self, reason)
        self.reason = reason


class BadRequest(Rejected):
    """ Malformed input: unparseable envelopes, bad sequence arithmetic. """

    status = Status.BAD_REQUEST


class DecodeError(BadRequest):
    """ Bytes on the wire do not decode as the expected message. """


class MalformedPolicy(BadRequest):
    """ A policy tree is not a valid expression (bad threshold, bad identity
        index, shared or cyclic nodes, excessive depth).
    """


class Forbidden(Rejected):
    """ The signatures provided do not satisfy the governing policy. """

    status = Status.FORBIDDEN


class NotFound(Rejected):
    """ Unknown chain, or unknown block target. """

    status = Status.NOT_FOUND


class ServiceUnavailable(Rejected):
    """ The ordering backend is not accepting messages. Nothing was
        committed, the caller may retry.
    """

    status = Status.SERVICE_UNAVAILABLE


class InvariantViolation(Exception):
    """ The hash chain or block numbering is broken. This is fatal for the
        affected chain; no further blocks are admitted once it is raised.
    """



def from_status(status, reason=''):
    """ Return the :class:`Rejected` instance matching a non-success wire
        *status*, as received by a client.
    """

    for rejection in (BadRequest, Forbidden, NotFound, ServiceUnavailable):
        if rejection.status == status:
            return rejection(reason or Status(status).name)

    error = Rejected(reason or 'status %r' % (status,))
    error.status = status
    return error


# vim: set expandtab tabstop=8 softtabstop=4 shiftwidth=4 autoindent:
