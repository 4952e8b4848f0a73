"""Protocol constants.

Keep these in one place to avoid stringly-typed message handling.
"""

import enum


# This is the version of the on-the-wire stream framing implemented here,
# identified by a single byte.

PROTOCOL_VERSION = 'a'

# Stream kinds, one per service operation, plus the frame that ends a stream.

BROADCAST = 'BROADCAST'
DELIVER = 'DELIVER'
CLOSE = 'CLOSE'

STREAM_KINDS = frozenset((BROADCAST, DELIVER))


class Status(enum.IntEnum):
    """ Response codes, intended to resemble selected HTTP status codes. """

    SUCCESS = 0
    BAD_REQUEST = 400
    FORBIDDEN = 403
    NOT_FOUND = 404
    SERVICE_UNAVAILABLE = 503


class ConfigurationType(enum.IntEnum):

    Policy = 0
    Fabric = 1
    Chain = 2
    Solo = 3
    Kafka = 4
    PBFT = 5


class StartType(enum.IntEnum):
    """ Where a Deliver seek begins. The start is always inclusive. """

    NEWEST = 0
    OLDEST = 1
    SPECIFIED = 2


# vim: set expandtab tabstop=8 softtabstop=4 shiftwidth=4 autoindent:
