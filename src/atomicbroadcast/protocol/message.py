""" Class representations of every message in the atomic broadcast wire
    contract. Field numbers are the interoperability contract: a peer using
    any protocol-buffer implementation of the same schema can decode what
    is encoded here, and vice versa.

    Each message class declares its *schema*, a tuple of :class:`Field`
    instances; the :class:`Message` base class handles construction,
    encoding, and decoding generically. A oneof is modeled as a closed
    tagged union: at most one member is set, setting one clears the others,
    and the :attr:`type` property of the union message names the member
    that is set so that consumers can match on it exhaustively.
"""

from ..errors import DecodeError
from . import wire
from .fields import ConfigurationType, StartType, Status


UINT64 = 'uint64'
INT32 = 'int32'
ENUM = 'enum'
BYTES = 'bytes'
STRING = 'string'
MESSAGE = 'message'

# Messages nested more deeply than this are refused while decoding.

MAX_NESTING = 100


class Field:
    """ Description of a single field in a message schema. For MESSAGE and
        ENUM fields *cls* is the class of the value; a string is permitted
        for MESSAGE fields so that recursive and forward references can be
        resolved at decode time.
    """

    def __init__(self, number, name, kind, cls=None, repeated=False, oneof=None):

        self.number = number
        self.name = name
        self.kind = kind
        self.cls = cls
        self.repeated = repeated
        self.oneof = oneof


    def resolve(self):

        cls = self.cls

        if isinstance(cls, str):
            cls = globals()[cls]
            self.cls = cls

        return cls


    def default(self):

        if self.repeated == True:
            return list()

        if self.oneof is not None or self.kind == MESSAGE:
            return None

        if self.kind == UINT64 or self.kind == INT32:
            return 0
        if self.kind == ENUM:
            return self.cls(0)
        if self.kind == BYTES:
            return b''
        if self.kind == STRING:
            return ''

        raise ValueError('unknown field kind: ' + repr(self.kind))


# end of class Field



class Message:
    """ Base class for all wire messages. Keyword arguments to the
        constructor set fields by their Python name; unspecified fields
        take their protocol default.
    """

    schema = ()

    def __init__(self, **kwargs):

        oneofs = set()

        for field in self.schema:
            object.__setattr__(self, field.name, field.default())

            if field.oneof is not None and kwargs.get(field.name) is not None:
                if field.oneof in oneofs:
                    raise ValueError('%s: more than one member of oneof %s set' % (type(self).__name__, field.oneof))
                oneofs.add(field.oneof)

        for name, value in kwargs.items():
            if name not in self._fields():
                raise TypeError('%s has no field %r' % (type(self).__name__, name))
            setattr(self, name, value)


    def __setattr__(self, name, value):

        field = self._fields().get(name)

        if field is not None and field.oneof is not None and value is not None:
            for sibling in self.schema:
                if sibling.oneof == field.oneof and sibling is not field:
                    object.__setattr__(self, sibling.name, None)

        if field is not None and field.repeated == True and value is not None:
            value = list(value)

        object.__setattr__(self, name, value)


    @classmethod
    def _fields(cls):

        try:
            return cls.__dict__['_by_name']
        except KeyError:
            pass

        by_name = dict()
        by_number = dict()

        for field in cls.schema:
            by_name[field.name] = field
            by_number[field.number] = field

        cls._by_name = by_name
        cls._by_number = by_number
        return by_name


    @classmethod
    def _numbers(cls):
        cls._fields()
        return cls.__dict__['_by_number']


    def which(self, oneof):
        """ Return the Python name of the member of *oneof* that is set,
            or None if no member is set.
        """

        for field in self.schema:
            if field.oneof == oneof and getattr(self, field.name) is not None:
                return field.name

        return None


    def marshal(self):
        """ Encode this message as protocol-buffer bytes. """

        writer = wire.Writer()

        for field in sorted(self.schema, key=lambda field: field.number):
            value = getattr(self, field.name)

            if field.repeated == True:
                values = value or ()
            else:
                values = (value,)

            present = field.oneof is not None or field.repeated == True

            for value in values:
                if value is None:
                    continue

                kind = field.kind

                if kind == MESSAGE:
                    writer.message(field.number, value)
                elif kind == BYTES or kind == STRING:
                    writer.blob(field.number, value, present=present)
                elif kind == UINT64:
                    if value < 0:
                        raise ValueError('%s.%s cannot be negative' % (type(self).__name__, field.name))
                    writer.varint(field.number, value, present=present)
                else:
                    writer.varint(field.number, value, present=present)

        return writer.getvalue()


    @classmethod
    def unmarshal(cls, data, depth=0):
        """ Decode protocol-buffer bytes into a new instance. Raises
            :class:`DecodeError` if the bytes are not a valid encoding, or
            if embedded messages nest more than :data:`MAX_NESTING` deep;
            *depth* is the nesting level of this message.
        """

        if data is None:
            raise DecodeError('cannot decode None as ' + cls.__name__)

        if depth > MAX_NESTING:
            raise DecodeError('%s nested more than %d levels deep' % (cls.__name__, MAX_NESTING))

        numbers = cls._numbers()
        instance = cls()

        for number, wire_type, value in wire.iter_fields(data):
            try:
                field = numbers[number]
            except KeyError:
                # Unknown field, skip it.
                continue

            kind = field.kind

            if kind == MESSAGE or kind == BYTES or kind == STRING:
                wire.expect(number, wire_type, wire.LENGTH)
            else:
                wire.expect(number, wire_type, wire.VARINT)

            if kind == MESSAGE:
                value = field.resolve().unmarshal(value, depth + 1)
            elif kind == STRING:
                try:
                    value = value.decode('utf-8')
                except UnicodeDecodeError:
                    raise DecodeError('%s.%s is not valid UTF-8' % (cls.__name__, field.name))
            elif kind == INT32:
                value = wire.to_int32(value)
            elif kind == ENUM:
                value = wire.to_int32(value)
                try:
                    value = field.cls(value)
                except ValueError:
                    # Open enumeration: unknown values are retained as ints.
                    pass

            if field.repeated == True:
                getattr(instance, field.name).append(value)
            else:
                setattr(instance, field.name, value)

        return instance


    def __eq__(self, other):

        if type(self) is not type(other):
            return NotImplemented

        for field in self.schema:
            if getattr(self, field.name) != getattr(other, field.name):
                return False

        return True


    def __repr__(self):

        shown = list()

        for field in self.schema:
            value = getattr(self, field.name)
            if value == field.default() and field.oneof is None:
                continue
            shown.append('%s=%r' % (field.name, value))

        return '%s(%s)' % (type(self).__name__, ', '.join(shown))


# end of class Message



class BroadcastMessage(Message):
    """ The Data payload is a marshalled :class:`Transaction`. """

    schema = (
        Field(1, 'data', BYTES),
    )


class BroadcastResponse(Message):

    schema = (
        Field(1, 'status', ENUM, Status),
    )


class SignedData(Message):
    """ The identity of the signer is not a field here; it is embedded in
        the :class:`PayloadEnvelope` so that the signature always covers it.
    """

    schema = (
        Field(1, 'payload_envelope', BYTES),
        Field(2, 'signature', BYTES),
    )


class PayloadEnvelope(Message):

    schema = (
        Field(1, 'payload', BYTES),
        Field(2, 'signer', BYTES),
    )


class Transaction(Message):
    """ Either an opaque payload or a marshalled
        :class:`ConfigurationEnvelope`, plus any endorsing signatures.
    """

    schema = (
        Field(1, 'opaque', BYTES, oneof='Type'),
        Field(2, 'configuration_envelope', BYTES, oneof='Type'),
        Field(3, 'signatures', MESSAGE, 'SignedData', repeated=True),
    )

    @property
    def type(self):
        return self.which('Type')


class ConfigurationEnvelope(Message):
    """ Contains *all* configuration for a chain. A new configuration
        increments the Sequence number; every added or modified entry
        carries a LastModified equal to that Sequence.
    """

    schema = (
        Field(1, 'sequence', UINT64),
        Field(2, 'chain_id', BYTES),
        Field(3, 'entries', MESSAGE, 'ConfigurationEntry', repeated=True),
    )


class ConfigurationEntry(Message):

    schema = (
        Field(1, 'configuration', BYTES),
        Field(2, 'signatures', MESSAGE, 'SignedData', repeated=True),
    )


class Configuration(Message):

    schema = (
        Field(1, 'chain_id', BYTES),
        Field(2, 'id', STRING),
        Field(3, 'last_modified', UINT64),
        Field(4, 'type', ENUM, ConfigurationType),
        Field(5, 'data', BYTES),
        Field(6, 'modification_policy', STRING),
    )

    @property
    def key(self):
        """ The (Type, ID) pair that identifies this item within a chain. """
        return (int(self.type), self.id)


class Policy(Message):
    """ Typed as a oneof so that more policy engines can be added. """

    schema = (
        Field(2, 'signature_policy', MESSAGE, 'SignaturePolicyEnvelope', oneof='Type'),
    )

    @property
    def type(self):
        return self.which('Type')


class SignaturePolicyEnvelope(Message):

    schema = (
        Field(1, 'version', INT32),
        Field(2, 'policy', MESSAGE, 'SignaturePolicy'),
        Field(3, 'identities', BYTES, repeated=True),
    )


class NOutOf(Message):

    schema = (
        Field(1, 'n', INT32),
        Field(2, 'policies', MESSAGE, 'SignaturePolicy', repeated=True),
    )


class SignaturePolicy(Message):
    """ A featherweight policy language: SignedBy names an identity by its
        index in the enclosing envelope; NOutOf requires at least N of its
        child policies. NOutOf is sufficient to express AND and OR.
    """

    schema = (
        Field(1, 'signed_by', INT32, oneof='Type'),
        Field(2, 'n_out_of', MESSAGE, 'NOutOf', oneof='Type'),
    )

    @property
    def type(self):
        return self.which('Type')


class SeekInfo(Message):

    schema = (
        Field(1, 'start', ENUM, StartType),
        Field(2, 'specified_number', UINT64),
        Field(3, 'window_size', UINT64),
    )


class Acknowledgement(Message):

    schema = (
        Field(1, 'number', UINT64),
    )


class DeliverUpdate(Message):

    schema = (
        Field(1, 'acknowledgement', MESSAGE, 'Acknowledgement', oneof='Type'),
        Field(2, 'seek', MESSAGE, 'SeekInfo', oneof='Type'),
    )

    @property
    def type(self):
        return self.which('Type')


class BlockHeader(Message):

    schema = (
        Field(1, 'number', UINT64),
        Field(2, 'previous_hash', BYTES),
        Field(3, 'data_hash', BYTES),
    )


class BlockData(Message):

    schema = (
        Field(1, 'data', BYTES, repeated=True),
    )


class BlockMetadata(Message):

    schema = (
        Field(1, 'metadata', BYTES, repeated=True),
    )


class Block(Message):
    """ The header chains to the previous header and embeds the hash of
        the data; the metadata is covered by neither hash.
    """

    schema = (
        Field(1, 'header', MESSAGE, 'BlockHeader'),
        Field(2, 'data', MESSAGE, 'BlockData'),
        Field(3, 'metadata', MESSAGE, 'BlockMetadata'),
    )

    @property
    def number(self):
        return self.header.number


class DeliverResponse(Message):

    schema = (
        Field(1, 'error', ENUM, Status, oneof='Type'),
        Field(2, 'block', MESSAGE, 'Block', oneof='Type'),
    )

    @property
    def type(self):
        return self.which('Type')


# vim: set expandtab tabstop=8 softtabstop=4 shiftwidth=4 autoindent:
