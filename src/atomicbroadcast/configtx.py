""" The configuration manager validates :class:`ConfigurationEnvelope`
    updates against the active configuration of a chain, and swaps in the
    new configuration once the block carrying the update commits.

    A new configuration envelope is generated from the existing one by
    incrementing the Sequence number, then updating existing entries and/or
    adding new ones. Every added or modified entry must carry a LastModified
    equal to the new Sequence; every untouched entry must be carried over
    byte-for-byte. Each change must be authorized by the modification policy
    of the entry being changed, and an entry omitted from the envelope is a
    deletion that requires the same authorization.
"""

import logging
import threading

from . import crypto
from . import json
from . import policy
from .errors import BadRequest, DecodeError, Forbidden, InvariantViolation
from .protocol.fields import ConfigurationType
from .protocol.message import Configuration, ConfigurationEnvelope, Policy

logger = logging.getLogger(__name__)

# Chain-type configuration items understood by the block assembler.

BATCH_SIZE = 'BatchSize'
BATCH_TIMEOUT = 'BatchTimeout'


class ConfigurationSet:
    """ An immutable snapshot of a chain configuration: the sequence number,
        and every entry keyed by its (Type, ID) pair. A set that has been
        validated but not yet committed is a proposal; the manager swaps
        the whole set in at once when the anchoring block commits.
    """

    def __init__(self, chain_id, sequence, entries, envelope=None):

        self.chain_id = chain_id
        self.sequence = sequence
        self.envelope = envelope

        # Each value is a (Configuration, marshalled bytes) tuple. The bytes
        # are retained so that unchanged entries can be compared exactly.

        self.entries = dict(entries)
        self.policies = dict()

        for key, (configuration, raw) in self.entries.items():
            if configuration.type == ConfigurationType.Policy:
                self.policies[configuration.id] = Policy.unmarshal(configuration.data)


    def get(self, type, id):

        try:
            configuration, raw = self.entries[(int(type), id)]
        except KeyError:
            return None

        return configuration


    def __len__(self):
        return len(self.entries)


    def __repr__(self):
        return 'ConfigurationSet(sequence=%d, entries=%d)' % (self.sequence, len(self.entries))


# end of class ConfigurationSet



class Manager:
    """ Owns the active configuration for one chain. The *genesis* argument
        is the :class:`ConfigurationEnvelope` (or its marshalled bytes)
        found in the genesis block; it is applied without policy checks,
        but must be well formed. The *evaluator* is a
        :class:`policy.Evaluator` instance.
    """

    def __init__(self, genesis, evaluator):

        self.evaluator = evaluator
        self.lock = threading.Lock()
        self.sequences = list()
        self.current = None

        if isinstance(genesis, (bytes, bytearray)):
            genesis = ConfigurationEnvelope.unmarshal(genesis)

        if not genesis.chain_id:
            raise BadRequest('genesis configuration has no ChainID')

        entries = self._decode_entries(genesis, genesis.chain_id)

        if not entries:
            raise BadRequest('genesis configuration has no entries')

        for configuration, raw, entry in entries.values():
            if configuration.last_modified != genesis.sequence:
                raise BadRequest("genesis entry '%s' has LastModified %d, expected %d" % (configuration.id, configuration.last_modified, genesis.sequence))
            self._check_well_formed(configuration)

        entries = self._strip(entries)
        self.current = ConfigurationSet(genesis.chain_id, genesis.sequence, entries, genesis)
        self.sequences.append(genesis.sequence)


    @property
    def chain_id(self):
        return self.current.chain_id


    @property
    def sequence(self):
        return self.current.sequence


    def get(self, type, id):
        """ Return the active :class:`Configuration` for the (*type*, *id*)
            pair, or None if there is no such entry.
        """

        return self.current.get(type, id)


    def policy(self, name):
        """ Return the active :class:`Policy` named *name*, or None. """

        return self.current.policies.get(name)


    def batch_size(self, default=None):

        configuration = self.get(ConfigurationType.Chain, BATCH_SIZE)

        if configuration is None:
            return default

        return json.loads(configuration.data)


    def batch_timeout(self, default=None):

        configuration = self.get(ConfigurationType.Chain, BATCH_TIMEOUT)

        if configuration is None:
            return default

        return float(json.loads(configuration.data))


    def validate(self, data, signatures=()):
        """ Validate the marshalled :class:`ConfigurationEnvelope` *data*,
            accompanied by the transaction-level *signatures*, against the
            active configuration. Returns a :class:`ConfigurationSet`
            proposal to be handed to :func:`commit` once the block
            containing it is appended. Raises :class:`BadRequest` for
            malformed updates, :class:`Forbidden` for unauthorized ones.
            Nothing is modified by this method.
        """

        current = self.current
        envelope = ConfigurationEnvelope.unmarshal(data)

        if envelope.chain_id != current.chain_id:
            raise BadRequest('configuration is for chain %s, not %s' % (envelope.chain_id.hex(), current.chain_id.hex()))

        sequence = envelope.sequence
        expected = current.sequence + 1

        if sequence != expected:
            raise BadRequest('configuration sequence %d, expected %d' % (sequence, expected))

        entries = self._decode_entries(envelope, current.chain_id)

        envelope_hash = crypto.digest(data)
        signatures = list(signatures)
        anchored = False
        changed = list()

        for key, (configuration, raw, entry) in entries.items():
            try:
                old_configuration, old_raw = current.entries[key]
            except KeyError:
                old_configuration = None
                old_raw = None

            if configuration.last_modified == sequence:
                anchored = True
                self._check_well_formed(configuration)
                changed.append((configuration, raw, entry, old_configuration))
                continue

            if old_raw is None:
                raise BadRequest("new entry '%s' must have LastModified %d" % (configuration.id, sequence))

            if raw != old_raw:
                raise BadRequest("entry '%s' modified without updating LastModified" % (configuration.id))

        if anchored == False:
            raise BadRequest('no entry anchors configuration sequence %d' % (sequence))

        # Every check above is structural; only now is it worth the cost
        # of verifying signatures.

        for configuration, raw, entry, old_configuration in changed:

            if old_configuration is None:
                name = configuration.modification_policy
            else:
                name = old_configuration.modification_policy

            endorsements = list(entry.signatures) + signatures
            payloads = set((crypto.digest(raw), envelope_hash))
            self._authorize(current, name, endorsements, payloads, configuration.id)

        for key, (old_configuration, old_raw) in current.entries.items():
            if key in entries:
                continue

            name = old_configuration.modification_policy
            self._authorize(current, name, signatures, set((envelope_hash,)), old_configuration.id)
            logger.info("configuration %d deletes entry '%s'", sequence, old_configuration.id)

        return ConfigurationSet(current.chain_id, sequence, self._strip(entries), envelope)


    def commit(self, proposal):
        """ Atomically make *proposal* the active configuration. This is
            called when the block containing the proposal is appended to
            the chain, and never earlier.
        """

        with self.lock:
            expected = self.current.sequence + 1

            if proposal.sequence != expected:
                raise InvariantViolation('configuration sequence %d committed, expected %d' % (proposal.sequence, expected))

            self.current = proposal
            self.sequences.append(proposal.sequence)

        logger.info("chain %s configuration is now sequence %d", proposal.chain_id.hex(), proposal.sequence)


    def _authorize(self, current, name, signatures, payloads, id):

        rule = current.policies.get(name)

        if rule is None:
            raise Forbidden("entry '%s' is governed by unknown policy '%s'" % (id, name))

        if self.evaluator.evaluate(rule, signatures, payloads) == False:
            raise Forbidden("policy '%s' not satisfied for entry '%s'" % (name, id))


    def _decode_entries(self, envelope, chain_id):
        """ Decode every entry in *envelope*, returning a dictionary keyed by
            (Type, ID), with (Configuration, raw bytes, ConfigurationEntry)
            tuples as values.
        """

        entries = dict()

        for entry in envelope.entries:
            raw = bytes(entry.configuration)
            configuration = Configuration.unmarshal(raw)

            if configuration.chain_id != chain_id:
                raise BadRequest("entry '%s' is for another chain" % (configuration.id))

            if configuration.id == '':
                raise BadRequest('configuration entry has an empty ID')

            if configuration.last_modified > envelope.sequence:
                raise BadRequest("entry '%s' has LastModified %d beyond sequence %d" % (configuration.id, configuration.last_modified, envelope.sequence))

            key = configuration.key

            if key in entries:
                raise BadRequest("duplicate entry '%s' of type %s" % (configuration.id, configuration.type))

            entries[key] = (configuration, raw, entry)

        return entries


    def _strip(self, entries):

        stripped = dict()

        for key, (configuration, raw, entry) in entries.items():
            stripped[key] = (configuration, raw)

        return stripped


    def _check_well_formed(self, configuration):
        """ Type-specific checks for a new or modified entry. """

        type = configuration.type

        if type == ConfigurationType.Policy:
            try:
                rule = Policy.unmarshal(configuration.data)
            except DecodeError as e:
                raise BadRequest("policy '%s' does not decode: %s" % (configuration.id, e))

            if rule.type == 'signature_policy':
                policy.validate(rule.signature_policy)
            else:
                raise BadRequest("policy '%s' has no type set" % (configuration.id))

        elif type == ConfigurationType.Chain:
            if configuration.id == BATCH_SIZE:
                value = self._decode_number(configuration)
                if isinstance(value, bool) or not isinstance(value, int) or value < 1:
                    raise BadRequest('%s must be a positive integer, not %r' % (BATCH_SIZE, value))

            elif configuration.id == BATCH_TIMEOUT:
                value = self._decode_number(configuration)
                if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
                    raise BadRequest('%s must be a positive number of seconds, not %r' % (BATCH_TIMEOUT, value))

        elif isinstance(type, ConfigurationType):
            # Opaque to the ordering service.
            pass

        else:
            raise BadRequest("entry '%s' has unknown type %r" % (configuration.id, type))


    def _decode_number(self, configuration):

        try:
            return json.loads(configuration.data)
        except json.DecodeError as e:
            raise BadRequest("entry '%s' is not valid JSON: %s" % (configuration.id, e))


# end of class Manager


# vim: set expandtab tabstop=8 softtabstop=4 shiftwidth=4 autoindent:
