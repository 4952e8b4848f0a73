""" Daemon settings, and construction of the genesis configuration from
    them. Settings are a single JSON object; any key not present takes the
    default value listed in :data:`defaults`. The location of the settings
    file is either passed explicitly or named by the
    ``ATOMICBROADCAST_CONFIG`` environment variable.
"""

import os

from . import crypto
from . import json
from . import policy
from .configtx import BATCH_SIZE, BATCH_TIMEOUT
from .protocol.fields import ConfigurationType
from .protocol.message import (
    Configuration,
    ConfigurationEntry,
    ConfigurationEnvelope,
    NOutOf,
    Policy,
    SignaturePolicy,
    SignaturePolicyEnvelope,
)

ADMINS = 'admins'

defaults = dict()
defaults['address'] = '*'
defaults['port'] = 10079
defaults['chain_id'] = 'default'
defaults['batch_size'] = 10
defaults['batch_timeout'] = 1.0
defaults['max_message_bytes'] = 1048576
defaults['reuse_signatures'] = True
defaults['admins'] = ()
defaults['admin_threshold'] = 1


def filename(default=None):
    """ Return the location of the settings file: *default* if specified,
        otherwise the value of the ``ATOMICBROADCAST_CONFIG`` environment
        variable, otherwise None.
    """

    if default is not None:
        return os.path.expandvars(str(default))

    return os.environ.get('ATOMICBROADCAST_CONFIG')


def load(path=None):
    """ Load the settings file at *path*, fill in defaults for anything
        missing, and check the result. With no file at all the defaults
        are returned unmodified. Raises ValueError for unknown keys or
        out-of-range values.
    """

    path = filename(path)

    if path is None:
        loaded = dict()
    else:
        loaded = json.load(path)

    if not isinstance(loaded, dict):
        raise ValueError('settings must be a JSON object, not ' + type(loaded).__name__)

    return settings(**loaded)


def settings(**overrides):
    """ Return a complete settings dictionary, the defaults updated with
        *overrides*, after checking every value.
    """

    unknown = set(overrides) - set(defaults)

    if unknown:
        raise ValueError('unknown settings: ' + ', '.join(sorted(unknown)))

    result = dict(defaults)
    result.update(overrides)
    result['admins'] = tuple(_normalize_pem(pem) for pem in result['admins'])

    check(result)
    return result


def check(settings):

    port = settings['port']
    if isinstance(port, bool) or not isinstance(port, int) or port < 1 or port > 65535:
        raise ValueError('port must be an integer between 1 and 65535, not %r' % (port,))

    if not settings['chain_id']:
        raise ValueError('chain_id must not be empty')

    batch_size = settings['batch_size']
    if isinstance(batch_size, bool) or not isinstance(batch_size, int) or batch_size < 1:
        raise ValueError('batch_size must be a positive integer, not %r' % (batch_size,))

    batch_timeout = settings['batch_timeout']
    if isinstance(batch_timeout, bool) or not isinstance(batch_timeout, (int, float)) or batch_timeout <= 0:
        raise ValueError('batch_timeout must be a positive number, not %r' % (batch_timeout,))

    maximum = settings['max_message_bytes']
    if isinstance(maximum, bool) or not isinstance(maximum, int) or maximum < 1:
        raise ValueError('max_message_bytes must be a positive integer, not %r' % (maximum,))

    admins = settings['admins']
    threshold = settings['admin_threshold']

    if isinstance(threshold, bool) or not isinstance(threshold, int) or threshold < 1:
        raise ValueError('admin_threshold must be a positive integer, not %r' % (threshold,))

    if admins and threshold > len(admins):
        raise ValueError('admin_threshold %d exceeds the %d configured admins' % (threshold, len(admins)))


def _normalize_pem(pem):

    if isinstance(pem, bytes):
        pem = pem.decode()

    return (pem.strip() + '\n').encode()


def chain_id(settings):
    return settings['chain_id'].encode()


def admin_policy(settings):
    """ Build the :class:`Policy` requiring *admin_threshold* signatures
        from the configured admins. Returns None if there are no admins.
    """

    admins = settings['admins']

    if not admins:
        return None

    leaves = list()
    for index in range(len(admins)):
        leaves.append(SignaturePolicy(signed_by=index))

    rule = SignaturePolicy(n_out_of=NOutOf(n=settings['admin_threshold'], policies=leaves))
    envelope = SignaturePolicyEnvelope(version=0, policy=rule, identities=list(admins))
    policy.validate(envelope)

    return Policy(signature_policy=envelope)


def genesis(settings):
    """ Build the genesis :class:`ConfigurationEnvelope` (sequence 0) for
        the chain described by *settings*. Every entry is governed by the
        ``admins`` policy; with no admins configured that policy is absent,
        and the configuration can never be modified.
    """

    identifier = chain_id(settings)
    entries = list()

    def entry(type, id, data):
        configuration = Configuration(chain_id=identifier, id=id, last_modified=0,
                        type=type, data=data, modification_policy=ADMINS)
        entries.append(ConfigurationEntry(configuration=configuration.marshal()))

    rule = admin_policy(settings)

    if rule is not None:
        entry(ConfigurationType.Policy, ADMINS, rule.marshal())

    entry(ConfigurationType.Chain, BATCH_SIZE, json.dumps(settings['batch_size']))
    entry(ConfigurationType.Chain, BATCH_TIMEOUT, json.dumps(settings['batch_timeout']))

    return ConfigurationEnvelope(sequence=0, chain_id=identifier, entries=entries)


def evaluator(settings):
    """ Return the :class:`policy.Evaluator` the daemon uses, with ECDSA
        signature verification.
    """

    return policy.Evaluator(crypto.ECDSAVerifier(), settings['reuse_signatures'])


# vim: set expandtab tabstop=8 softtabstop=4 shiftwidth=4 autoindent:
