""" Evaluation of signature policies. A policy is a tree: a SignedBy leaf
    names one of the identities registered in the enclosing envelope, and
    an NOutOf node requires at least N of its children to be satisfied.
    Every child is evaluated against the same set of signatures.

    Whether one signature may satisfy more than one leaf is a choice left
    to the operator: with *reuse_signatures* enabled (the default) a single
    valid signature satisfies every leaf naming its signer; with it
    disabled every satisfied leaf must be backed by a distinct signature,
    which matters when the same identity is registered in several slots.
"""

import logging

from .errors import MalformedPolicy
from .protocol.message import SignaturePolicyEnvelope

logger = logging.getLogger(__name__)

# Policies arrive inside size-limited messages, but a deeply nested tree
# costs recursion depth to evaluate. Anything deeper is rejected.

MAX_DEPTH = 32


def validate(envelope):
    """ Confirm that *envelope*, a :class:`SignaturePolicyEnvelope`, is a
        well-formed tree. Raises :class:`MalformedPolicy` otherwise.
    """

    if envelope is None or envelope.policy is None:
        raise MalformedPolicy('signature policy envelope has no policy')

    _validate(envelope.policy, len(envelope.identities), set(), 1)



def _validate(node, identities, seen, depth):

    if depth > MAX_DEPTH:
        raise MalformedPolicy('policy nesting exceeds %d levels' % (MAX_DEPTH))

    # Decoded policies are always trees, but a policy assembled in memory
    # can share a node between parents, or contain itself.

    if id(node) in seen:
        raise MalformedPolicy('policy node appears more than once in the tree')
    seen.add(id(node))

    kind = node.type

    if kind == 'signed_by':
        index = node.signed_by
        if index < 0 or index >= identities:
            raise MalformedPolicy('SignedBy(%d) with %d identities' % (index, identities))

    elif kind == 'n_out_of':
        rule = node.n_out_of
        count = len(rule.policies)

        if rule.n < 0:
            raise MalformedPolicy('NOutOf threshold is negative: %d' % (rule.n))
        if rule.n > count:
            raise MalformedPolicy('NOutOf threshold %d exceeds %d policies' % (rule.n, count))

        for child in rule.policies:
            if child is None:
                raise MalformedPolicy('NOutOf contains an empty policy')
            _validate(child, identities, seen, depth + 1)

    else:
        raise MalformedPolicy('signature policy has no type set')



class Evaluator:
    """ Evaluate policies against sets of :class:`SignedData`. The
        *verifier* is a :class:`crypto.Verifier` instance responsible for
        the cryptographic check of each signature.
    """

    def __init__(self, verifier, reuse_signatures=True):

        self.verifier = verifier
        self.reuse_signatures = reuse_signatures


    def signers(self, signatures, payloads=None):
        """ Return the signer identity for every valid signature, in order.
            If *payloads* is specified, only signatures whose envelope
            payload is a member of *payloads* are considered valid.
        """

        signers = list()

        for signed in signatures:
            envelope = self.verifier.verify_signed_data(signed)

            if envelope is None:
                continue

            if payloads is not None and envelope.payload not in payloads:
                continue

            signers.append(bytes(envelope.signer))

        return signers


    def evaluate(self, policy, signatures, payloads=None):
        """ Return True if the signatures satisfy *policy*. The *policy* is
            either a :class:`Policy` or a bare
            :class:`SignaturePolicyEnvelope`. Raises :class:`MalformedPolicy`
            if the policy is not a valid expression.
        """

        envelope = self._envelope(policy)
        validate(envelope)

        identities = [bytes(identity) for identity in envelope.identities]
        signers = self.signers(signatures, payloads)

        if self.reuse_signatures == True:
            satisfied = self._satisfied(envelope.policy, identities, set(signers))
        else:
            assignments = self._assignments(envelope.policy, identities, signers, frozenset())
            satisfied = next(assignments, None) is not None

        logger.debug("policy evaluated with %d valid signature(s): %s", len(signers), satisfied)
        return satisfied


    def _envelope(self, policy):

        if isinstance(policy, SignaturePolicyEnvelope):
            return policy

        if policy is None:
            raise MalformedPolicy('no policy')

        kind = policy.type

        if kind == 'signature_policy':
            return policy.signature_policy

        raise MalformedPolicy('policy has no type set')


    def _satisfied(self, node, identities, signers):

        kind = node.type

        if kind == 'signed_by':
            return identities[node.signed_by] in signers

        if kind == 'n_out_of':
            rule = node.n_out_of
            needed = rule.n

            if needed == 0:
                return True

            remaining = len(rule.policies)

            for child in rule.policies:
                if self._satisfied(child, identities, signers):
                    needed -= 1
                    if needed == 0:
                        return True

                remaining -= 1
                if remaining < needed:
                    return False

            return False

        raise MalformedPolicy('signature policy has no type set')


    def _assignments(self, node, identities, signers, used):
        """ Yield every set of signature indices, each a superset of *used*,
            that satisfies *node* with one distinct signature per leaf.
        """

        kind = node.type

        if kind == 'signed_by':
            target = identities[node.signed_by]

            for index, signer in enumerate(signers):
                if index not in used and signer == target:
                    yield used | frozenset((index,))

        elif kind == 'n_out_of':
            rule = node.n_out_of
            yield from self._choose(rule.policies, 0, rule.n, identities, signers, used)

        else:
            raise MalformedPolicy('signature policy has no type set')


    def _choose(self, children, start, needed, identities, signers, used):

        if needed <= 0:
            yield used
            return

        if len(children) - start < needed:
            return

        child = children[start]

        for after in self._assignments(child, identities, signers, used):
            yield from self._choose(children, start + 1, needed - 1, identities, signers, after)

        yield from self._choose(children, start + 1, needed, identities, signers, used)


# end of class Evaluator


# vim: set expandtab tabstop=8 softtabstop=4 shiftwidth=4 autoindent:
