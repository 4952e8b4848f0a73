""" Hashing and signature handling. The primitives themselves come from
    :mod:`hashlib` and the :mod:`ecdsa` library; this module only fixes how
    their outputs are combined and checked:

      * a block header is hashed over its marshalled bytes;
      * block data is hashed as a Merkle root over its entries, in order;
      * a signature covers the marshalled :class:`PayloadEnvelope`, which
        names the signer, and the signer is a PEM-encoded public key.
"""

import hashlib
from abc import ABC, abstractmethod

import ecdsa
import ecdsa.der
from ecdsa.errors import MalformedPointError

from .errors import DecodeError
from .protocol.message import PayloadEnvelope, SignedData


hash_function = hashlib.sha256
curve = ecdsa.NIST256p

_LEAF = b'\x00'
_NODE = b'\x01'


def digest(data):
    """ Return the raw digest of *data*. """

    return hash_function(data).digest()



def header_hash(header):
    """ The hash that the next block records as its PreviousHash. """

    return digest(header.marshal())



def merkle_root(entries):
    """ Compute the Merkle root of the supplied byte strings. The tree is
        order-sensitive: swapping any two distinct entries changes the root.
        Leaves and interior nodes are hashed with distinct prefixes. When a
        level has an odd count the last node is promoted unchanged, so that
        [a, b, c] and [a, b, c, c] have different roots.
    """

    if not entries:
        return digest(b'')

    level = [digest(_LEAF + bytes(entry)) for entry in entries]

    while len(level) > 1:
        next_level = list()

        for index in range(0, len(level) - 1, 2):
            left = level[index]
            right = level[index + 1]
            next_level.append(digest(_NODE + left + right))

        if len(level) % 2 == 1:
            next_level.append(level[-1])

        level = next_level

    return level[0]



def data_hash(block_data):
    """ The DataHash for a :class:`BlockData` instance. """

    return merkle_root(block_data.data)



class Verifier(ABC):
    """ Abstract interface for checking that *signature* is a valid
        signature by *signer* over *message*. Only a boolean accept/reject
        is required; a verifier must never raise for malformed input.
    """

    @abstractmethod
    def verify(self, signer, message, signature):
        raise NotImplementedError


    def verify_signed_data(self, signed):
        """ Check a :class:`SignedData` instance. Returns the decoded
            :class:`PayloadEnvelope` if the signature is valid, and None
            otherwise.
        """

        try:
            envelope = PayloadEnvelope.unmarshal(signed.payload_envelope)
        except DecodeError:
            return None

        if not envelope.signer:
            return None

        if self.verify(envelope.signer, signed.payload_envelope, signed.signature):
            return envelope

        return None


# end of class Verifier



class ECDSAVerifier(Verifier):
    """ Verify ECDSA signatures where the signer identity is the PEM
        encoding of the public key. Decoded keys are cached by identity.
    """

    def __init__(self):
        self._keys = dict()


    def _key(self, signer):

        try:
            return self._keys[signer]
        except KeyError:
            pass

        key = ecdsa.VerifyingKey.from_pem(signer)
        self._keys[signer] = key
        return key


    def verify(self, signer, message, signature):

        try:
            key = self._key(bytes(signer))
            return key.verify(signature, message, hashfunc=hash_function)
        except (ecdsa.BadSignatureError, ecdsa.der.UnexpectedDER, MalformedPointError, ValueError, TypeError):
            return False


# end of class ECDSAVerifier



class Signer:
    """ Holds an ECDSA private key and produces :class:`SignedData`
        endorsements. Key management is out of scope; this exists for
        clients and tests that need to produce valid signatures.
    """

    def __init__(self, key):
        self.key = key
        self.identity = key.get_verifying_key().to_pem()


    @classmethod
    def generate(cls):
        return cls(ecdsa.SigningKey.generate(curve=curve))


    @classmethod
    def from_pem(cls, pem):
        return cls(ecdsa.SigningKey.from_pem(pem))


    def sign(self, message):
        return self.key.sign_deterministic(message, hashfunc=hash_function)


    def sign_payload(self, payload):
        """ Wrap *payload* in a :class:`PayloadEnvelope` naming this signer,
            sign the envelope, and return the :class:`SignedData`.
        """

        envelope = PayloadEnvelope(payload=payload, signer=self.identity)
        envelope = envelope.marshal()
        return SignedData(payload_envelope=envelope, signature=self.sign(envelope))


# end of class Signer


# vim: set expandtab tabstop=8 softtabstop=4 shiftwidth=4 autoindent:
