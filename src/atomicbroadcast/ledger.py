""" The append-only block log for a single chain. There is exactly one
    writer, the block assembler; any number of Deliver sessions read
    concurrently. Readers index the underlying list directly and never take
    the writer's lock, and a reader waiting for a block that does not exist
    yet registers a listener rather than polling.
"""

import logging
import threading

from . import crypto
from . import weakref
from .errors import InvariantViolation
from .protocol.message import Block, BlockData, BlockHeader, BlockMetadata

logger = logging.getLogger(__name__)


def new_block(previous, data):
    """ Construct the block that follows *previous*, which is None for
        genesis, holding the byte strings in *data* in the order given.
    """

    block_data = BlockData(data=data)

    if previous is None:
        number = 0
        previous_hash = b''
    else:
        number = previous.header.number + 1
        previous_hash = crypto.header_hash(previous.header)

    header = BlockHeader(number=number, previous_hash=previous_hash, data_hash=crypto.data_hash(block_data))
    return Block(header=header, data=block_data, metadata=BlockMetadata())



def check_link(previous, block):
    """ Raise :class:`InvariantViolation` unless *block* correctly follows
        *previous* (None for genesis) and its DataHash matches its data.
    """

    header = block.header

    if header is None or block.data is None:
        raise InvariantViolation('block has no header or no data')

    if previous is None:
        if header.number != 0:
            raise InvariantViolation('first block is number %d, expected 0' % (header.number))
        if header.previous_hash != b'':
            raise InvariantViolation('genesis block has a PreviousHash')
    else:
        expected = previous.header.number + 1
        if header.number != expected:
            raise InvariantViolation('block number %d, expected %d' % (header.number, expected))

        if header.previous_hash != crypto.header_hash(previous.header):
            raise InvariantViolation('block %d PreviousHash does not match block %d' % (header.number, previous.header.number))

    if header.data_hash != crypto.data_hash(block.data):
        raise InvariantViolation('block %d DataHash does not match its data' % (header.number))



class Ledger:
    """ An in-memory, append-only sequence of :class:`Block` instances.
        Persistence is left to an external storage engine; the ledger only
        enforces the hash chain and numbering invariants.
    """

    def __init__(self):

        self._blocks = list()
        self._lock = threading.Lock()
        self._listeners = list()
        self._listeners_lock = threading.RLock()
        self.retired = False


    def __len__(self):
        return len(self._blocks)


    def __iter__(self):
        return iter(list(self._blocks))


    def height(self):
        """ The number of blocks in the ledger, which is also the number
            the next appended block will carry.
        """

        return len(self._blocks)


    def newest(self):
        """ Return the newest block, or None if the ledger is empty. """

        try:
            return self._blocks[-1]
        except IndexError:
            return None


    def get(self, number):
        """ Return block *number*, or None if it does not exist yet. """

        if number < 0:
            return None

        try:
            return self._blocks[number]
        except IndexError:
            return None


    def append(self, block):
        """ Append *block* to the ledger after checking that it links to the
            current newest block. Raises :class:`InvariantViolation` if it
            does not; nothing is appended in that case.
        """

        with self._lock:
            check_link(self.newest(), block)
            self._blocks.append(block)

        logger.debug("appended block %d with %d entries", block.header.number, len(block.data.data))
        self._notify()


    def annotate(self, number, metadata):
        """ Append the byte string *metadata* to the metadata of block
            *number*. Metadata is not covered by any hash, so this does
            not disturb the chain.
        """

        block = self.get(number)

        if block is None:
            raise KeyError('no block %d' % (number))

        with self._lock:
            block.metadata.metadata.append(metadata)


    def verify(self):
        """ Walk the entire ledger and confirm every link. Raises
            :class:`InvariantViolation` at the first broken link.
        """

        previous = None

        for block in list(self._blocks):
            check_link(previous, block)
            previous = block


    def retire(self):
        """ Mark this ledger as discarded, as when its chain starts over from
            a new genesis. Listeners are invoked one last time so that
            anyone waiting on this ledger notices.
        """

        self.retired = True
        logger.info("ledger retired at height %d", self.height())
        self._notify()


    def listen(self, callback):
        """ Register *callback* to be invoked with no arguments after every
            append. Only a weak reference to the callback is retained.
        """

        reference = weakref.ref(callback, self._forget)

        with self._listeners_lock:
            self._listeners.append(reference)


    def ignore(self, callback):
        """ Stop invoking *callback* after appends. """

        with self._listeners_lock:
            for reference in list(self._listeners):
                if reference() == callback:
                    self._listeners.remove(reference)


    def _forget(self, reference):

        with self._listeners_lock:
            try:
                self._listeners.remove(reference)
            except ValueError:
                pass


    def _notify(self):

        with self._listeners_lock:
            references = list(self._listeners)

        for reference in references:
            callback = reference()

            if callback is None:
                continue

            try:
                callback()
            except Exception:
                logger.exception('ledger listener failed')


# end of class Ledger


# vim: set expandtab tabstop=8 softtabstop=4 shiftwidth=4 autoindent:
