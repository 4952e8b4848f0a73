""" The Deliver side of the service. Each consumer stream is handled by a
    :class:`DeliverSession`, a small state machine:

        AWAITING_SEEK --seek--> STREAMING --seek--> STREAMING
                                     |
                                     +--error/close--> CLOSED

    While STREAMING the session pushes the block at its cursor whenever the
    cursor is inside the window and the block exists, then advances the
    cursor. The window is [window_base, window_base + window_size); an
    acknowledgement of block k moves window_base to k + 1. The session
    suspends when the window is exhausted or the next block does not exist
    yet, and resumes on an acknowledgement or on a ledger append.

    Acknowledgements that do not advance the window (k < window_base), or
    that name a block not yet delivered (k >= cursor), are ignored.
"""

import logging
import threading

from .errors import BadRequest, DecodeError, Rejected, ServiceUnavailable
from .protocol.fields import StartType, Status
from .protocol.message import DeliverResponse

logger = logging.getLogger(__name__)

AWAITING_SEEK = 'AWAITING_SEEK'
STREAMING = 'STREAMING'
CLOSED = 'CLOSED'


class DeliverSession:
    """ Flow-controlled delivery of blocks from *ledger* to one consumer.
        The state transitions are driven by :func:`update`; the blocks to
        send are obtained from :func:`next_block`. Both are safe to call
        from different threads, which is how :func:`run` uses them.
    """

    def __init__(self, ledger):

        self.ledger = ledger
        self.state = AWAITING_SEEK
        self.cursor = None
        self.window_base = None
        self.window_size = None

        # Every seek increments the generation; a block handed out under an
        # earlier generation is stale once a new seek has been processed.

        self.generation = 0

        self.condition = threading.Condition()
        self.send_lock = threading.Lock()

        ledger.listen(self._appended)


    def _appended(self):

        with self.condition:
            self.condition.notify_all()


    def outstanding(self):
        """ The number of delivered but unacknowledged blocks. """

        with self.condition:
            if self.state != STREAMING:
                return 0
            return self.cursor - self.window_base


    def update(self, update):
        """ Apply a :class:`DeliverUpdate`. Raises :class:`BadRequest` if
            the update is malformed or arrives out of protocol.
        """

        kind = update.type

        if kind == 'seek':
            # Holding the send lock guarantees no block from the previous
            # seek is in the middle of being sent.
            with self.send_lock:
                with self.condition:
                    self._seek(update.seek)
                    self.condition.notify_all()

        elif kind == 'acknowledgement':
            with self.condition:
                self._acknowledge(update.acknowledgement.number)
                self.condition.notify_all()

        else:
            raise BadRequest('deliver update has no type set')


    def _seek(self, seek):

        if self.state == CLOSED:
            return

        if seek.window_size < 1:
            raise BadRequest('window size must be at least 1')

        start = seek.start

        if start == StartType.NEWEST:
            cursor = max(self.ledger.height() - 1, 0)
        elif start == StartType.OLDEST:
            cursor = 0
        elif start == StartType.SPECIFIED:
            cursor = seek.specified_number
        else:
            raise BadRequest('unknown seek start %r' % (start))

        self.cursor = cursor
        self.window_base = cursor
        self.window_size = seek.window_size
        self.generation += 1
        self.state = STREAMING

        logger.debug("seek %s: cursor %d, window %d", StartType(start).name, cursor, seek.window_size)


    def _acknowledge(self, number):

        if self.state == CLOSED:
            return

        if self.state != STREAMING:
            raise BadRequest('acknowledgement received before any seek')

        if number < self.window_base or number >= self.cursor:
            logger.debug("ignoring acknowledgement %d, window [%d, %d)", number, self.window_base, self.cursor)
            return

        self.window_base = number + 1


    def next_block(self, timeout=None):
        """ Block until the next block may be sent, advance the cursor past
            it, and return (block, generation). Returns (None, None) if the
            session closed, or if *timeout* seconds elapse first.
            Raises :class:`ServiceUnavailable` once the ledger is retired.
        """

        with self.condition:
            while True:
                if self.state == CLOSED:
                    return None, None

                if self.ledger.retired == True:
                    raise ServiceUnavailable('the chain was restarted from a new genesis')

                if self.state == STREAMING and self.cursor < self.window_base + self.window_size:
                    block = self.ledger.get(self.cursor)

                    if block is not None:
                        self.cursor += 1
                        return block, self.generation

                if self.condition.wait(timeout) == False:
                    return None, None


    def close(self):

        with self.condition:
            self.state = CLOSED
            self.condition.notify_all()

        self.ledger.ignore(self._appended)


    def run(self, stream):
        """ Serve the consumer connected via *stream* until either side
            closes it. Updates are read on the calling thread; blocks are
            sent from a dedicated thread so that a suspended sender never
            delays the processing of acknowledgements.
        """

        sender = threading.Thread(target=self._send_blocks, args=(stream,))
        sender.daemon = True
        sender.start()

        try:
            self._read_updates(stream)
        finally:
            self.close()
            sender.join()
            stream.close()


    def _read_updates(self, stream):

        while True:
            try:
                update = stream.recv()
            except DecodeError as e:
                self.fail(stream, Status.BAD_REQUEST, str(e))
                return

            if update is None:
                return

            try:
                self.update(update)
            except Rejected as e:
                self.fail(stream, e.status, e.reason)
                return


    def _send_blocks(self, stream):

        while True:
            try:
                block, generation = self.next_block()
            except Rejected as e:
                self.fail(stream, e.status, e.reason)
                stream.close()
                return

            if block is None:
                return

            with self.send_lock:
                if generation != self.generation or self.state == CLOSED:
                    continue

                try:
                    stream.send(DeliverResponse(block=block))
                except Exception:
                    logger.exception('deliver stream failed')
                    self.close()
                    return


    def fail(self, stream, status, reason=''):
        """ Emit a single error response on *stream* and close the session. """

        logger.info("closing deliver session with %s: %s", Status(status).name, reason)

        with self.send_lock:
            if self.state != CLOSED:
                self.close()
                stream.send(DeliverResponse(error=status))


# end of class DeliverSession



class DeliverHandler:
    """ Run consumer streams against the ledger of one chain. """

    def __init__(self, ledger):
        self.ledger = ledger


    def handle(self, stream):
        session = DeliverSession(self.ledger)
        session.run(stream)


# end of class DeliverHandler



def reject(stream, status):
    """ Respond to a consumer stream that cannot be served at all, such as
        one naming an unknown chain, and close it.
    """

    stream.send(DeliverResponse(error=status))
    stream.close()


# vim: set expandtab tabstop=8 softtabstop=4 shiftwidth=4 autoindent:
