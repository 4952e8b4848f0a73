""" The block assembler consumes the ordered transaction stream and cuts it
    into hash-chained blocks. A block is cut when the pending batch reaches
    the configured size, when the configured timeout elapses with anything
    pending, or when a configuration transaction arrives: configuration
    changes take effect at a clean block boundary, so the pending batch is
    cut first and the configuration transaction is cut alone.
"""

import logging
import threading
import time

from . import json
from . import ledger
from .errors import InvariantViolation, ServiceUnavailable

logger = logging.getLogger(__name__)

SIZE = 'size'
TIMEOUT = 'timeout'
CONFIGURATION = 'configuration'


class Assembler:
    """ Accumulate ordered transactions for the *ledger* of a chain. The
        *configuration* is the chain's :class:`configtx.Manager`, consulted
        for the batch size and timeout on every decision, and notified when
        a block carrying a configuration update is appended. The
        *batch_size* and *batch_timeout* arguments are the fallbacks used
        when the chain configuration does not specify them.
    """

    def __init__(self, ledger, configuration, batch_size=10, batch_timeout=1.0):

        self.ledger = ledger
        self.configuration = configuration
        self.batch_size = batch_size
        self.batch_timeout = batch_timeout

        self.halted = False
        self.pending = list()
        self.lock = threading.Lock()

        # Every cut increments the generation, so that a timer armed for an
        # earlier batch cannot cut a later one.

        self.generation = 0
        self.timer = _BatchTimer(self.timeout_expired)


    def size(self):
        return self.configuration.batch_size(default=self.batch_size)


    def timeout(self):
        return self.configuration.batch_timeout(default=self.batch_timeout)


    def ordered(self, data, proposal=None):
        """ Accept the next transaction, *data* being its marshalled bytes,
            in its final position in the order. If the transaction is a
            configuration update, *proposal* is the validated
            :class:`configtx.ConfigurationSet` it carries; it is committed
            once its block is appended.
        """

        with self.lock:
            if self.halted == True:
                raise ServiceUnavailable('chain is halted')

            if proposal is not None:
                if self.pending:
                    self._cut(CONFIGURATION)

                self._commit([data], CONFIGURATION, proposal)
                return

            self.pending.append(data)

            if len(self.pending) >= self.size():
                self._cut(SIZE)
            elif len(self.pending) == 1:
                self.timer.arm(self.timeout(), self.generation)


    def flush(self):
        """ Cut whatever is pending into a block immediately. """

        with self.lock:
            if self.pending and self.halted == False:
                self._cut(TIMEOUT)


    def timeout_expired(self, generation):

        with self.lock:
            if generation != self.generation:
                return

            if self.pending and self.halted == False:
                self._cut(TIMEOUT)


    def stop(self):
        self.timer.stop()


    def _cut(self, reason):

        batch = self.pending
        self.pending = list()
        self._commit(batch, reason)


    def _commit(self, batch, reason, proposal=None):

        self.generation += 1
        self.timer.disarm()

        block = ledger.new_block(self.ledger.newest(), batch)
        number = block.header.number

        annotation = dict()
        annotation['cut'] = reason
        annotation['time'] = time.time()
        block.metadata.metadata.append(json.dumps(annotation))

        try:
            self.ledger.append(block)

            if proposal is not None:
                self.configuration.commit(proposal)
                annotation = dict()
                annotation['configuration'] = proposal.sequence
                self.ledger.annotate(number, json.dumps(annotation))

        except InvariantViolation as e:
            self.halted = True
            logger.critical("halting chain at block %d: %s", number, e)
            raise

        logger.debug("cut block %d (%s) with %d transaction(s)", number, reason, len(batch))


# end of class Assembler



class _BatchTimer:
    """ Background thread that invokes *callback* once the deadline set by
        :func:`arm` passes. Re-arming replaces the deadline; disarming
        clears it. Only one deadline is ever outstanding.
    """

    def __init__(self, callback):

        self.callback = callback
        self.shutdown = False

        # The deadline and the generation it belongs to, always replaced
        # together; None when disarmed.

        self.armed = None
        self.lock = threading.Lock()

        self.alarm = threading.Event()
        self.thread = threading.Thread(target=self.run)
        self.thread.daemon = True
        self.thread.start()


    def arm(self, timeout, generation):

        with self.lock:
            self.armed = (time.monotonic() + timeout, generation)

        self.alarm.set()


    def disarm(self):

        with self.lock:
            self.armed = None

        self.alarm.set()


    def stop(self):

        self.shutdown = True
        self.alarm.set()


    def run(self):

        while self.shutdown == False:
            armed = self.armed

            if armed is None:
                self.alarm.wait()
                self.alarm.clear()
                continue

            deadline, generation = armed
            delay = deadline - time.monotonic()

            if delay > 0:
                self.alarm.wait(delay)
                self.alarm.clear()
                continue

            # Only clear the deadline if nobody re-armed it in the meantime.

            with self.lock:
                if self.armed is armed:
                    self.armed = None

            try:
                self.callback(generation)
            except InvariantViolation:
                # Already logged by the assembler, which is now halted.
                pass
            except Exception:
                logger.exception('batch timeout handling failed')


# end of class _BatchTimer


# vim: set expandtab tabstop=8 softtabstop=4 shiftwidth=4 autoindent:
