""" The ordering service daemon: a set of chains, keyed by ChainID, served
    over a single transport server. Every stream a client opens names the
    chain it is for; the daemon hands the stream to the Broadcast or
    Deliver handler of that chain.
"""

import argparse
import logging
import signal
import sys
import threading

from . import broadcast
from . import config
from . import deliver
from . import transport
from .chain import Chain
from .errors import NotFound
from .protocol.fields import BROADCAST, DELIVER, Status

logger = logging.getLogger(__name__)


class Daemon:
    """ Create a daemon from *settings*, a dictionary as returned by
        :func:`config.load`. The chain described by the settings is created
        immediately; call :func:`serve` to start accepting streams.
    """

    def __init__(self, settings):

        self.settings = settings
        self.chains = dict()
        self.lock = threading.Lock()
        self.server = None
        self.evaluator = config.evaluator(settings)

        self.add(config.genesis(settings))


    def add(self, genesis):
        """ Create a new :class:`Chain` from the *genesis*
            :class:`ConfigurationEnvelope` and start serving it. Returns the
            new chain.
        """

        settings = self.settings

        chain = Chain(genesis, self.evaluator,
                batch_size=settings['batch_size'],
                batch_timeout=settings['batch_timeout'],
                max_message_bytes=settings['max_message_bytes'])

        with self.lock:
            if chain.chain_id in self.chains:
                chain.stop()
                raise ValueError('chain %s already exists' % (chain.chain_id.hex()))

            self.chains[chain.chain_id] = chain

        return chain


    def chain(self, chain_id):
        """ Return the :class:`Chain` for *chain_id*, or raise
            :class:`NotFound`.
        """

        try:
            return self.chains[chain_id]
        except KeyError:
            raise NotFound('no chain %s' % (chain_id.hex()))


    def serve(self, port=None):
        """ Start the transport server, on *port* if specified, otherwise on
            the port named in the settings.
        """

        if port is None:
            port = self.settings['port']

        address = self.settings['address']

        # The requested port may already be in use; let a new one be
        # assigned when that happens.

        try:
            self.server = transport.Server(self.handle, address, port)
        except transport.TransportPortError:
            logger.warning("port %s is not available, choosing another", port)
            self.server = transport.Server(self.handle, address, None)

        logger.info("listening on %s:%d", address, self.server.port)
        return self.server


    def handle(self, stream, kind, target):
        """ Run a newly opened *stream* of *kind* (BROADCAST or DELIVER) for
            the chain whose ChainID is hex-encoded as *target*.
        """

        try:
            chain = self.chain(bytes.fromhex(target))
        except (ValueError, NotFound):
            chain = None

        if chain is None:
            logger.info("rejecting %s stream for unknown chain '%s'", kind, target)

            if kind == BROADCAST:
                broadcast.reject(stream, Status.NOT_FOUND)
            else:
                deliver.reject(stream, Status.NOT_FOUND)
            return

        if kind == BROADCAST:
            chain.broadcast_handler().handle(stream)
        elif kind == DELIVER:
            chain.deliver_handler().handle(stream)
        else:
            raise ValueError('unknown stream kind: ' + repr(kind))


    def stop(self):

        if self.server is not None:
            self.server.close()
            self.server = None

        with self.lock:
            chains = list(self.chains.values())

        for chain in chains:
            chain.stop()


# end of class Daemon



def arguments(argv=None):

    parser = argparse.ArgumentParser(description='Run the atomic broadcast ordering service.')

    parser.add_argument('--config', default=None,
        help='JSON settings file; defaults to $ATOMICBROADCAST_CONFIG')
    parser.add_argument('--port', type=int, default=None,
        help='port to listen on, overriding the settings file')
    parser.add_argument('--verbose', action='store_true',
        help='log at DEBUG level')

    return parser.parse_args(argv)



def main(argv=None):

    args = arguments(argv)

    if args.verbose:
        level = logging.DEBUG
    else:
        level = logging.INFO

    logging.basicConfig(level=level, format='%(asctime)s %(levelname)s %(name)s: %(message)s')

    try:
        settings = config.load(args.config)
    except (OSError, ValueError) as e:
        logger.error("cannot load settings: %s", e)
        return 1

    if args.port is not None:
        settings['port'] = args.port

    daemon = Daemon(settings)

    try:
        daemon.serve()
    except transport.TransportPortError as e:
        logger.error("%s", e)
        daemon.stop()
        return 1

    done = threading.Event()

    def interrupted(signum, frame):
        done.set()

    signal.signal(signal.SIGINT, interrupted)
    signal.signal(signal.SIGTERM, interrupted)

    while not done.is_set():
        done.wait(1)

    logger.info("shutting down")
    daemon.stop()
    return 0


if __name__ == '__main__':
    sys.exit(main())


# vim: set expandtab tabstop=8 softtabstop=4 shiftwidth=4 autoindent:
