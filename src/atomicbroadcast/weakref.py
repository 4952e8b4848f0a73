
import weakref


def ref(thing, callback=None):
    """ Return a weak reference to the supplied argument, regardless of
        whether it is a plain callable or a bound method. The ledger holds
        its listeners this way so that an abandoned Deliver session does
        not linger just because it once asked to be notified of new blocks.
        The optional *callback* is invoked with the dead reference once the
        referent is collected.
    """

    try:
        thing.__func__
        thing.__self__
    except AttributeError:
        return weakref.ref(thing, callback)
    else:
        return weakref.WeakMethod(thing, callback)


# vim: set expandtab tabstop=8 softtabstop=4 shiftwidth=4 autoindent:
