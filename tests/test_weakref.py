import atomicbroadcast


class Listener:
    def appended(self):
        pass


def test_function_reference():

    def appended():
        pass

    reference = atomicbroadcast.weakref.ref(appended)
    assert callable(reference)
    assert reference() is appended


def test_method_reference():
    """ A bound method is created anew on every attribute access, so a plain
        weak reference to one dies immediately. The wrapper must keep it
        alive for as long as the instance is alive.
    """

    listener = Listener()

    reference = atomicbroadcast.weakref.ref(listener.appended)
    dereferenced = reference()

    assert dereferenced is not None
    assert dereferenced == listener.appended


def test_method_reference_dies_with_instance():

    listener = Listener()
    forgotten = list()

    reference = atomicbroadcast.weakref.ref(listener.appended, forgotten.append)
    del listener

    assert reference() is None
    assert forgotten == [reference]


def test_object_reference_dies():

    listener = Listener()

    reference = atomicbroadcast.weakref.ref(listener)
    assert reference() is listener

    del listener
    assert reference() is None


# vim: set expandtab tabstop=8 softtabstop=4 shiftwidth=4 autoindent:
