''' Select the most performant available library to handle the equivalent
    of :func:`json.loads` and :func:`json.dumps`. Settings files and block
    metadata annotations are both encoded here, so the output of
    :func:`dumps` is always bytes regardless of which library is in use.
'''

# The business about conditionally importing the libraries is intended to
# avoid importing less efficient libraries if they are not available.

msgspec = None
orjson = None
json = None

try:
    import msgspec
except ImportError:
    pass

if msgspec is None:
    try:
        import orjson
    except ImportError:
        pass

if msgspec is None and orjson is None:
    import json


def _json_dumps(value):
    return json.dumps(value, separators=(',', ':'), sort_keys=True).encode()


if msgspec is not None:
    _encoder = msgspec.json.Encoder(order='sorted')
    _decoder = msgspec.json.Decoder()
    dumps = _encoder.encode
    loads = _decoder.decode
    DecodeError = msgspec.DecodeError
elif orjson is not None:
    def dumps(value):
        return orjson.dumps(value, option=orjson.OPT_SORT_KEYS)
    loads = orjson.loads
    DecodeError = orjson.JSONDecodeError
else:
    dumps = _json_dumps
    loads = json.loads
    DecodeError = ValueError


def load(filename):
    ''' Read and decode the JSON contents of *filename*. A missing file is
        left for the caller to handle; malformed contents raise ValueError
        naming the offending file.
    '''

    with open(filename, 'rb') as contents:
        raw_json = contents.read()

    try:
        return loads(raw_json)
    except DecodeError as e:
        raise ValueError('cannot decode JSON in %s: %s' % (filename, e)) from e


# vim: set expandtab tabstop=8 softtabstop=4 shiftwidth=4 autoindent:
