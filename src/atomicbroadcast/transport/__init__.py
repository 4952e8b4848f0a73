"""Transport layer implementations."""

import os

from .base import (
    Stream,
    TransportError,
    TransportTimeout,
    TransportConnectionError,
    TransportPortError,
)
from . import local

_BACKEND = os.environ.get("ATOMICBROADCAST_TRANSPORT", "zmq")

if _BACKEND == "zmq":
    from .zmq import stream
    from .zmq.stream import Client, Server
else:
    raise ImportError(f"unknown ATOMICBROADCAST_TRANSPORT backend: {_BACKEND!r}")
