""" Python implementation of an atomic broadcast ordering service. This
    includes the service side, which totally orders transactions into
    hash-chained blocks and streams them to consumers, and client helpers
    for producers and consumers.
"""

# Utility components.

from . import json
from . import weakref

# Submodules used by multiple other components.

from . import protocol
from . import errors
from . import crypto
from . import policy
from . import config

# Service components.

from . import configtx
from . import ledger
from . import assembler
from . import broadcast
from . import deliver
from . import transport

# Primary public-facing interfaces.

from .chain import Chain
from .client import Client
from .daemon import Daemon

# vim: set expandtab tabstop=8 softtabstop=4 shiftwidth=4 autoindent:
