from . import fields
from . import wire
from . import message

from .fields import BROADCAST, CLOSE, DELIVER, PROTOCOL_VERSION, STREAM_KINDS
from .fields import ConfigurationType, StartType, Status
from .message import (
    Acknowledgement,
    Block,
    BlockData,
    BlockHeader,
    BlockMetadata,
    BroadcastMessage,
    BroadcastResponse,
    Configuration,
    ConfigurationEntry,
    ConfigurationEnvelope,
    DeliverResponse,
    DeliverUpdate,
    NOutOf,
    PayloadEnvelope,
    Policy,
    SeekInfo,
    SignaturePolicy,
    SignaturePolicyEnvelope,
    SignedData,
    Transaction,
)


"""
Atomic Broadcast Protocol Layer
===============================

This package defines the transport-agnostic message contract of the
ordering service: the Broadcast and Deliver stream messages, the block
structure, and the configuration and policy messages carried inside
transactions.

The protocol layer MUST NOT depend on any transport implementation
(e.g. ZeroMQ, in-memory pipes).

---------------------------------------------------------------------

Layer Architecture Overview
---------------------------

Service Code (broadcast.py, deliver.py, configtx.py)
    Consumes and produces message instances

    │
    ▼
Message Model (message.py)
    Declarative message schemas
    - Field numbers are the interoperability contract
    - oneof members modeled as closed tagged unions

    │
    ▼
Field Codec (wire.py)
    Protocol-buffer compatible varint / length-delimited encoding

    │
    ▼
Constants (fields.py)
    Status codes, enumerations, stream kinds

---------------------------------------------------------------------

Below the Protocol Layer (for context)
--------------------------------------

Transport Layer
    Moves marshalled messages between stream endpoints
    - in-memory pipe
    - ZeroMQ

---------------------------------------------------------------------
"""


# vim: set expandtab tabstop=8 softtabstop=4 shiftwidth=4 autoindent:
