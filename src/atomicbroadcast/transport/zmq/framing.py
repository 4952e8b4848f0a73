"""ZMQ multipart framing for stream messages.

Client to server (DEALER -> ROUTER, identity prefixed by the ROUTER):
    (identity), version, stream id, kind, target, body

Server to client (ROUTER -> DEALER):
    (identity), version, stream id, kind, target, body

*kind* is BROADCAST or DELIVER for a message on a stream of that kind, or
CLOSE to end the stream; *target* is the hex ChainID the stream is bound
to; *body* is the marshalled protocol message, empty for CLOSE.
"""

from __future__ import annotations

from typing import Sequence, Tuple

from ...errors import DecodeError
from ...protocol.fields import CLOSE, PROTOCOL_VERSION, STREAM_KINDS


_VERSION_BYTES = PROTOCOL_VERSION.encode()
_KINDS = STREAM_KINDS | frozenset((CLOSE,))

Frame = Tuple[Tuple[bytes, ...], bytes, str, str, bytes]


def to_frames(stream_id: bytes, kind: str, target: str, body: bytes = b"", prefix: Tuple[bytes, ...] = ()) -> Tuple[bytes, ...]:
    """Encode one stream message as multipart frames."""

    parts = (
        _VERSION_BYTES,
        stream_id,
        kind.encode(),
        (target or "").encode(),
        body or b"",
    )
    return tuple(prefix) + parts


def from_frames(parts: Sequence[bytes]) -> Frame:
    """Decode multipart frames into (prefix, stream id, kind, target, body).

    ROUTER sockets prepend an identity frame; it is returned as the prefix
    so that responses can be routed back to the same client.
    """

    if not parts:
        raise DecodeError("empty message")

    if parts[0] == _VERSION_BYTES:
        prefix: Tuple[bytes, ...] = ()
        start = 0
    else:
        prefix = (parts[0],)
        start = 1

    if len(parts) - start != 5:
        raise DecodeError(f"expected 5 frames, received {len(parts) - start}")

    their_version = parts[start]
    if their_version != _VERSION_BYTES:
        raise DecodeError(
            f"message is protocol {their_version!r}, recipient expects {_VERSION_BYTES!r}"
        )

    stream_id = bytes(parts[start + 1])

    try:
        kind = parts[start + 2].decode()
        target = parts[start + 3].decode()
    except UnicodeDecodeError as exc:
        raise DecodeError("stream kind or target is not valid UTF-8") from exc

    if kind not in _KINDS:
        raise DecodeError(f"unknown stream kind {kind!r}")

    body = bytes(parts[start + 4])
    return prefix, stream_id, kind, target, body
