"""Client tracing tags and server trace-id helpers.

When tracing is requested every outbound call carries an
``x-client-trace-id`` header with a random, time sortable tag.  The service
echoes the trace it recorded in ``uber-trace-id``; only the part before the
first ``:`` identifies the trace.
"""

from __future__ import annotations

import os
import time

CLIENT_TRACE_HEADER = "x-client-trace-id"
SERVER_TRACE_HEADER = "uber-trace-id"

_CROCKFORD = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"


def _encode(value: int, length: int) -> str:
    chars = []
    for _ in range(length):
        chars.append(_CROCKFORD[value & 0x1F])
        value >>= 5
    return "".join(reversed(chars))


def tracing_tag() -> str:
    """Return a new random, lexically sortable tracing tag.

    The tag is a 26 character ULID: 48 bits of millisecond timestamp followed
    by 80 random bits, Crockford base32 encoded.
    """
    millis = int(time.time() * 1000) & ((1 << 48) - 1)
    entropy = int.from_bytes(os.urandom(10), "big")
    return _encode(millis, 10) + _encode(entropy, 16)


def trace_id_string(trace_id: str) -> str:
    """Return the trace identifier portion of an ``uber-trace-id`` value."""
    return trace_id.split(":", 1)[0]
