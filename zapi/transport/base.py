"""Transport interface to the zvelo API.

Two interchangeable transports implement :class:`Transport`:

* :class:`~zapi.transport.rpc.GRPCTransport`: gRPC over one long-lived,
  lazily dialed channel;
* :class:`~zapi.transport.rest.RESTTransport`: JSON over HTTP.

Both attach the bearer token from the configured token source to every
call, add an ``x-client-trace-id`` tag when tracing is requested, pass any
extra per-call headers (such as mock server hints) and report the server's
``uber-trace-id`` through :attr:`CallOptions.on_trace_id`.  Both produce
identical :class:`~zapi.schemas.query.QueryResult` values.
"""

from __future__ import annotations

import abc
import logging
from dataclasses import dataclass, field
from typing import AsyncIterator, Callable

from zapi.core.tracing import CLIENT_TRACE_HEADER, tracing_tag
from zapi.schemas.query import QueryReplies, QueryRequests, QueryResult, Suggestion
from zapi.tokens.base import TokenSource

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Mock server hints
# ---------------------------------------------------------------------------

MOCK_CATEGORY_HEADER = "zvelo-mock-category"
MOCK_MALICIOUS_CATEGORY_HEADER = "zvelo-mock-malicious-category"
MOCK_COMPLETE_AFTER_HEADER = "zvelo-mock-complete-after"
MOCK_FETCH_CODE_HEADER = "zvelo-mock-fetch-code"
MOCK_LOCATION_HEADER = "zvelo-mock-location"
MOCK_ERROR_CODE_HEADER = "zvelo-mock-error-code"
MOCK_ERROR_MESSAGE_HEADER = "zvelo-mock-error-message"


@dataclass
class CallOptions:
    """Per-call settings shared by both transports.

    Args:
        trace: Send a fresh ``x-client-trace-id`` tracing tag.
        headers: Extra request headers (gRPC metadata) to send.  Repeated
            values are given as a list.
        on_trace_id: Called with the ``uber-trace-id`` the server returned,
            if any.
    """

    trace: bool = False
    headers: dict[str, str | list[str]] = field(default_factory=dict)
    on_trace_id: Callable[[str], None] | None = None

    def outgoing(self) -> list[tuple[str, str]]:
        """Return the extra headers to send as ``(name, value)`` pairs."""
        pairs: list[tuple[str, str]] = []
        for name, value in self.headers.items():
            values = value if isinstance(value, list) else [value]
            pairs.extend((name.lower(), v) for v in values)
        if self.trace:
            pairs.append((CLIENT_TRACE_HEADER, tracing_tag()))
        return pairs

    def report_trace_id(self, trace_id: str | None) -> None:
        if trace_id and self.on_trace_id is not None:
            self.on_trace_id(trace_id)


async def authorization(token_source: TokenSource | None) -> str | None:
    """Return the ``Authorization`` header value, or ``None`` without credentials."""
    if token_source is None:
        return None
    token = await token_source.token()
    return token.authorization()


class Transport(abc.ABC):
    """The three logical operations of the zvelo API."""

    @abc.abstractmethod
    async def query(
        self, requests: QueryRequests, opts: CallOptions | None = None
    ) -> QueryReplies:
        """Submit URLs and/or content for analysis."""

    @abc.abstractmethod
    async def result(self, request_id: str, opts: CallOptions | None = None) -> QueryResult:
        """Fetch the current result for *request_id*."""

    @abc.abstractmethod
    async def suggest(self, suggestion: Suggestion, opts: CallOptions | None = None) -> None:
        """Submit a dataset suggestion for a URL."""

    async def close(self) -> None:
        """Release any connection held by the transport."""


class StreamingTransport(Transport):
    """A transport that can also stream results as they complete."""

    @abc.abstractmethod
    def stream(self, opts: CallOptions | None = None) -> AsyncIterator[QueryResult]:
        """Yield results pushed by the server until it ends the stream."""
