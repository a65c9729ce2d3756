"""Poll pending requests until their results are complete.

The poller is given a mapping of request id → display label and a handler.
It performs one pass immediately and then, unless ``once`` is set, another
pass every ``interval`` seconds until no request is pending.  Cancelling the
task running :meth:`Poller.poll` stops it at the next suspension point.

Each pass fetches the result of every pending request concurrently:

1. a failed fetch is logged and the request stays pending for the next pass;
2. the handler is called with the result and returns zero or more new
   ``request id → label`` entries (e.g. a followed redirect) that are added
   to the pending mapping;
3. a result that is not yet complete stays pending.

When the same request id is both still pending and returned by the handler,
it is kept once with the handler's label.

Usage::

    poller = Poller(transport, interval=1.0)
    await poller.poll({"R1": "http://example.com"}, handler)
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from opentelemetry import trace
from prometheus_client import Counter

from zapi.core.errors import ZapiError
from zapi.schemas.query import QueryResult, is_complete
from zapi.transport.base import CallOptions, Transport

logger = logging.getLogger(__name__)

tracer = trace.get_tracer("zapi.poller")

#: Incremented for every failed result fetch.
poll_errors_total = Counter(
    "zapi_poll_errors_total",
    "Total number of failed result fetches while polling",
)

#: Pending requests: request id → display label.
Requests = dict[str, str]


@dataclass
class Fetch:
    """How a polled result was obtained.

    Args:
        started: Monotonic time the fetch began.
        trace_id: The server trace id returned with the result, if any.
    """

    started: float
    trace_id: str = ""

    def set_trace_id(self, trace_id: str) -> None:
        self.trace_id = trace_id


#: Called with each fetched result.  Returns new requests to poll.
ResultHandler = Callable[[QueryResult, Fetch], Awaitable[Optional[Requests]]]


class Poller:
    """Drive pending requests to completion.

    Args:
        transport: Used to fetch results.
        interval: Seconds between passes.
        once: Perform a single pass only.
        trace: Send a tracing tag with every fetch.
        headers: Extra headers sent with every fetch.
    """

    def __init__(
        self,
        transport: Transport,
        interval: float = 1.0,
        once: bool = False,
        trace: bool = False,
        headers: dict[str, str | list[str]] | None = None,
    ) -> None:
        self._transport = transport
        self.interval = interval
        self.once = once
        self._trace = trace
        self._headers = dict(headers or {})

    async def poll(self, requests: Requests, handler: ResultHandler) -> None:
        """Poll *requests* until none is pending (or one pass with ``once``)."""
        pending = dict(requests)
        passes = 0

        while pending:
            passes += 1
            pending = await self._pass(pending, handler, passes)
            if self.once or not pending:
                break
            await asyncio.sleep(self.interval)

        logger.debug("Polling finished after %d pass(es)", passes)

    async def _pass(self, pending: Requests, handler: ResultHandler, number: int) -> Requests:
        with tracer.start_as_current_span("zapi.poll") as span:
            span.set_attribute("poll.pass", number)
            span.set_attribute("poll.pending", len(pending))

            outcomes = await asyncio.gather(
                *(self._poll_one(req_id, label, handler) for req_id, label in pending.items())
            )

            remaining: Requests = {}
            for keep, _ in outcomes:
                remaining.update(keep)
            for _, spawned in outcomes:
                remaining.update(spawned)

            span.set_attribute("poll.remaining", len(remaining))
            return remaining

    async def _poll_one(
        self,
        req_id: str,
        label: str,
        handler: ResultHandler,
    ) -> tuple[Requests, Requests]:
        fetch = Fetch(started=time.monotonic())
        opts = CallOptions(
            trace=self._trace,
            headers=self._headers,
            on_trace_id=fetch.set_trace_id,
        )

        try:
            result = await self._transport.result(req_id, opts)
        except ZapiError as exc:
            poll_errors_total.inc()
            logger.warning("Error polling %s (%s): %s", req_id, label, exc)
            return {req_id: label}, {}

        spawned = await handler(result, fetch) or {}

        keep: Requests = {}
        if not is_complete(result):
            keep[req_id] = label
        return keep, dict(spawned)
