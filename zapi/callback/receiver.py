"""ASGI application receiving results pushed by the zvelo API.

The service POSTs the JSON encoding of a
:class:`~zapi.schemas.query.QueryResult` to the callback URL given with a
query.  Each request passes, outermost first, through:

1. **signature verification** (optional): :class:`HTTPSignatureMiddleware`
   with the ``Signature`` header; invalid requests are answered ``400``;
2. **decoding**: an empty body is answered ``400``; a body that is not a
   valid result is dropped with ``200`` (the service retries pushes);
3. **the handler**: called with the decoded result; the request is answered
   ``200``, or ``500`` if the handler raised.

Usage::

    app = create_receiver_app(handler, key_getter=KeyGetter(FileKeyCache()))
    await Listener(app, ":8080").serve()
"""

from __future__ import annotations

import inspect
import json
import logging
from typing import Any, Awaitable, Callable, Union

from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse
from prometheus_client import Counter
from pydantic import ValidationError

from zapi.httpsig.middleware import HTTPSignatureMiddleware, KeyGetter
from zapi.httpsig.signature import HeaderType
from zapi.schemas.query import QueryResult

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Prometheus metrics
# ---------------------------------------------------------------------------

#: Callback requests that reached the decoder, by outcome
#: ("accepted" | "empty" | "dropped" | "failed").
callbacks_total = Counter(
    "zapi_callbacks_total",
    "Total number of callback requests received",
    ["outcome"],
)

ResultHandler = Callable[[QueryResult], Union[Awaitable[None], None]]


def create_receiver_app(
    handler: ResultHandler,
    key_getter: KeyGetter | None = None,
) -> FastAPI:
    """Return the callback receiver application.

    Args:
        handler: Called with every decoded result.  May be a coroutine
            function.
        key_getter: Resolves signature key ids.  When ``None`` signatures are
            not verified.
    """
    app = FastAPI(title="zapi callback receiver", docs_url=None, redoc_url=None, openapi_url=None)

    if key_getter is not None:
        app.add_middleware(
            HTTPSignatureMiddleware,
            key_getter=key_getter,
            header_type=HeaderType.SIGNATURE,
        )

    @app.post("/{path:path}")
    async def receive(request: Request) -> Any:
        body = await request.body()
        if not body:
            callbacks_total.labels(outcome="empty").inc()
            return PlainTextResponse("no body", status_code=400)

        try:
            result = QueryResult.model_validate(json.loads(body))
        except (ValueError, ValidationError) as exc:
            callbacks_total.labels(outcome="dropped").inc()
            logger.warning("Dropping undecodable callback body: %s", exc)
            return PlainTextResponse("", status_code=200)

        try:
            outcome = handler(result)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception:  # noqa: BLE001
            callbacks_total.labels(outcome="failed").inc()
            logger.exception("Callback handler failed for request_id=%s", result.request_id)
            return PlainTextResponse("internal server error", status_code=500)

        callbacks_total.labels(outcome="accepted").inc()
        logger.debug("Accepted callback for request_id=%s", result.request_id)
        return PlainTextResponse("", status_code=200)

    return app
