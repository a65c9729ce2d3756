"""JSON-over-HTTP transport to the zvelo API.

Endpoints (relative to the base URL):

============  =========================  ===========================
Operation     Request                    Body
============  =========================  ===========================
Query         ``POST /v1/query``         :class:`QueryRequests`
Result        ``GET /v1/query/{id}``     (none)
Suggest       ``POST /v1/suggest``       :class:`Suggestion`
GraphQL       ``POST /v1/graphql``       ``{"query": "..."}``
Stream        ``GET /v1/stream``         (none)
============  =========================  ===========================

Any response outside the 2xx range raises :class:`TransportError`.  When the
body decodes as ``{"error": ..., "code": ...}`` the service's code and
message are included; otherwise the message is ``http error: <status>``.

Usage::

    transport = RESTTransport("https://api.zvelo.com", token_source)
    replies = await transport.query(QueryRequests(url=["http://example.com"]))
"""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator, Callable

import httpx
from pydantic import ValidationError

from zapi.core.errors import TransportError
from zapi.core.tracing import SERVER_TRACE_HEADER
from zapi.schemas.query import QueryReplies, QueryRequests, QueryResult, Suggestion
from zapi.tokens.base import TokenSource
from zapi.transport.base import CallOptions, StreamingTransport, authorization

logger = logging.getLogger(__name__)

QUERY_V1_PATH = "/v1/query"
SUGGEST_V1_PATH = "/v1/suggest"
STREAM_V1_PATH = "/v1/stream"
GRAPHQL_V1_PATH = "/v1/graphql"

#: Maximum seconds to wait for a single unary call.
_HTTP_TIMEOUT = 30.0


def _is_success(status_code: int) -> bool:
    return 200 <= status_code < 300


def _error_code(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _raise_for_status(response: httpx.Response, body: bytes) -> None:
    if _is_success(response.status_code):
        return

    try:
        payload = json.loads(body)
    except ValueError:
        payload = None

    if isinstance(payload, dict) and payload.get("error"):
        code = _error_code(payload.get("code"))
        if code:
            raise TransportError(
                f"http error: {response.status_code} ({code}): {payload['error']}",
                status=response.status_code,
                code=code,
            )

    raise TransportError(
        f"http error: {response.status_code}",
        status=response.status_code,
    )


class RESTTransport(StreamingTransport):
    """zvelo API client over JSON/HTTP.

    Args:
        base_url: Scheme and authority of the API, e.g.
            ``"https://api.zvelo.com"``.
        token_source: Provides bearer tokens; ``None`` sends no credentials.
        verify: Verify TLS certificates.
        http_client: Optional shared :class:`httpx.AsyncClient`.  When
            ``None`` a client is created on first use and closed by
            :meth:`close`.
        on_response: Hook called with every response received, e.g. to
            inspect headers.
    """

    def __init__(
        self,
        base_url: str,
        token_source: TokenSource | None = None,
        verify: bool = True,
        http_client: httpx.AsyncClient | None = None,
        on_response: Callable[[httpx.Response], None] | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._token_source = token_source
        self._verify = verify
        self._http_client = http_client
        self._owns_client = http_client is None
        self._on_response = on_response

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def query(
        self, requests: QueryRequests, opts: CallOptions | None = None
    ) -> QueryReplies:
        body = await self._call("POST", QUERY_V1_PATH, _dump(requests), opts)
        return _load(QueryReplies, body)

    async def result(self, request_id: str, opts: CallOptions | None = None) -> QueryResult:
        body = await self._call("GET", f"{QUERY_V1_PATH}/{request_id}", None, opts)
        return _load(QueryResult, body)

    async def suggest(self, suggestion: Suggestion, opts: CallOptions | None = None) -> None:
        await self._call("POST", SUGGEST_V1_PATH, _dump(suggestion), opts)

    async def graphql(self, query: str, opts: CallOptions | None = None) -> str:
        """Run a GraphQL *query* and return the raw JSON response body."""
        content = json.dumps({"query": query}).encode("utf-8")
        body = await self._call("POST", GRAPHQL_V1_PATH, content, opts)
        return body.decode("utf-8")

    async def stream(self, opts: CallOptions | None = None) -> AsyncIterator[QueryResult]:
        opts = opts or CallOptions()
        client = self._client()
        request = client.build_request(
            "GET", self.base_url + STREAM_V1_PATH, headers=await self._headers(opts)
        )
        try:
            response = await client.send(request, stream=True)
        except httpx.RequestError as exc:
            raise TransportError(f"stream error: {exc}") from exc

        try:
            self._observe(response, opts)
            if not _is_success(response.status_code):
                _raise_for_status(response, await response.aread())

            async for line in response.aiter_lines():
                line = line.strip()
                if not line:
                    continue
                yield _stream_item(line)
        finally:
            await response.aclose()

    async def close(self) -> None:
        if self._owns_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(verify=self._verify, timeout=_HTTP_TIMEOUT)
        return self._http_client

    async def _headers(self, opts: CallOptions) -> list[tuple[str, str]]:
        headers = [("content-type", "application/json")]
        auth = await authorization(self._token_source)
        if auth:
            headers.append(("authorization", auth))
        headers.extend(opts.outgoing())
        return headers

    def _observe(self, response: httpx.Response, opts: CallOptions) -> None:
        logger.debug(
            "%s %s -> %d",
            response.request.method,
            response.request.url,
            response.status_code,
        )
        if self._on_response is not None:
            self._on_response(response)
        opts.report_trace_id(response.headers.get(SERVER_TRACE_HEADER))

    async def _call(
        self,
        method: str,
        path: str,
        content: bytes | None,
        opts: CallOptions | None,
    ) -> bytes:
        opts = opts or CallOptions()
        client = self._client()
        try:
            response = await client.request(
                method,
                self.base_url + path,
                content=content,
                headers=await self._headers(opts),
            )
        except httpx.RequestError as exc:
            raise TransportError(f"{method} {path}: {exc}") from exc

        self._observe(response, opts)
        _raise_for_status(response, response.content)
        return response.content


def _dump(model: Any) -> bytes:
    return model.model_dump_json(exclude_none=True).encode("utf-8")


def _load(model: Any, body: bytes) -> Any:
    try:
        return model.model_validate_json(body or b"{}")
    except ValidationError as exc:
        raise TransportError(f"invalid response: {exc}") from exc


def _stream_item(line: str) -> QueryResult:
    try:
        item = json.loads(line)
    except ValueError as exc:
        raise TransportError(f"invalid stream item: {exc}") from exc
    if not isinstance(item, dict):
        raise TransportError("invalid stream item: not an object")

    error = item.get("error")
    if error:
        if not isinstance(error, dict):
            raise TransportError(f"stream error: {error}")
        code = _error_code(error.get("grpc_code")) or 0
        raise TransportError(f"stream error ({code}): {error.get('message', '')}", code=code)

    result = item.get("result") or {}
    if not isinstance(result, dict):
        raise TransportError("invalid stream item: result is not an object")
    try:
        return QueryResult.model_validate(result)
    except ValidationError as exc:
        raise TransportError(f"invalid stream item: {exc}") from exc
