"""Unit tests for zapi/transport/rest.py.

Coverage targets:
* Query/Result/Suggest hit the documented paths with JSON bodies.
* Bearer token, extra headers and client trace tag are attached.
* The server trace id is reported through CallOptions.
* Non-2xx responses raise TransportError with the service code when present;
  malformed error bodies and stream items also raise TransportError.
* The stream endpoint yields NDJSON results and surfaces stream errors.
"""

from __future__ import annotations

import json
from typing import Callable

import httpx
import pytest

from zapi.core.errors import TransportError
from zapi.core.tracing import CLIENT_TRACE_HEADER, SERVER_TRACE_HEADER
from zapi.schemas.dataset import Category, Dataset, DatasetType
from zapi.schemas.query import QueryRequests, Suggestion
from zapi.tokens.base import StaticTokenSource, Token
from zapi.transport.base import MOCK_CATEGORY_HEADER, CallOptions
from zapi.transport.rest import RESTTransport

BASE_URL = "https://api.example.com"

Handler = Callable[[httpx.Request], httpx.Response]


def _make_transport(handler: Handler, token: str | None = "tok") -> RESTTransport:
    source = StaticTokenSource(Token(access_token=token)) if token else None
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return RESTTransport(BASE_URL + "/", source, http_client=client)


class TestUnaryCalls:
    @pytest.mark.asyncio
    async def test_query(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"reply": [{"request_id": "r1"}, {"request_id": "r2"}]})

        transport = _make_transport(handler)
        replies = await transport.query(
            QueryRequests(url=["http://a.com", "http://b.com"], dataset=[DatasetType.CATEGORIZATION])
        )

        assert [r.request_id for r in replies.reply] == ["r1", "r2"]
        request = seen[0]
        assert request.method == "POST"
        assert str(request.url) == f"{BASE_URL}/v1/query"
        assert request.headers["authorization"] == "Bearer tok"
        assert request.headers["content-type"] == "application/json"
        body = json.loads(request.content)
        assert body["url"] == ["http://a.com", "http://b.com"]
        assert body["dataset"] == ["CATEGORIZATION"]
        assert "dataset_hints" not in body

    @pytest.mark.asyncio
    async def test_result(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.method == "GET"
            assert request.url.path == "/v1/query/r1"
            return httpx.Response(
                200,
                json={
                    "request_id": "r1",
                    "url": "http://a.com",
                    "response_dataset": {"categorization": {"value": ["BLOG", "NEWS"]}},
                    "query_status": {"complete": True, "fetch_code": 200},
                },
            )

        result = await _make_transport(handler).result("r1")

        assert result.request_id == "r1"
        assert result.response_dataset is not None
        assert result.response_dataset.categorization is not None
        assert result.response_dataset.categorization.value == [Category.BLOG, Category.NEWS]
        assert result.query_status is not None and result.query_status.complete

    @pytest.mark.asyncio
    async def test_suggest(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={})

        suggestion = Suggestion.model_validate(
            {"url": "http://a.com", "dataset": {"categorization": {"value": ["NEWS"]}}}
        )
        await _make_transport(handler).suggest(suggestion)

        assert seen[0].url.path == "/v1/suggest"
        assert json.loads(seen[0].content) == {
            "url": "http://a.com",
            "dataset": {"categorization": {"value": ["NEWS"]}},
        }

    @pytest.mark.asyncio
    async def test_graphql_returns_raw_body(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert json.loads(request.content) == {"query": "{ viewer }"}
            return httpx.Response(200, text='{"data":{}}')

        assert await _make_transport(handler).graphql("{ viewer }") == '{"data":{}}'

    @pytest.mark.asyncio
    async def test_without_credentials(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={})

        await _make_transport(handler, token=None).result("r1")
        assert "authorization" not in seen[0].headers

    @pytest.mark.asyncio
    async def test_call_options(self) -> None:
        seen: list[httpx.Request] = []
        trace_ids: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={}, headers={SERVER_TRACE_HEADER: "abc123:1:0:1"})

        opts = CallOptions(
            trace=True,
            headers={MOCK_CATEGORY_HEADER: ["BLOG", "NEWS"]},
            on_trace_id=trace_ids.append,
        )
        await _make_transport(handler).result("r1", opts)

        headers = seen[0].headers
        assert len(headers[CLIENT_TRACE_HEADER]) == 26
        assert headers.get_list(MOCK_CATEGORY_HEADER) == ["BLOG", "NEWS"]
        assert trace_ids == ["abc123:1:0:1"]

    @pytest.mark.asyncio
    async def test_response_hook(self) -> None:
        observed: list[int] = []
        client = httpx.AsyncClient(
            transport=httpx.MockTransport(lambda request: httpx.Response(200, json={}))
        )
        transport = RESTTransport(
            BASE_URL, None, http_client=client, on_response=lambda r: observed.append(r.status_code)
        )

        await transport.suggest(Suggestion(url="http://a.com"))

        assert observed == [200]


class TestErrors:
    @pytest.mark.asyncio
    async def test_service_error_payload(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(404, json={"error": "not found", "code": 5})

        with pytest.raises(TransportError, match=r"http error: 404 \(5\): not found") as info:
            await _make_transport(handler).result("missing")
        assert info.value.status == 404
        assert info.value.code == 5

    @pytest.mark.asyncio
    async def test_plain_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(502, text="bad gateway")

        with pytest.raises(TransportError, match="^http error: 502$"):
            await _make_transport(handler).result("r1")

    @pytest.mark.asyncio
    async def test_network_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(TransportError, match="refused"):
            await _make_transport(handler).result("r1")

    @pytest.mark.asyncio
    async def test_invalid_response(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"reply": "nope"})

        with pytest.raises(TransportError, match="invalid response"):
            await _make_transport(handler).query(QueryRequests(url=["http://a.com"]))

    @pytest.mark.asyncio
    async def test_non_numeric_error_code(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(404, json={"error": "not found", "code": "NotFound"})

        with pytest.raises(TransportError, match="^http error: 404$") as info:
            await _make_transport(handler).result("missing")
        assert info.value.status == 404
        assert info.value.code is None

    @pytest.mark.asyncio
    async def test_non_object_error_body(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500, json=["boom"])

        with pytest.raises(TransportError, match="^http error: 500$"):
            await _make_transport(handler).result("r1")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [201, 204])
    async def test_any_2xx_is_success(self, status: int) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(status)

        await _make_transport(handler).suggest(Suggestion(url="http://a.com"))


class TestStream:
    @pytest.mark.asyncio
    async def test_yields_results(self) -> None:
        lines = [
            {"result": {"request_id": "r1", "query_status": {"complete": True}}},
            {},
            {"result": {"request_id": "r2", "response_dataset": {"language": {"code": "en"}}}},
        ]
        body = "\n".join(json.dumps(line) for line in lines) + "\n\n"

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/v1/stream"
            return httpx.Response(200, text=body)

        results = [r async for r in _make_transport(handler).stream()]

        assert [r.request_id for r in results] == ["r1", "", "r2"]
        assert results[2].response_dataset == Dataset.model_validate({"language": {"code": "en"}})

    @pytest.mark.asyncio
    async def test_stream_error_item(self) -> None:
        body = json.dumps({"error": {"grpc_code": 14, "message": "unavailable"}})

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text=body)

        with pytest.raises(TransportError, match=r"stream error \(14\): unavailable"):
            async for _ in _make_transport(handler).stream():
                pass

    @pytest.mark.asyncio
    async def test_stream_status_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(401, json={"error": "unauthenticated", "code": 16})

        with pytest.raises(TransportError, match=r"401 \(16\)"):
            async for _ in _make_transport(handler).stream():
                pass

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "line, message",
        [
            ("[1]", "not an object"),
            ('{"error": "gone"}', "stream error: gone"),
            ('{"error": {"grpc_code": "x", "message": "odd"}}', r"stream error \(0\): odd"),
            ('{"result": [1]}', "result is not an object"),
        ],
    )
    async def test_malformed_stream_item(self, line: str, message: str) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text=line + "\n")

        with pytest.raises(TransportError, match=message):
            async for _ in _make_transport(handler).stream():
                pass


@pytest.mark.asyncio
async def test_close_keeps_shared_client() -> None:
    client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200)))
    transport = RESTTransport(BASE_URL, http_client=client)
    await transport.close()
    assert not client.is_closed
