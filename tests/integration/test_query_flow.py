"""Integration tests for a polled query over the JSON/HTTP transport.

Test coverage
-------------
* A query for two URLs is submitted once, both results are polled until
  complete and printed; every call carries the bearer token and the mock
  hints.
* A redirect result is followed to its destination, which is polled to
  completion; the chain depth is recorded.
* A service error on the query surfaces as TransportError with the
  service's code.

The zvelo API is simulated by a stateful handler behind
``httpx.MockTransport``; no network access is required.
"""

from __future__ import annotations

import io
import json
from typing import Any

import httpx
import pytest

from zapi.core.errors import TransportError
from zapi.core.presenter import Presenter
from zapi.core.query_engine import QueryEngine, QueryOptions
from zapi.tokens.base import StaticTokenSource, Token
from zapi.transport.base import MOCK_FETCH_CODE_HEADER
from zapi.transport.rest import RESTTransport

BASE_URL = "https://api.example.com"


# ---------------------------------------------------------------------------
# Simulated service
# ---------------------------------------------------------------------------


class MockService:
    """A small in-memory stand-in for the zvelo API.

    Each submitted URL gets a sequential request id.  A result completes on
    the second ``Result`` call; URLs listed in *redirects* complete as a
    ``301`` to the mapped location.
    """

    def __init__(self, redirects: dict[str, str] | None = None) -> None:
        self.redirects = redirects or {}
        self.requests: list[httpx.Request] = []
        self._urls: dict[str, str] = {}
        self._polls: dict[str, int] = {}

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.headers.get("authorization") != "Bearer secret-token":
            return httpx.Response(401, json={"error": "unauthenticated", "code": 16})

        if request.method == "POST" and request.url.path == "/v1/query":
            body = json.loads(request.content)
            replies = []
            for url in body.get("url", []):
                request_id = f"R{len(self._urls) + 1}"
                self._urls[request_id] = url
                replies.append({"request_id": request_id})
            return httpx.Response(200, json={"reply": replies})

        if request.method == "GET" and request.url.path.startswith("/v1/query/"):
            request_id = request.url.path.rsplit("/", 1)[-1]
            if request_id not in self._urls:
                return httpx.Response(404, json={"error": "not found", "code": 5})
            return httpx.Response(200, json=self._result(request_id))

        return httpx.Response(404)

    def _result(self, request_id: str) -> dict[str, Any]:
        self._polls[request_id] = self._polls.get(request_id, 0) + 1
        url = self._urls[request_id]
        if self._polls[request_id] < 2:
            return {"request_id": request_id, "url": url, "query_status": {}}

        status: dict[str, Any] = {"complete": True, "fetch_code": 200}
        if url in self.redirects:
            status = {"complete": True, "fetch_code": 301, "location": self.redirects[url]}
        return {
            "request_id": request_id,
            "url": url,
            "response_dataset": {"categorization": {"value": ["NEWS", "TECHNOLOGY"]}},
            "query_status": status,
        }


def _make_engine(
    service: MockService,
    token: str = "secret-token",
    **options: Any,
) -> tuple[QueryEngine, RESTTransport, io.StringIO, io.StringIO]:
    transport = RESTTransport(
        BASE_URL,
        StaticTokenSource(Token(access_token=token)),
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(service)),
    )
    out, err = io.StringIO(), io.StringIO()
    settings: dict[str, Any] = {"poll_interval": 0.01, "timeout": 5}
    settings.update(options)
    engine = QueryEngine(transport, QueryOptions(**settings), Presenter(out=out, err=err))
    return engine, transport, out, err


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_two_urls_polled_to_completion() -> None:
    service = MockService()
    engine, transport, out, err = _make_engine(
        service, headers={MOCK_FETCH_CODE_HEADER: "200"}
    )

    try:
        assert await engine.run(["a.example.com", "b.example.com"]) is None
    finally:
        await transport.close()

    queries = [r for r in service.requests if r.method == "POST"]
    assert len(queries) == 1
    assert json.loads(queries[0].content)["url"] == ["http://a.example.com", "http://b.example.com"]

    polls = [r.url.path for r in service.requests if r.method == "GET"]
    assert sorted(polls) == ["/v1/query/R1", "/v1/query/R1", "/v1/query/R2", "/v1/query/R2"]
    assert all(r.headers[MOCK_FETCH_CODE_HEADER] == "200" for r in service.requests)

    text = out.getvalue()
    assert text.count("Complete:           true") == 2
    assert "Categories:         NEWS TECHNOLOGY" in text
    assert "http://a.example.com: R1" in err.getvalue()


@pytest.mark.asyncio
async def test_redirect_followed() -> None:
    service = MockService(redirects={"http://src.example.com": "http://dst.example.com/"})
    engine, transport, out, err = _make_engine(service, redirect_limit=3)

    try:
        assert await engine.run(["src.example.com"]) is None
    finally:
        await transport.close()

    queries = [json.loads(r.content)["url"] for r in service.requests if r.method == "POST"]
    assert queries == [["http://src.example.com"], ["http://dst.example.com/"]]
    assert engine.tracker.num_redirects("R2") == 1
    assert "following redirect #1" in err.getvalue()
    assert "URL/Content:        http://dst.example.com/" in out.getvalue()
    assert engine.tracker.held == 0


@pytest.mark.asyncio
async def test_query_rejected() -> None:
    engine, transport, _, _ = _make_engine(MockService(), token="wrong")

    try:
        with pytest.raises(TransportError, match=r"http error: 401 \(16\): unauthenticated"):
            await engine.run(["a.example.com"])
    finally:
        await transport.close()
