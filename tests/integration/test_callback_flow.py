"""Integration tests for a query whose results are pushed to a callback.

Test coverage
-------------
* The query carries the callback URL and polling is disabled.
* A signed push for the acknowledged request is verified with a key
  fetched from the (simulated) key endpoint and ends the wait.
* An unsigned push is rejected with 400 and does not end the wait.
* A push with an undecodable body is dropped with 200.
* The key set is fetched once and then served from the cache.

The listener is replaced by a stub that records the receiver application;
pushes are delivered in-process through ``httpx.ASGITransport``.
"""

from __future__ import annotations

import asyncio
import io
import json
from typing import Any
from unittest.mock import AsyncMock, patch

import httpx
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from jose import jwk

from zapi.callback.keycache import MemoryKeyCache
from zapi.callback.keygetter import KeyGetter
from zapi.core.presenter import Presenter
from zapi.core.query_engine import QueryEngine, QueryOptions
from zapi.httpsig.algorithm import Algorithm
from zapi.httpsig.signature import sign_request
from zapi.schemas.query import QueryReplies
from zapi.transport.base import Transport

KEY_ID = "https://api.zvelo.com/keys/callback"
CALLBACK_URL = "https://client.example.com/zvelo"


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(scope="module")
def signing_key() -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


class _StubListener:
    """Records the application instead of binding a socket."""

    instances: list["_StubListener"] = []

    def __init__(self, app: Any, addr: str, debug: bool = False) -> None:
        self.app = app
        self.addr = addr
        self.stopped = False
        _StubListener.instances.append(self)

    async def start(self) -> None:
        return None

    async def stop(self) -> None:
        self.stopped = True


def _key_endpoint(signing_key: rsa.RSAPrivateKey, calls: list[str]) -> httpx.AsyncClient:
    pem = signing_key.public_key().public_bytes(
        serialization.Encoding.PEM,
        serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    keyset = {"keys": [dict(jwk.construct(pem, "RS256").to_dict(), kid="public")]}

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(str(request.url))
        return httpx.Response(200, json=keyset)

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def _make_transport() -> AsyncMock:
    transport = AsyncMock(spec=Transport)
    transport.query.return_value = QueryReplies.model_validate({"reply": [{"request_id": "R1"}]})
    return transport


async def _push(app: Any, body: bytes, signing_key: rsa.RSAPrivateKey | None = None) -> httpx.Response:
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://client.example.com") as client:
        request = client.build_request(
            "POST", "/zvelo", content=body, headers={"Content-Type": "application/json"}
        )
        if signing_key is not None:
            sign_request(request, Algorithm.RSA_SHA256, KEY_ID, signing_key)
        return await client.send(request)


async def _wait_for_listener(engine: QueryEngine) -> _StubListener:
    while not _StubListener.instances or engine.tracker.held == 0:
        await asyncio.sleep(0.01)
    return _StubListener.instances[-1]


RESULT = {
    "request_id": "R1",
    "url": "http://example.com",
    "response_dataset": {"categorization": {"value": ["NEWS"]}},
    "query_status": {"complete": True, "fetch_code": 200},
}


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_signed_callback_completes_query(signing_key: rsa.RSAPrivateKey) -> None:
    _StubListener.instances.clear()
    key_calls: list[str] = []
    transport = _make_transport()
    out, err = io.StringIO(), io.StringIO()
    engine = QueryEngine(
        transport,
        QueryOptions(callback=CALLBACK_URL, listen="127.0.0.1:8080", timeout=5),
        Presenter(out=out, err=err),
        key_getter=KeyGetter(cache=MemoryKeyCache(), http_client=_key_endpoint(signing_key, key_calls)),
    )

    with patch("zapi.core.query_engine.Listener", _StubListener):
        run = asyncio.create_task(engine.run(["example.com"]))
        listener = await _wait_for_listener(engine)

        unsigned = await _push(listener.app, json.dumps(RESULT).encode())
        assert unsigned.status_code == 400
        garbage = await _push(listener.app, b"{not json", signing_key)
        assert garbage.status_code == 200
        assert not run.done()

        signed = await _push(listener.app, json.dumps(RESULT).encode(), signing_key)
        assert signed.status_code == 200

        assert await asyncio.wait_for(run, 5) is None

    submitted = transport.query.await_args.args[0]
    assert submitted.callback == CALLBACK_URL
    transport.result.assert_not_awaited()
    assert listener.addr == "127.0.0.1:8080"
    assert listener.stopped is True
    assert key_calls == [KEY_ID]
    assert "listening for callbacks at 127.0.0.1:8080" in err.getvalue()
    assert "Request ID:         R1" in out.getvalue()


@pytest.mark.asyncio
async def test_callback_timeout_stops_listener() -> None:
    _StubListener.instances.clear()
    engine = QueryEngine(
        _make_transport(),
        QueryOptions(callback=CALLBACK_URL, timeout=0.1),
        Presenter(out=io.StringIO(), err=io.StringIO()),
    )

    with patch("zapi.core.query_engine.Listener", _StubListener):
        cause = await engine.run(["example.com"])

    assert isinstance(cause, asyncio.TimeoutError)
    assert _StubListener.instances[-1].stopped is True
    assert engine.tracker.held == 1
