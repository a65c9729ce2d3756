"""Unit tests for zapi/httpsig/middleware.py."""

from __future__ import annotations

from typing import Any

import httpx
import pytest
from cryptography.hazmat.primitives.asymmetric import rsa
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import PlainTextResponse
from starlette.routing import Route

from zapi.callback.keygetter import KeyFetchError
from zapi.httpsig.algorithm import Algorithm
from zapi.httpsig.middleware import HTTPSignatureMiddleware
from zapi.httpsig.signature import HeaderType, sign_request

KEY_ID = "https://api.zvelo.com/keys/callback"


class _StaticKeyGetter:
    def __init__(self, key: Any) -> None:
        self.key = key
        self.key_ids: list[str] = []

    async def get_key(self, key_id: str) -> Any:
        self.key_ids.append(key_id)
        if self.key is None:
            raise KeyFetchError("no public key")
        return self.key


@pytest.fixture(scope="module")
def rsa_key() -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


def _make_app(key_getter: Any, header_type: HeaderType = HeaderType.SIGNATURE) -> tuple[Starlette, list[bytes]]:
    seen: list[bytes] = []

    async def echo(request: Request) -> PlainTextResponse:
        seen.append(await request.body())
        return PlainTextResponse("ok")

    app = Starlette(routes=[Route("/cb", echo, methods=["POST"])])
    app.add_middleware(HTTPSignatureMiddleware, key_getter=key_getter, header_type=header_type)
    return app, seen


async def _send(app: Starlette, sign_with: Any = None, header_type: HeaderType = HeaderType.SIGNATURE) -> httpx.Response:
    transport = httpx.ASGITransport(app=app)  # type: ignore[arg-type]
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        request = client.build_request("POST", "/cb?attempt=1", content=b'{"request_id":"r1"}')
        if sign_with is not None:
            sign_request(request, Algorithm.RSA_SHA256, KEY_ID, sign_with, header_type=header_type)
        return await client.send(request)


class TestHTTPSignatureMiddleware:
    @pytest.mark.asyncio
    async def test_valid_signature_passes(self, rsa_key: Any) -> None:
        getter = _StaticKeyGetter(rsa_key.public_key())
        app, seen = _make_app(getter)

        response = await _send(app, sign_with=rsa_key)

        assert response.status_code == 200
        assert seen == [b'{"request_id":"r1"}']
        assert getter.key_ids == [KEY_ID]

    @pytest.mark.asyncio
    async def test_missing_signature_rejected(self, rsa_key: Any) -> None:
        app, seen = _make_app(_StaticKeyGetter(rsa_key.public_key()))

        response = await _send(app)

        assert response.status_code == 400
        assert "Signature header not found" in response.text
        assert seen == []

    @pytest.mark.asyncio
    async def test_wrong_key_rejected(self, rsa_key: Any) -> None:
        other = rsa.generate_private_key(public_exponent=65537, key_size=2048)
        app, seen = _make_app(_StaticKeyGetter(other.public_key()))

        response = await _send(app, sign_with=rsa_key)

        assert response.status_code == 400
        assert seen == []

    @pytest.mark.asyncio
    async def test_key_fetch_failure_rejected(self, rsa_key: Any) -> None:
        app, _ = _make_app(_StaticKeyGetter(None))
        response = await _send(app, sign_with=rsa_key)
        assert response.status_code == 400
        assert "no public key" in response.text

    @pytest.mark.asyncio
    async def test_authorization_header_uses_401(self, rsa_key: Any) -> None:
        app, _ = _make_app(_StaticKeyGetter(rsa_key.public_key()), HeaderType.AUTHORIZATION)

        assert (await _send(app)).status_code == 401
        response = await _send(app, sign_with=rsa_key, header_type=HeaderType.AUTHORIZATION)
        assert response.status_code == 200
