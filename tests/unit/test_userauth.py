"""Unit tests for zapi/tokens/userauth.py.

The redirect listener app is driven in-process through httpx's ASGI
transport so that the flow's future lives on the test's event loop.
"""

from __future__ import annotations

import asyncio
from urllib.parse import parse_qs, urlsplit

import httpx
import pytest

from zapi.tokens.base import Token, TokenError
from zapi.tokens.oauth2 import Endpoint
from zapi.tokens.userauth import UserTokenSource, render_token_page

AUTH_URL = "https://auth.example.com/oauth2/auth"
TOKEN_URL = "https://auth.example.com/oauth2/token"


def _make_source(
    token_payload: dict | None = None,
    status: int = 200,
    seen: list[httpx.Request] | None = None,
) -> UserTokenSource:
    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        return httpx.Response(
            status,
            json=token_payload or {"access_token": "user-token", "refresh_token": "r1", "expires_in": 60},
        )

    return UserTokenSource(
        client_id="cid",
        client_secret="secret",
        scopes=["zvelo.dataset", "openid"],
        endpoint=Endpoint(auth_url=AUTH_URL, token_url=TOKEN_URL),
        redirect_url="http://localhost:4445/callback",
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )


async def _get(app: object, url: str) -> httpx.Response:
    transport = httpx.ASGITransport(app=app)  # type: ignore[arg-type]
    async with httpx.AsyncClient(transport=transport, base_url="http://localhost:4445") as client:
        return await client.get(url)


class TestAuthCodeURL:
    def test_parameters(self) -> None:
        url = _make_source().auth_code_url("state123")
        parts = urlsplit(url)
        assert f"{parts.scheme}://{parts.netloc}{parts.path}" == AUTH_URL
        query = parse_qs(parts.query)
        assert query["client_id"] == ["cid"]
        assert query["response_type"] == ["code"]
        assert query["state"] == ["state123"]
        assert query["scope"] == ["zvelo.dataset openid"]
        assert query["redirect_uri"] == ["http://localhost:4445/callback"]


class TestCallbackApp:
    @pytest.mark.asyncio
    async def test_valid_code_exchanged(self) -> None:
        seen: list[httpx.Request] = []
        source = _make_source(seen=seen)
        result: asyncio.Future[Token] = asyncio.get_running_loop().create_future()

        response = await _get(source.callback_app("s1", result), "/callback?state=s1&code=abc")

        assert response.status_code == 200
        assert "zapi Token" in response.text
        assert "user-token" in response.text
        token = result.result()
        assert token.access_token == "user-token"
        form = parse_qs(seen[0].content.decode())
        assert form["grant_type"] == ["authorization_code"]
        assert form["code"] == ["abc"]

    @pytest.mark.asyncio
    async def test_state_mismatch_ignored(self) -> None:
        source = _make_source()
        result: asyncio.Future[Token] = asyncio.get_running_loop().create_future()

        response = await _get(source.callback_app("s1", result), "/favicon.ico")

        assert response.status_code == 401
        assert not result.done()

    @pytest.mark.asyncio
    async def test_oauth_error_fails_flow(self) -> None:
        source = _make_source()
        result: asyncio.Future[Token] = asyncio.get_running_loop().create_future()

        response = await _get(
            source.callback_app("s1", result),
            "/callback?state=s1&error=access_denied&error_description=denied",
        )

        assert response.status_code == 401
        with pytest.raises(TokenError, match="access_denied"):
            result.result()

    @pytest.mark.asyncio
    async def test_exchange_failure(self) -> None:
        source = _make_source(status=400, token_payload={"error": "invalid_grant"})
        result: asyncio.Future[Token] = asyncio.get_running_loop().create_future()

        response = await _get(source.callback_app("s1", result), "/callback?state=s1&code=bad")

        assert response.status_code == 500
        with pytest.raises(TokenError):
            result.result()


class TestRefresh:
    @pytest.mark.asyncio
    async def test_keeps_refresh_token_when_not_reissued(self) -> None:
        source = _make_source(token_payload={"access_token": "new", "expires_in": 60})
        fresh = await source.refresh(Token(access_token="old", refresh_token="keep-me"))
        assert fresh.access_token == "new"
        assert fresh.refresh_token == "keep-me"

    @pytest.mark.asyncio
    async def test_requires_refresh_token(self) -> None:
        with pytest.raises(TokenError):
            await _make_source().refresh(Token(access_token="old"))


def test_render_token_page_escapes() -> None:
    page = render_token_page(Token(access_token="<script>"))
    assert "&lt;script&gt;" in page
    assert "<script>" not in page
