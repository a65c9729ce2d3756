"""Three-legged OAuth2 user flow.

:class:`UserTokenSource` obtains a token on behalf of the person running the
CLI:

1. a local HTTP listener is started on the callback address (``:4445`` by
   default);
2. the user's browser is opened to the authorization URL, which carries a
   random CSRF ``state``;
3. the authorization server redirects the browser back to the listener with
   an authorization ``code`` that is exchanged for a token;
4. the browser is shown a small HTML page acknowledging the token.

Requests whose ``state`` does not match (e.g. favicon fetches) are answered
``401`` and otherwise ignored.  OAuth2 errors reported on the redirect fail
the flow.
"""

from __future__ import annotations

import asyncio
import html
import logging
import secrets
import sys
import webbrowser
from typing import Callable
from urllib.parse import urlencode

import httpx
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import HTMLResponse, PlainTextResponse, Response
from starlette.routing import Route

from zapi.config import DEFAULT_OAUTH2_CALLBACK_ADDR, DEFAULT_OAUTH2_REDIRECT_URL
from zapi.core.listener import Listener
from zapi.tokens.base import Token, TokenError, TokenSource
from zapi.tokens.oauth2 import Endpoint, retrieve_token

logger = logging.getLogger(__name__)

# OAuth2 redirect error codes and the status the listener answers them with.
_ERROR_STATUS: dict[str, int] = {
    "access_denied": 401,
    "unauthorized_client": 401,
    "invalid_request": 400,
    "unsupported_response_type": 500,
    "invalid_scope": 500,
    "server_error": 503,
    "temporarily_unavailable": 503,
}


def render_token_page(token: Token) -> str:
    """Return the HTML acknowledgement page for *token*."""
    items = []
    if token.access_token:
        items.append(("Access Token", token.access_token))
    if token.refresh_token:
        items.append(("Refresh Token", token.refresh_token))
    if token.expiry is not None:
        items.append(("Expires in", token.expiry.isoformat()))
    if token.id_token:
        items.append(("ID Token", token.id_token))

    rows = "\n".join(
        f"  <li>{label}: <code>{html.escape(value)}</code></li>" for label, value in items
    )
    return (
        "<!DOCTYPE html>\n"
        '<html lang="en">\n'
        "<head>\n"
        '  <meta charset="UTF-8">\n'
        "  <title>zapi Token</title>\n"
        "</head>\n"
        "<body>\n"
        "<ul>\n"
        f"{rows}\n"
        "</ul>\n"
        "</body>\n"
        "</html>\n"
    )


class UserTokenSource(TokenSource):
    """Obtain tokens through the three-legged user flow.

    Args:
        client_id: OAuth2 client id.
        client_secret: OAuth2 client secret.
        scopes: Scopes to request.
        endpoint: Authorization and token endpoints.
        redirect_url: Redirect URL registered for the client; must reach
            the listener.
        callback_addr: Address the listener binds to.
        open_browser: Open the authorization URL in a browser; otherwise
            the URL is printed for the user to open.
        auth_code_url_handler: Called with the authorization URL instead of
            opening a browser.  Allows programmatic authentication.
        http_client: Optional shared :class:`httpx.AsyncClient`.
    """

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        scopes: list[str],
        endpoint: Endpoint | None = None,
        redirect_url: str = DEFAULT_OAUTH2_REDIRECT_URL,
        callback_addr: str = DEFAULT_OAUTH2_CALLBACK_ADDR,
        open_browser: bool = True,
        auth_code_url_handler: Callable[[str], None] | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.client_id = client_id
        self._client_secret = client_secret
        self.scopes = list(scopes)
        self.endpoint = endpoint or Endpoint()
        self.redirect_url = redirect_url or DEFAULT_OAUTH2_REDIRECT_URL
        self.callback_addr = callback_addr or DEFAULT_OAUTH2_CALLBACK_ADDR
        self._open_browser = open_browser
        self._auth_code_url_handler = auth_code_url_handler
        self._http_client = http_client
        self._lock = asyncio.Lock()

    def auth_code_url(self, state: str) -> str:
        """Return the authorization URL the user must visit."""
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_url,
            "response_type": "code",
            "scope": " ".join(self.scopes),
            "state": state,
        }
        sep = "&" if "?" in self.endpoint.auth_url else "?"
        return self.endpoint.auth_url + sep + urlencode(params)

    async def exchange(self, code: str) -> Token:
        """Exchange an authorization *code* for a token."""
        return await retrieve_token(
            self.endpoint.token_url,
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": self.redirect_url,
            },
            self.client_id,
            self._client_secret,
            self._http_client,
        )

    async def refresh(self, token: Token) -> Token:
        """Trade the refresh token of *token* for a new token."""
        if not token.refresh_token:
            raise TokenError("token has no refresh token")

        fresh = await retrieve_token(
            self.endpoint.token_url,
            {"grant_type": "refresh_token", "refresh_token": token.refresh_token},
            self.client_id,
            self._client_secret,
            self._http_client,
        )
        if not fresh.refresh_token:
            fresh.refresh_token = token.refresh_token
        return fresh

    def callback_app(self, state: str, result: asyncio.Future[Token]) -> Starlette:
        """Return the ASGI app that receives the authorization redirect.

        The outcome of the flow is delivered through *result*.
        """

        async def handle(request: Request) -> Response:
            params = request.query_params
            logger.debug("User flow callback: %s %s", request.method, request.url)

            if not state or params.get("state") != state:
                return PlainTextResponse("invalid state", status_code=401)

            error_code = params.get("error", "")
            if error_code:
                message = f"{error_code}: {params.get('error_description', '')}"
                if not result.done():
                    result.set_exception(TokenError(message))
                return PlainTextResponse(message, status_code=_ERROR_STATUS.get(error_code, 400))

            try:
                token = await self.exchange(params.get("code", ""))
            except TokenError as exc:
                if not result.done():
                    result.set_exception(exc)
                return PlainTextResponse(str(exc), status_code=500)

            if not result.done():
                result.set_result(token)
            return HTMLResponse(render_token_page(token))

        return Starlette(routes=[Route("/{path:path}", handle, methods=["GET"])])

    def _present(self, url: str) -> None:
        if self._auth_code_url_handler is not None:
            self._auth_code_url_handler(url)
        elif self._open_browser:
            print(f"opening in browser: {url}", file=sys.stderr)
            if not webbrowser.open(url):
                raise TokenError(f"could not open a browser for {url}")
        else:
            print(f"open this url in your browser: {url}", file=sys.stderr)

    async def token(self) -> Token:
        async with self._lock:
            state = secrets.token_hex(16)
            result: asyncio.Future[Token] = asyncio.get_running_loop().create_future()

            listener = Listener(self.callback_app(state, result), self.callback_addr)
            await listener.start()
            try:
                self._present(self.auth_code_url(state))
                return await result
            finally:
                await listener.stop()
