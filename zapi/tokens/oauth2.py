"""OAuth2 token endpoint access and the two-legged client-credentials flow.

Usage::

    from zapi.tokens.oauth2 import ClientCredentialsTokenSource, Endpoint

    source = ClientCredentialsTokenSource(
        client_id="my-client",
        client_secret="s3cret",
        scopes=["zvelo.dataset"],
        endpoint=Endpoint(token_url="https://auth.zvelo.com/oauth2/token"),
    )
    token = await source.token()
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from zapi.config import DEFAULT_AUTH_URL, DEFAULT_TOKEN_URL
from zapi.tokens.base import Token, TokenError, TokenSource

logger = logging.getLogger(__name__)

#: Maximum seconds to wait for the token endpoint.
_HTTP_TIMEOUT = 30.0


@dataclass(frozen=True)
class Endpoint:
    """OAuth2 server endpoints.

    Args:
        auth_url: Authorization endpoint used by the user flow.
        token_url: Token endpoint used by every flow.
    """

    auth_url: str = DEFAULT_AUTH_URL
    token_url: str = DEFAULT_TOKEN_URL


async def retrieve_token(
    token_url: str,
    data: dict[str, str],
    client_id: str,
    client_secret: str,
    http_client: httpx.AsyncClient | None = None,
) -> Token:
    """POST *data* to the token endpoint and parse the token response.

    The client authenticates with HTTP basic auth.

    Raises:
        TokenError: On a network error, a non-2xx response or a response
            without an access token.
    """
    auth = httpx.BasicAuth(client_id, client_secret)
    try:
        if http_client is not None:
            response = await http_client.post(
                token_url, data=data, auth=auth, timeout=_HTTP_TIMEOUT
            )
        else:
            async with httpx.AsyncClient(timeout=_HTTP_TIMEOUT) as client:
                response = await client.post(token_url, data=data, auth=auth)
    except httpx.RequestError as exc:
        raise TokenError(f"oauth2: cannot fetch token: {exc}") from exc

    if not response.is_success:
        raise TokenError(
            f"oauth2: cannot fetch token: {response.status_code}\n"
            f"Response: {response.text}"
        )

    try:
        payload: dict[str, Any] = response.json()
    except ValueError as exc:
        raise TokenError(f"oauth2: cannot parse token response: {exc}") from exc

    if "error" in payload and "access_token" not in payload:
        message = f"oauth2: {payload['error']}"
        if payload.get("error_description"):
            message += f": {payload['error_description']}"
        raise TokenError(message)

    return Token.from_response(payload)


class ClientCredentialsTokenSource(TokenSource):
    """Two-legged OAuth2: exchange the client's own credentials for a token.

    Args:
        client_id: OAuth2 client id.
        client_secret: OAuth2 client secret.
        scopes: Scopes to request.
        endpoint: Server endpoints; only ``token_url`` is used.
        http_client: Optional shared :class:`httpx.AsyncClient`.
    """

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        scopes: list[str],
        endpoint: Endpoint | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.client_id = client_id
        self._client_secret = client_secret
        self.scopes = list(scopes)
        self.endpoint = endpoint or Endpoint()
        self._http_client = http_client

    async def token(self) -> Token:
        data = {"grant_type": "client_credentials"}
        if self.scopes:
            data["scope"] = " ".join(self.scopes)

        logger.debug("Requesting client credentials token from %s", self.endpoint.token_url)
        return await retrieve_token(
            self.endpoint.token_url,
            data,
            self.client_id,
            self._client_secret,
            self._http_client,
        )
