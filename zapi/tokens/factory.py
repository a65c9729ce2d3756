"""Select and compose the token source for an invocation.

Exactly one mode applies, checked in this order:

* **disabled** (``mock_no_credentials``): no token source at all;
* **static** (``access_token``): the token is used verbatim;
* **user** (``use_user_credentials``): the three-legged browser flow;
* **client-credentials** (``client_id`` + ``client_secret``).

Refresh-capable modes are layered as flow → file cache → tracing → debug
→ reuse.
"""

from __future__ import annotations

import logging

import httpx

from zapi.config import Settings
from zapi.core.errors import InputError
from zapi.tokens.base import (
    DebugTokenSource,
    ReuseTokenSource,
    StaticTokenSource,
    Token,
    TokenSource,
    TracingTokenSource,
)
from zapi.tokens.filecache import FileCacheTokenSource
from zapi.tokens.oauth2 import ClientCredentialsTokenSource, Endpoint
from zapi.tokens.userauth import UserTokenSource

logger = logging.getLogger(__name__)

#: File cache name for each refresh-capable flow.
CLIENT_CACHE_NAME = "client"
USER_CACHE_NAME = "user"


def build_token_source(
    settings: Settings,
    http_client: httpx.AsyncClient | None = None,
) -> TokenSource | None:
    """Return the token source described by *settings*.

    Returns ``None`` when credentials are disabled.

    Raises:
        InputError: If no credentials were configured.
    """
    if settings.mock_no_credentials:
        logger.debug("Credentials disabled")
        return None

    if settings.access_token:
        return StaticTokenSource(Token(access_token=settings.access_token))

    endpoint = Endpoint(auth_url=settings.auth_url, token_url=settings.token_url)
    scopes = settings.scopes

    flow: TokenSource
    if settings.use_user_credentials:
        if not settings.client_id:
            raise InputError("client-id is required for user credentials")
        flow = UserTokenSource(
            client_id=settings.client_id,
            client_secret=settings.client_secret,
            scopes=scopes,
            endpoint=endpoint,
            redirect_url=settings.oauth2_callback_url,
            callback_addr=settings.oauth2_callback_addr,
            open_browser=not settings.oauth2_no_open_in_browser,
            http_client=http_client,
        )
        name = USER_CACHE_NAME
    elif settings.client_id and settings.client_secret:
        flow = ClientCredentialsTokenSource(
            client_id=settings.client_id,
            client_secret=settings.client_secret,
            scopes=scopes,
            endpoint=endpoint,
            http_client=http_client,
        )
        name = CLIENT_CACHE_NAME
    else:
        raise InputError(
            "client-id and client-secret are required "
            "(or use --access-token or --use-user-credentials)"
        )

    source: TokenSource = flow
    if not settings.no_cache_token:
        source = FileCacheTokenSource(source, name, scopes)
    source = TracingTokenSource(source, name)
    if settings.debug:
        source = DebugTokenSource(source, name)
    return ReuseTokenSource(source)


def wants_id_token(scopes: list[str]) -> bool:
    """Return whether *scopes* request an OpenID Connect ID token."""
    return "openid" in scopes
