"""OAuth2 token sources for authenticating calls to the zvelo API."""

from zapi.tokens.base import (
    DebugTokenSource,
    ReuseTokenSource,
    StaticTokenSource,
    Token,
    TokenError,
    TokenSource,
    TracingTokenSource,
)
from zapi.tokens.factory import build_token_source, wants_id_token
from zapi.tokens.filecache import FileCacheTokenSource, token_cache_path
from zapi.tokens.oauth2 import ClientCredentialsTokenSource, Endpoint
from zapi.tokens.oidc import OIDCVerifier
from zapi.tokens.userauth import UserTokenSource

__all__ = [
    "ClientCredentialsTokenSource",
    "DebugTokenSource",
    "Endpoint",
    "FileCacheTokenSource",
    "OIDCVerifier",
    "ReuseTokenSource",
    "StaticTokenSource",
    "Token",
    "TokenError",
    "TokenSource",
    "TracingTokenSource",
    "UserTokenSource",
    "build_token_source",
    "token_cache_path",
    "wants_id_token",
]
