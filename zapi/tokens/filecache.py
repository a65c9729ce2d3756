"""Filesystem cache layer for token sources.

Tokens are stored as JSON at::

    <data-dir>/<app>/token_<sha256(name + sorted unique scopes)>.json

with the document shape ``{"token": {...}, "id_token": "..."}``.  The file is
mode ``0600`` inside a ``0700`` directory and is replaced atomically.

A missing, unreadable or corrupt cache file is never fatal: the layer simply
falls through to the wrapped source.  When the cached token has expired but
carries a refresh token, and the wrapped source supports refreshing, a
refresh is attempted before running the full flow again.
"""

from __future__ import annotations

import hashlib
import logging
from pathlib import Path
from typing import Protocol, runtime_checkable

from pydantic import ValidationError

from zapi import APP_NAME
from zapi.core.filestore import app_dir, read_json, write_json_atomic
from zapi.tokens.base import Token, TokenError, TokenSource

logger = logging.getLogger(__name__)


@runtime_checkable
class RefreshableTokenSource(Protocol):
    """A source that can trade a refresh token for a new token."""

    async def refresh(self, token: Token) -> Token:
        ...


def token_cache_path(name: str, scopes: list[str], app: str = APP_NAME) -> Path:
    """Return the cache file path for the flow *name* and *scopes*."""
    digest = hashlib.sha256(name.encode("utf-8"))
    for scope in sorted(set(scopes)):
        digest.update(scope.encode("utf-8"))
    return app_dir(app) / f"token_{digest.hexdigest()}.json"


class FileCacheTokenSource(TokenSource):
    """Cache tokens from *source* in the user's data directory.

    Args:
        source: The flow that obtains tokens.
        name: Cache name for the flow (``"client"`` or ``"user"``).
        scopes: Scopes the tokens are requested with.
        app: Application directory name.
    """

    def __init__(
        self,
        source: TokenSource,
        name: str,
        scopes: list[str],
        app: str = APP_NAME,
    ) -> None:
        self._source = source
        self.path = token_cache_path(name, scopes, app)

    async def token(self) -> Token:
        cached = self._load()
        if cached is not None and cached.valid():
            logger.debug("Using cached token from %s", self.path)
            return cached

        token: Token | None = None
        if (
            cached is not None
            and cached.refresh_token
            and isinstance(self._source, RefreshableTokenSource)
        ):
            try:
                token = await self._source.refresh(cached)
            except TokenError as exc:
                logger.info("Token refresh failed, running the full flow: %s", exc)

        if token is None:
            token = await self._source.token()

        self._store(token)
        return token

    def _load(self) -> Token | None:
        try:
            data = read_json(self.path)
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as exc:
            logger.warning("Ignoring unreadable token cache %s: %s", self.path, exc)
            return None

        try:
            token = Token.model_validate(data["token"])
        except (KeyError, TypeError, ValidationError) as exc:
            logger.warning("Ignoring corrupt token cache %s: %s", self.path, exc)
            return None

        id_token = data.get("id_token") if isinstance(data, dict) else None
        if id_token:
            token.extra["id_token"] = id_token
        return token

    def _store(self, token: Token) -> None:
        document = {
            "token": token.model_dump(mode="json"),
            "id_token": token.id_token,
        }
        try:
            write_json_atomic(self.path, document)
        except OSError as exc:
            logger.warning("Could not write token cache %s: %s", self.path, exc)
