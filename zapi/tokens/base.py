"""Token model and composable token sources.

A :class:`TokenSource` produces a bearer :class:`Token` on demand.  Sources
are layered as decorators around the flow that actually obtains tokens::

    ReuseTokenSource(FileCacheTokenSource(ClientCredentialsTokenSource(...)))

* :class:`ReuseTokenSource` keeps the last token in memory and only calls
  through while it is missing or expired;
* :class:`DebugTokenSource` logs how long each fetch took;
* :class:`TracingTokenSource` records each fetch in an OpenTelemetry span.

Every source is safe to share between tasks on one event loop.
"""

from __future__ import annotations

import abc
import asyncio
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Any

from opentelemetry import trace
from pydantic import BaseModel, Field

from zapi.core.errors import ZapiError

logger = logging.getLogger(__name__)

tracer = trace.get_tracer("zapi.tokens")

#: Tokens are treated as expired this long before their actual expiry.
EXPIRY_SKEW = timedelta(seconds=10)


class TokenError(ZapiError):
    """Raised when a token cannot be obtained from the authorization server."""


# ---------------------------------------------------------------------------
# Token
# ---------------------------------------------------------------------------


class Token(BaseModel):
    """An OAuth2 token.

    ``extra`` carries additional fields from the token response, notably the
    OpenID Connect ``id_token``.
    """

    access_token: str
    token_type: str = "Bearer"
    refresh_token: str = ""
    expiry: datetime | None = None
    extra: dict[str, Any] = Field(default_factory=dict, exclude=True)

    @property
    def id_token(self) -> str:
        return str(self.extra.get("id_token") or "")

    def valid(self, now: datetime | None = None) -> bool:
        """Return whether the token can be used.

        A token without an expiry never expires.
        """
        if not self.access_token:
            return False
        if self.expiry is None:
            return True
        now = now or datetime.now(timezone.utc)
        return now < self.expiry - EXPIRY_SKEW

    def authorization(self) -> str:
        """Value for the ``Authorization`` header."""
        token_type = self.token_type or "Bearer"
        if token_type.lower() == "bearer":
            token_type = "Bearer"
        return f"{token_type} {self.access_token}"

    @classmethod
    def from_response(cls, data: dict[str, Any]) -> Token:
        """Build a token from an OAuth2 token endpoint JSON response.

        Raises:
            TokenError: If the response carries no access token.
        """
        access_token = data.get("access_token")
        if not access_token:
            raise TokenError("server response missing access_token")

        expiry = None
        expires_in = data.get("expires_in")
        if expires_in:
            expiry = datetime.now(timezone.utc) + timedelta(seconds=int(expires_in))

        known = {"access_token", "token_type", "refresh_token", "expires_in"}
        return cls(
            access_token=access_token,
            token_type=data.get("token_type") or "Bearer",
            refresh_token=data.get("refresh_token") or "",
            expiry=expiry,
            extra={k: v for k, v in data.items() if k not in known},
        )


# ---------------------------------------------------------------------------
# Sources
# ---------------------------------------------------------------------------


class TokenSource(abc.ABC):
    """Abstract producer of bearer tokens."""

    @abc.abstractmethod
    async def token(self) -> Token:
        """Return a usable token.

        Raises:
            TokenError: If no token could be obtained.
        """


class StaticTokenSource(TokenSource):
    """Always returns the same token; never refreshes or checks expiry."""

    def __init__(self, token: Token) -> None:
        self._token = token

    async def token(self) -> Token:
        return self._token


class ReuseTokenSource(TokenSource):
    """Return the held token while it is valid, otherwise fetch a new one.

    Args:
        source: The wrapped source.
        initial: An optional token to start with.
    """

    def __init__(self, source: TokenSource, initial: Token | None = None) -> None:
        self._source = source
        self._token = initial
        self._lock = asyncio.Lock()

    async def token(self) -> Token:
        current = self._token
        if current is not None and current.valid():
            return current

        async with self._lock:
            if self._token is not None and self._token.valid():
                return self._token
            self._token = await self._source.token()
            return self._token


class DebugTokenSource(TokenSource):
    """Log the time each fetch from the wrapped source takes."""

    def __init__(self, source: TokenSource, name: str = "") -> None:
        self._source = source
        self._name = name or type(source).__name__

    async def token(self) -> Token:
        start = time.monotonic()
        try:
            return await self._source.token()
        finally:
            logger.debug(
                "Token fetch from %s took %.1fms",
                self._name,
                (time.monotonic() - start) * 1000,
            )


class TracingTokenSource(TokenSource):
    """Record each fetch from the wrapped source in an OpenTelemetry span."""

    def __init__(self, source: TokenSource, name: str = "") -> None:
        self._source = source
        self._name = name or type(source).__name__

    async def token(self) -> Token:
        with tracer.start_as_current_span("zapi.token") as span:
            span.set_attribute("token.source", self._name)
            try:
                return await self._source.token()
            except TokenError as exc:
                span.record_exception(exc)
                span.set_status(trace.Status(trace.StatusCode.ERROR, str(exc)))
                raise
