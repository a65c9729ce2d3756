"""Starlette middleware that rejects requests without a valid HTTP signature.

The signing key is resolved from the signature's ``keyId`` through a
:class:`KeyGetter`.  Requests that fail verification are answered ``400 Bad
Request``, or ``401 Unauthorized`` when the signature is carried in the
``Authorization`` header, and never reach the wrapped application.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import PlainTextResponse, Response
from starlette.types import ASGIApp

from zapi.core.errors import ZapiError
from zapi.httpsig.signature import HeaderType, verify

logger = logging.getLogger(__name__)


class KeyGetter(Protocol):
    """Resolves a signature ``keyId`` to a verification key."""

    async def get_key(self, key_id: str) -> Any:
        ...


def request_uri(request: Request) -> str:
    """Return the path and query of *request* as sent by the client."""
    raw_path = request.scope.get("raw_path")
    path = raw_path.decode("latin-1") if raw_path else request.url.path
    query = request.scope.get("query_string", b"")
    if query:
        return f"{path}?{query.decode('latin-1')}"
    return path


class HTTPSignatureMiddleware(BaseHTTPMiddleware):
    """Verify the HTTP signature of every request.

    Args:
        app: The wrapped ASGI application.
        key_getter: Resolves ``keyId`` values to keys.
        header_type: Header expected to carry the signature.
    """

    def __init__(
        self,
        app: ASGIApp,
        key_getter: KeyGetter,
        header_type: HeaderType = HeaderType.SIGNATURE,
    ) -> None:
        super().__init__(app)
        self._key_getter = key_getter
        self._header_type = header_type

    async def dispatch(self, request: Request, call_next: Any) -> Response:  # type: ignore[override]
        try:
            header = self._header_type.parse(request.headers.get(self._header_type.value))
            key = await self._key_getter.get_key(header.key_id)
            body = await request.body()
            verify(
                header,
                key,
                request.method,
                request_uri(request),
                request.headers.get("host", ""),
                request.headers.items(),
                body,
            )
        except ZapiError as exc:
            logger.warning(
                "Rejected %s %s: invalid signature: %s",
                request.method,
                request.url.path,
                exc,
            )
            return PlainTextResponse(str(exc), status_code=self._header_type.error_status)

        return await call_next(request)
