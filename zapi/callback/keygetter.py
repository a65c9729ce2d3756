"""Fetch the public keys zvelo signs callbacks with.

The ``keyId`` of a callback signature is the URL of a JSON Web Key Set.  Only
``https`` URLs on ``zvelo.com`` (or a subdomain) are trusted.  Key sets are
looked up in the configured :class:`~zapi.callback.keycache.KeyCache` first
and fetched on a miss; the first key tagged ``public`` is used.

Usage::

    getter = KeyGetter(cache=FileKeyCache())
    key = await getter.get_key("https://api.zvelo.com/keys/callback")
"""

from __future__ import annotations

import base64
import logging
from typing import Any
from urllib.parse import urlsplit

import httpx
from cryptography.hazmat.primitives.serialization import load_pem_public_key
from jose import jwk
from jose.exceptions import JWKError

from zapi.callback.keycache import JWKS, KeyCache
from zapi.core.errors import ZapiError

logger = logging.getLogger(__name__)

KEY_ID_SCHEME = "https"
KEY_ID_HOSTNAME = "zvelo.com"

#: Identifier of the key to use within a key set.
PUBLIC_KEY_TAG = "public"

_HTTP_TIMEOUT = 10.0

# python-jose needs an algorithm to construct a key.
_DEFAULT_ALG: dict[str, str] = {
    "RSA": "RS256",
    "EC": "ES256",
    "oct": "HS256",
}


class KeyFetchError(ZapiError):
    """Raised when a signing key cannot be resolved from its key id."""


def validate_key_id(key_id: str) -> None:
    """Ensure *key_id* is an https URL on a zvelo.com host.

    Raises:
        KeyFetchError: If the key id is not trusted.
    """
    parts = urlsplit(key_id)
    if parts.scheme != KEY_ID_SCHEME:
        raise KeyFetchError(f"keyID ({key_id}) does not have https scheme")

    hostname = parts.hostname or ""
    if hostname != KEY_ID_HOSTNAME and not hostname.endswith("." + KEY_ID_HOSTNAME):
        raise KeyFetchError(f"keyID ({key_id}) does not have a zvelo.com hostname")


def jwk_to_key(key_data: dict[str, Any]) -> Any:
    """Convert a JWK into a key usable by :mod:`zapi.httpsig.algorithm`.

    Asymmetric keys become :mod:`cryptography` public keys; symmetric keys
    become ``bytes``.

    Raises:
        KeyFetchError: If the JWK cannot be converted.
    """
    kty = key_data.get("kty", "")
    if kty == "oct":
        secret = key_data.get("k", "")
        return base64.urlsafe_b64decode(secret + "=" * (-len(secret) % 4))

    algorithm = key_data.get("alg") or _DEFAULT_ALG.get(kty)
    try:
        pem = jwk.construct(key_data, algorithm=algorithm).to_pem()
        return load_pem_public_key(pem)
    except (JWKError, ValueError, TypeError) as exc:
        raise KeyFetchError(f"invalid public key: {exc}") from exc


def extract_key(keyset: JWKS) -> Any:
    """Return the first key tagged ``public`` in *keyset*.

    Raises:
        KeyFetchError: If the set holds no public key.
    """
    for key_data in keyset.get("keys", []):
        if PUBLIC_KEY_TAG in (key_data.get("kid"), key_data.get("use")):
            return jwk_to_key(key_data)
    raise KeyFetchError("no public key")


class KeyGetter:
    """Resolve callback signature key ids to verification keys.

    Args:
        cache: Optional key set cache.
        http_client: Optional shared :class:`httpx.AsyncClient`.
    """

    def __init__(
        self,
        cache: KeyCache | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._cache = cache
        self._http_client = http_client

    async def get_key(self, key_id: str) -> Any:
        validate_key_id(key_id)

        if self._cache is not None:
            keyset = self._cache.get(key_id)
            if keyset is not None:
                logger.debug("Using cached key set for %s", key_id)
                return extract_key(keyset)

        keyset = await self._fetch(key_id)

        if self._cache is not None:
            self._cache.set(key_id, keyset)

        return extract_key(keyset)

    async def _fetch(self, key_id: str) -> JWKS:
        logger.debug("Fetching key set %s", key_id)
        try:
            if self._http_client is not None:
                response = await self._http_client.get(key_id, timeout=_HTTP_TIMEOUT)
            else:
                async with httpx.AsyncClient(timeout=_HTTP_TIMEOUT) as client:
                    response = await client.get(key_id)
        except httpx.RequestError as exc:
            raise KeyFetchError(f"error fetching key {key_id}: {exc}") from exc

        if response.status_code != 200:
            raise KeyFetchError(
                f"unexpected status fetching key: {response.status_code} {response.reason_phrase}"
            )

        try:
            keyset = response.json()
        except ValueError as exc:
            raise KeyFetchError(f"invalid key set at {key_id}: {exc}") from exc

        if not isinstance(keyset, dict):
            raise KeyFetchError(f"invalid key set at {key_id}")
        return keyset
