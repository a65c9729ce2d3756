"""OpenID Connect ID token verification.

The verifier discovers the provider configuration from
``<issuer>/.well-known/openid-configuration``, fetches the JSON Web Key Set
it advertises and validates ID tokens against it with python-jose.  The
audience must equal the OAuth2 client id.

Usage::

    verifier = await OIDCVerifier.discover("https://auth.zvelo.com", client_id)
    claims = verifier.verify(token.id_token)
"""

from __future__ import annotations

import logging
from typing import Any

import httpx
from jose import JWTError, jwt

from zapi.tokens.base import TokenError

logger = logging.getLogger(__name__)

_HTTP_TIMEOUT = 10.0

_DEFAULT_ALGORITHMS = ["RS256"]


class OIDCVerifier:
    """Validate ID tokens issued by a discovered OpenID provider.

    Args:
        issuer: The issuer reported by the provider.
        client_id: Expected audience.
        jwks: The provider's JSON Web Key Set.
        algorithms: Accepted signing algorithms.
    """

    def __init__(
        self,
        issuer: str,
        client_id: str,
        jwks: dict[str, Any],
        algorithms: list[str] | None = None,
    ) -> None:
        self.issuer = issuer
        self.client_id = client_id
        self._jwks = jwks
        self._algorithms = algorithms or list(_DEFAULT_ALGORITHMS)

    @classmethod
    async def discover(
        cls,
        issuer_url: str,
        client_id: str,
        http_client: httpx.AsyncClient | None = None,
    ) -> OIDCVerifier:
        """Build a verifier from the provider metadata at *issuer_url*.

        Raises:
            TokenError: If discovery or the key set fetch fails.
        """
        well_known = issuer_url.rstrip("/") + "/.well-known/openid-configuration"
        try:
            if http_client is not None:
                metadata = await _get_json(http_client, well_known)
                jwks = await _get_json(http_client, metadata["jwks_uri"])
            else:
                async with httpx.AsyncClient(timeout=_HTTP_TIMEOUT) as client:
                    metadata = await _get_json(client, well_known)
                    jwks = await _get_json(client, metadata["jwks_uri"])
        except (httpx.HTTPError, KeyError, ValueError) as exc:
            raise TokenError(f"oidc discovery failed for {issuer_url}: {exc}") from exc

        logger.debug("Discovered OIDC issuer %s", metadata.get("issuer"))
        return cls(
            issuer=metadata.get("issuer", issuer_url),
            client_id=client_id,
            jwks=jwks,
            algorithms=metadata.get("id_token_signing_alg_values_supported"),
        )

    def verify(self, id_token: str) -> dict[str, Any]:
        """Verify *id_token* and return its claims.

        Raises:
            TokenError: If the token is malformed, expired, not signed by the
                provider, or issued for another audience or issuer.
        """
        if not id_token:
            raise TokenError("no id_token")
        try:
            return jwt.decode(
                id_token,
                self._jwks,
                algorithms=self._algorithms,
                audience=self.client_id,
                issuer=self.issuer,
                options={"verify_at_hash": False},
            )
        except JWTError as exc:
            raise TokenError(f"id_token verification failed: {exc}") from exc


async def _get_json(client: httpx.AsyncClient, url: str) -> dict[str, Any]:
    response = await client.get(url, timeout=_HTTP_TIMEOUT)
    response.raise_for_status()
    return response.json()
