"""HTTP signature algorithms.

=================  =======  ==================  ======================
Algorithm          Hash     Sign                Verify
=================  =======  ==================  ======================
``rsa-sha1``       SHA-1    PKCS#1 v1.5         PKCS#1 v1.5
``rsa-sha256``     SHA-256  PKCS#1 v1.5         PKCS#1 v1.5
``hmac-sha256``    SHA-256  HMAC                constant-time compare
``ecdsa-sha256``   SHA-256  ECDSA, DER (r, s)   ECDSA, DER (r, s)
=================  =======  ==================  ======================

Keys are :mod:`cryptography` key objects for the asymmetric algorithms (a
private key also verifies, through its public half) and ``bytes`` for HMAC.
"""

from __future__ import annotations

import enum
import hashlib
import hmac
from typing import Any

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec, padding, rsa

from zapi.core.errors import ZapiError


class SignatureError(ZapiError):
    """Raised when an HTTP signature cannot be produced or does not verify."""


class Algorithm(str, enum.Enum):
    """Supported HTTP signature algorithms."""

    RSA_SHA1 = "rsa-sha1"
    RSA_SHA256 = "rsa-sha256"
    HMAC_SHA256 = "hmac-sha256"
    ECDSA_SHA256 = "ecdsa-sha256"

    def __str__(self) -> str:
        return self.value

    @classmethod
    def parse(cls, name: str) -> Algorithm:
        """Return the algorithm called *name*.

        Raises:
            SignatureError: If *name* is not a supported algorithm.
        """
        try:
            return cls(name)
        except ValueError:
            raise SignatureError(f"unsupported algorithm: {name}") from None

    def _hash(self) -> hashes.HashAlgorithm:
        if self is Algorithm.RSA_SHA1:
            return hashes.SHA1()
        return hashes.SHA256()

    def sign(self, key: Any, data: bytes) -> bytes:
        """Sign *data* with *key*.

        Raises:
            SignatureError: If *key* does not suit the algorithm.
        """
        if self is Algorithm.HMAC_SHA256:
            if not isinstance(key, (bytes, bytearray)):
                raise SignatureError(f"invalid key type {type(key).__name__} for HMAC")
            return hmac.new(bytes(key), data, hashlib.sha256).digest()

        if self in (Algorithm.RSA_SHA1, Algorithm.RSA_SHA256):
            if not isinstance(key, rsa.RSAPrivateKey):
                raise SignatureError(f"invalid key type {type(key).__name__} for RSA")
            return key.sign(data, padding.PKCS1v15(), self._hash())

        if not isinstance(key, ec.EllipticCurvePrivateKey):
            raise SignatureError(f"invalid key type {type(key).__name__} for ECDSA")
        return key.sign(data, ec.ECDSA(self._hash()))

    def verify(self, key: Any, data: bytes, signature: bytes) -> None:
        """Verify that *signature* over *data* was made with *key*.

        Raises:
            SignatureError: If the signature is invalid or *key* does not
                suit the algorithm.
        """
        if self is Algorithm.HMAC_SHA256:
            if not hmac.compare_digest(self.sign(key, data), signature):
                raise SignatureError("invalid hmac")
            return

        if self in (Algorithm.RSA_SHA1, Algorithm.RSA_SHA256):
            if isinstance(key, rsa.RSAPrivateKey):
                key = key.public_key()
            if not isinstance(key, rsa.RSAPublicKey):
                raise SignatureError(f"invalid key type {type(key).__name__} for RSA")
            try:
                key.verify(signature, data, padding.PKCS1v15(), self._hash())
            except InvalidSignature:
                raise SignatureError("invalid rsa signature") from None
            return

        if isinstance(key, ec.EllipticCurvePrivateKey):
            key = key.public_key()
        if not isinstance(key, ec.EllipticCurvePublicKey):
            raise SignatureError(f"invalid key type {type(key).__name__} for ECDSA")
        try:
            key.verify(signature, data, ec.ECDSA(self._hash()))
        except (InvalidSignature, ValueError):
            raise SignatureError("invalid ecdsa signature") from None
