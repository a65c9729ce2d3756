"""HTTP ``Digest`` header (RFC 3230) for request body integrity.

The header value is ``<ALGO>=<encoded hash>``.  ADLER32 and CRC32c hashes are
hex encoded; MD5, SHA, SHA-256 and SHA-512 hashes are unpadded base64url.
UNIXsum and UNIXcksum are registered names but are not supported.

Usage::

    from zapi.httpsig.digest import DigestAlgorithm, verify_header

    value = DigestAlgorithm.SHA256.header_value(body)
    verify_header(value, body)
"""

from __future__ import annotations

import base64
import binascii
import enum
import hashlib
import zlib

import google_crc32c

from zapi.core.errors import ZapiError

#: Name of the HTTP header carrying the body digest.
HEADER = "Digest"


class DigestError(ZapiError):
    """Raised for malformed, unsupported or mismatching digests."""


def _b64encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _b64decode(text: str) -> bytes:
    return base64.urlsafe_b64decode(text + "=" * (-len(text) % 4))


class DigestAlgorithm(str, enum.Enum):
    """Digest algorithms from the IANA HTTP digest algorithm registry."""

    ADLER32 = "ADLER32"
    CRC32C = "CRC32c"
    MD5 = "MD5"
    SHA = "SHA"
    SHA256 = "SHA-256"
    SHA512 = "SHA-512"
    UNIXSUM = "UNIXsum"
    UNIXCKSUM = "UNIXcksum"

    def __str__(self) -> str:
        return self.value

    @classmethod
    def parse(cls, name: str) -> DigestAlgorithm:
        """Return the algorithm called *name* (case-sensitive).

        Raises:
            DigestError: If *name* is not a registered algorithm.
        """
        try:
            return cls(name)
        except ValueError:
            raise DigestError(f"unknown digest algorithm: {name}") from None

    @property
    def supported(self) -> bool:
        return self not in (DigestAlgorithm.UNIXSUM, DigestAlgorithm.UNIXCKSUM)

    def hash(self, body: bytes) -> bytes:
        """Return the raw hash of *body*.

        Raises:
            DigestError: If the algorithm is unsupported.
        """
        if self is DigestAlgorithm.ADLER32:
            return zlib.adler32(body).to_bytes(4, "big")
        if self is DigestAlgorithm.CRC32C:
            return google_crc32c.value(body).to_bytes(4, "big")
        if self is DigestAlgorithm.MD5:
            return hashlib.md5(body).digest()
        if self is DigestAlgorithm.SHA:
            return hashlib.sha1(body).digest()
        if self is DigestAlgorithm.SHA256:
            return hashlib.sha256(body).digest()
        if self is DigestAlgorithm.SHA512:
            return hashlib.sha512(body).digest()
        raise DigestError(f"{self} is unsupported")

    def encode_hash(self, raw: bytes) -> str:
        if self in (DigestAlgorithm.ADLER32, DigestAlgorithm.CRC32C):
            return raw.hex()
        if self.supported:
            return _b64encode(raw)
        raise DigestError(f"{self} is unsupported")

    def decode_hash(self, text: str) -> bytes:
        try:
            if self in (DigestAlgorithm.ADLER32, DigestAlgorithm.CRC32C):
                return bytes.fromhex(text)
            if self.supported:
                return _b64decode(text)
        except (ValueError, binascii.Error) as exc:
            raise DigestError(f"invalid {HEADER} value: {exc}") from exc
        raise DigestError(f"{self} is unsupported")

    def header_value(self, body: bytes) -> str | None:
        """Return the ``Digest`` header value for *body*.

        Returns ``None`` for an empty body, which carries no digest.
        """
        if not body:
            return None
        return f"{self.value}={self.encode_hash(self.hash(body))}"


def parse_header(value: str) -> tuple[DigestAlgorithm, bytes]:
    """Split a ``Digest`` header value into its algorithm and raw hash.

    Raises:
        DigestError: If the value is malformed or names an unsupported
            algorithm.
    """
    name, sep, encoded = value.partition("=")
    if not sep or not name or not encoded:
        raise DigestError(f"invalid {HEADER} header")

    algo = DigestAlgorithm.parse(name)
    if not algo.supported:
        raise DigestError(f"{algo} is unsupported")
    return algo, algo.decode_hash(encoded)


def verify_header(value: str, body: bytes) -> None:
    """Verify the ``Digest`` header *value* against *body*.

    Raises:
        DigestError: If the header is invalid or the hash does not match.
    """
    algo, expected = parse_header(value)
    actual = algo.hash(body) if body else b""
    if actual != expected:
        raise DigestError("invalid hash")
