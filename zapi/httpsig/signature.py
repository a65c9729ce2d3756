"""HTTP signatures: header format, canonical signing string, sign and verify.

A signature travels either in its own header::

    Signature: keyId="...",algorithm="rsa-sha256",headers="(request-target) host date",signature="..."

or inside ``Authorization`` prefixed with ``Signature``.  The ``signature``
parameter is unpadded base64url.  When ``headers`` is omitted it defaults to
the single header ``date``.

The signing string always begins with the ``(request-target)`` and ``host``
pseudo-headers, followed by each listed header::

    (request-target): post /callback?x=1
    host: example.com
    date: Mon, 02 Jan 2006 15:04:05 GMT
    digest: SHA-256=...

Header names are lower-cased, each value is trimmed with newlines folded to
spaces, multiple values are joined by ``", "`` and headers without a value are
left out.  The functions here are pure; they operate on plain request parts
so that both outgoing :class:`httpx.Request` objects and incoming Starlette
requests can be signed or verified.
"""

from __future__ import annotations

import base64
import binascii
import enum
import logging
import re
from dataclasses import dataclass, field
from email.utils import formatdate
from typing import Any, Iterable, Sequence

import httpx
import idna

from zapi.httpsig import digest
from zapi.httpsig.algorithm import Algorithm, SignatureError

logger = logging.getLogger(__name__)

REQUEST_TARGET = "(request-target)"

_PSEUDO_HEADERS = frozenset({REQUEST_TARGET, "host"})

# Headers left out of the signing string when no header list is given.
_EXCLUDED_BY_DEFAULT = frozenset(
    {"host", "user-agent", "content-length", "transfer-encoding", "trailer"}
)

_PARAM_RE = re.compile(r'(\w+)="([^"]*)"')

_AUTH_SCHEME = "Signature "


# ---------------------------------------------------------------------------
# Header parsing and formatting
# ---------------------------------------------------------------------------


@dataclass
class SignatureHeader:
    """The parameters of an HTTP signature header."""

    key_id: str
    algorithm: Algorithm
    headers: list[str] = field(default_factory=lambda: ["date"])
    signature: bytes = b""

    def __str__(self) -> str:
        encoded = base64.urlsafe_b64encode(self.signature).rstrip(b"=").decode("ascii")
        return (
            f'keyId="{self.key_id}",algorithm="{self.algorithm}",'
            f'headers="{" ".join(self.headers)}",signature="{encoded}"'
        )


def valid_key_id(key_id: str) -> bool:
    """Key ids may not contain ``"`` or ``,``."""
    return '"' not in key_id and "," not in key_id


class HeaderType(str, enum.Enum):
    """Which HTTP header carries the signature."""

    SIGNATURE = "Signature"
    AUTHORIZATION = "Authorization"

    def __str__(self) -> str:
        return self.value

    @property
    def error_status(self) -> int:
        """HTTP status to answer an invalid signature with."""
        return 401 if self is HeaderType.AUTHORIZATION else 400

    def parse(self, value: str | None) -> SignatureHeader:
        """Parse the header *value*.

        Raises:
            SignatureError: If the value is missing or malformed.
        """
        if not value:
            raise SignatureError(f"{self} header not found")

        if self is HeaderType.AUTHORIZATION:
            if not value.startswith(_AUTH_SCHEME):
                raise SignatureError("invalid Signature header")
            value = value[len(_AUTH_SCHEME):]

        params = dict(_PARAM_RE.findall(value))

        key_id = params.get("keyId")
        if not key_id:
            raise SignatureError(f"{self} header missing keyId field")

        algorithm = params.get("algorithm")
        if not algorithm:
            raise SignatureError(f"{self} header missing algorithm field")

        encoded = params.get("signature")
        if not encoded:
            raise SignatureError(f"{self} header missing signature field")

        try:
            raw = base64.urlsafe_b64decode(encoded + "=" * (-len(encoded) % 4))
        except (ValueError, binascii.Error) as exc:
            raise SignatureError(f"invalid signature encoding: {exc}") from exc

        header = SignatureHeader(
            key_id=key_id,
            algorithm=Algorithm.parse(algorithm),
            signature=raw,
        )
        if "headers" in params:
            header.headers = params["headers"].split()
        return header

    def format_value(self, header: SignatureHeader) -> str:
        """Return the header value carrying *header*."""
        if self is HeaderType.AUTHORIZATION:
            return _AUTH_SCHEME + str(header)
        return str(header)


# ---------------------------------------------------------------------------
# Canonical signing string
# ---------------------------------------------------------------------------


def _split_host_port(value: str) -> tuple[str, str] | None:
    if value.startswith("["):
        end = value.find("]")
        if end == -1 or not value[end + 1:].startswith(":"):
            return None
        return value[1:end], value[end + 2:]
    if value.count(":") != 1:
        return None
    host, port = value.split(":")
    return host, port


def _idna_ascii(value: str) -> str:
    if value.isascii():
        return value
    return idna.encode(value, uts46=True).decode("ascii")


def _remove_zone(host: str) -> str:
    if not host.startswith("["):
        return host
    end = host.rfind("]")
    if end < 0:
        return host
    zone = host.rfind("%", 0, end)
    if zone < 0:
        return host
    return host[:zone] + host[end:]


def clean_host(value: str) -> str:
    """Normalise a ``Host`` value for the signing string.

    Anything after the first ``/`` or space is dropped, internationalised
    names are converted to their ASCII form and IPv6 zone identifiers are
    removed.  Values that cannot be converted are returned unchanged.
    """
    cut = re.search(r"[ /]", value)
    if cut:
        value = value[: cut.start()]

    parts = _split_host_port(value)
    try:
        if parts is None:
            cleaned = _idna_ascii(value)
        else:
            host, port = parts
            ascii_host = _idna_ascii(host)
            if ":" in ascii_host:
                ascii_host = f"[{ascii_host}]"
            cleaned = f"{ascii_host}:{port}"
    except idna.IDNAError:
        cleaned = value

    return _remove_zone(cleaned)


def _fold(value: str) -> str:
    return value.replace("\r", " ").replace("\n", " ").strip(" \t")


def signing_string(
    method: str,
    request_uri: str,
    host: str,
    headers: Iterable[tuple[str, str]],
    names: Sequence[str] | None = None,
) -> tuple[bytes, list[str]]:
    """Build the canonical string to sign for a request.

    Args:
        method: HTTP method.
        request_uri: Path and query of the request, e.g. ``/cb?a=1``.
        host: The request's host (``Host`` header or URL host).
        headers: All request headers as ``(name, value)`` pairs; repeated
            names are allowed.
        names: Headers to include after the pseudo-headers.  When ``None``
            every header except ``Host``, ``User-Agent``,
            ``Content-Length``, ``Transfer-Encoding`` and ``Trailer`` is
            included, sorted by name.

    Returns:
        The signing string and the names of the headers it covers, in order.
    """
    grouped: dict[str, list[str]] = {}
    for name, value in headers:
        grouped.setdefault(name.lower(), []).append(value)

    lines: list[str] = []
    written: list[str] = []

    def write(name: str, values: Sequence[str]) -> None:
        valid = [v for v in (_fold(v) for v in values) if v]
        if not valid:
            return
        name = name.lower()
        written.append(name)
        lines.append(f"{name}: {', '.join(valid)}")

    write(REQUEST_TARGET, [f"{method.lower()} {request_uri}"])
    write("host", [clean_host(host)])

    if names is None:
        for name in sorted(grouped):
            if name not in _EXCLUDED_BY_DEFAULT:
                write(name, grouped[name])
    else:
        for name in names:
            lowered = name.lower()
            if lowered in _PSEUDO_HEADERS:
                continue
            write(lowered, grouped.get(lowered, []))

    return "\n".join(lines).encode("utf-8"), written


# ---------------------------------------------------------------------------
# Verify
# ---------------------------------------------------------------------------


def verify(
    header: SignatureHeader,
    key: Any,
    method: str,
    request_uri: str,
    host: str,
    headers: Iterable[tuple[str, str]],
    body: bytes,
) -> None:
    """Verify *header* against the request parts using *key*.

    When ``digest`` is among the signed headers the body digest is verified
    first.

    Raises:
        SignatureError: If the signature does not verify.
        zapi.httpsig.digest.DigestError: If the body digest does not match.
    """
    headers = list(headers)
    if any(n.lower() == digest.HEADER.lower() for n in header.headers):
        values = [v for n, v in headers if n.lower() == digest.HEADER.lower()]
        if not values:
            raise digest.DigestError(f"invalid {digest.HEADER} header")
        digest.verify_header(values[0], body)

    data, _ = signing_string(method, request_uri, host, headers, header.headers)
    header.algorithm.verify(key, data, header.signature)


# ---------------------------------------------------------------------------
# Sign
# ---------------------------------------------------------------------------


def _request_uri(url: httpx.URL) -> str:
    return url.raw_path.decode("ascii") or "/"


def sign_request(
    request: httpx.Request,
    algorithm: Algorithm,
    key_id: str,
    key: Any,
    header_type: HeaderType = HeaderType.SIGNATURE,
    digest_algorithm: digest.DigestAlgorithm = digest.DigestAlgorithm.SHA256,
) -> SignatureHeader:
    """Sign *request* in place.

    A ``Date`` header is added when missing.  An existing ``Digest`` header
    is verified; otherwise one is set from the body.  Every header except
    the default exclusions is signed.

    Raises:
        SignatureError: If *key_id* is invalid or signing fails.
        zapi.httpsig.digest.DigestError: If an existing ``Digest`` header
            does not match the body.
    """
    if not valid_key_id(key_id):
        raise SignatureError("invalid key id")

    if "date" not in request.headers:
        request.headers["Date"] = formatdate(usegmt=True)

    body = request.read()
    existing = request.headers.get(digest.HEADER)
    if existing:
        digest.verify_header(existing, body)
    else:
        value = digest_algorithm.header_value(body)
        if value is None:
            request.headers.pop(digest.HEADER, None)
        else:
            request.headers[digest.HEADER] = value

    host = request.headers.get("host") or request.url.netloc.decode("ascii")
    data, names = signing_string(
        request.method,
        _request_uri(request.url),
        host,
        request.headers.multi_items(),
    )

    header = SignatureHeader(
        key_id=key_id,
        algorithm=algorithm,
        headers=names,
        signature=algorithm.sign(key, data),
    )
    request.headers[header_type.value] = header_type.format_value(header)
    logger.debug("Signed %s %s with key %s", request.method, request.url, key_id)
    return header
