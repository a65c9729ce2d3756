"""HTTP message signatures and body digests."""

from zapi.httpsig.algorithm import Algorithm, SignatureError
from zapi.httpsig.digest import DigestAlgorithm, DigestError
from zapi.httpsig.middleware import HTTPSignatureMiddleware, KeyGetter
from zapi.httpsig.signature import (
    HeaderType,
    SignatureHeader,
    clean_host,
    sign_request,
    signing_string,
    valid_key_id,
    verify,
)

__all__ = [
    "Algorithm",
    "DigestAlgorithm",
    "DigestError",
    "HTTPSignatureMiddleware",
    "HeaderType",
    "KeyGetter",
    "SignatureError",
    "SignatureHeader",
    "clean_host",
    "sign_request",
    "signing_string",
    "valid_key_id",
    "verify",
]
