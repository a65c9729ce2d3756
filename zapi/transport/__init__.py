"""Transports to the zvelo API: gRPC and JSON over HTTP."""

from __future__ import annotations

from zapi.config import Settings
from zapi.tokens.base import TokenSource
from zapi.transport.base import CallOptions, StreamingTransport, Transport
from zapi.transport.rest import RESTTransport
from zapi.transport.rpc import GRPCTransport


def rest_base_url(settings: Settings) -> str:
    """Base URL for the JSON transport: explicit, else derived from ``addr``."""
    if settings.rest_base_url:
        return settings.rest_base_url
    scheme = "http" if settings.no_tls else "https"
    return f"{scheme}://{settings.addr}"


def grpc_target(settings: Settings) -> str:
    """Target for the gRPC transport: explicit, else ``addr``."""
    return settings.grpc_target or settings.addr


def build_transport(settings: Settings, token_source: TokenSource | None) -> StreamingTransport:
    """Return the transport selected by ``settings.rest``."""
    if settings.rest:
        return RESTTransport(
            rest_base_url(settings),
            token_source,
            verify=not settings.tls_insecure_skip_verify,
        )
    return GRPCTransport(
        grpc_target(settings),
        token_source,
        tls=not settings.no_tls,
        insecure_skip_verify=settings.tls_insecure_skip_verify,
    )


__all__ = [
    "CallOptions",
    "GRPCTransport",
    "RESTTransport",
    "StreamingTransport",
    "Transport",
    "build_transport",
    "grpc_target",
    "rest_base_url",
]
