"""Core query-result acquisition engine for zapi."""

from zapi.core.errors import InputError, TransportError, ZapiError

__all__ = [
    "InputError",
    "TransportError",
    "ZapiError",
]
