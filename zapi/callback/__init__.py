"""Receiving results pushed by the zvelo API to a callback URL."""

from zapi.callback.keycache import FileKeyCache, KeyCache, MemoryKeyCache
from zapi.callback.keygetter import KeyFetchError, KeyGetter, extract_key, validate_key_id
from zapi.callback.receiver import create_receiver_app

__all__ = [
    "FileKeyCache",
    "KeyCache",
    "KeyFetchError",
    "KeyGetter",
    "MemoryKeyCache",
    "create_receiver_app",
    "extract_key",
    "validate_key_id",
]
