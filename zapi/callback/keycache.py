"""Caches for the JSON Web Key Sets used to verify callback signatures.

Two implementations of :class:`KeyCache` are provided:

* :class:`MemoryKeyCache` keeps key sets for the lifetime of the process;
* :class:`FileKeyCache` persists each key set at
  ``<data-dir>/<app>/key_<sha256(keyId)>.json`` (mode ``0600`` in a ``0700``
  directory, replaced atomically).

Caching is best effort: a miss or a corrupt entry simply causes the key set
to be fetched again.
"""

from __future__ import annotations

import abc
import logging
import threading
from pathlib import Path
from typing import Any

from zapi import APP_NAME
from zapi.core.filestore import cache_path, read_json, write_json_atomic

logger = logging.getLogger(__name__)

JWKS = dict[str, Any]


class KeyCache(abc.ABC):
    """Maps key ids to JSON Web Key Sets."""

    @abc.abstractmethod
    def get(self, key_id: str) -> JWKS | None:
        """Return the cached key set for *key_id*, or ``None`` on a miss."""

    @abc.abstractmethod
    def set(self, key_id: str, keyset: JWKS) -> None:
        """Cache *keyset* under *key_id*."""


class MemoryKeyCache(KeyCache):
    """In-process key cache."""

    def __init__(self) -> None:
        self._keys: dict[str, JWKS] = {}
        self._lock = threading.Lock()

    def get(self, key_id: str) -> JWKS | None:
        with self._lock:
            return self._keys.get(key_id)

    def set(self, key_id: str, keyset: JWKS) -> None:
        with self._lock:
            self._keys[key_id] = keyset


class FileKeyCache(KeyCache):
    """Key cache persisted in the per-user data directory.

    Args:
        app: Application directory name.
    """

    def __init__(self, app: str = APP_NAME) -> None:
        self._app = app

    def path(self, key_id: str) -> Path:
        return cache_path("key", key_id, self._app)

    def get(self, key_id: str) -> JWKS | None:
        path = self.path(key_id)
        try:
            keyset = read_json(path)
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as exc:
            logger.warning("Ignoring unreadable key cache %s: %s", path, exc)
            return None

        if not isinstance(keyset, dict) or not isinstance(keyset.get("keys"), list):
            logger.warning("Ignoring corrupt key cache %s", path)
            return None
        return keyset

    def set(self, key_id: str, keyset: JWKS) -> None:
        path = self.path(key_id)
        try:
            write_json_atomic(path, keyset)
        except OSError as exc:
            logger.warning("Could not write key cache %s: %s", path, exc)
