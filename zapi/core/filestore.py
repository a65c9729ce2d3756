"""Per-user on-disk state for zapi.

Token and key caches persist small JSON documents below the per-user data
directory.  This module centralises path derivation and the write discipline
both caches share:

* files live in ``<data-dir>/<app>/`` which is created with mode ``0700``;
* file names are ``<prefix>_<sha256 hex>.json``;
* writes go to a temporary file in the same directory (mode ``0600``) that is
  then renamed over the destination, so readers never observe a partially
  written document.

Usage::

    from zapi.core.filestore import cache_path, read_json, write_json_atomic

    path = cache_path("key", key_id)
    write_json_atomic(path, {"keys": [...]})
    data = read_json(path)
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any

from zapi import APP_NAME

logger = logging.getLogger(__name__)

_DIR_MODE = 0o700
_FILE_MODE = 0o600


def data_dir() -> Path:
    """Return the per-user data directory (without the application component).

    ``$SNAP_USER_COMMON`` wins when running as a snap, then
    ``$XDG_DATA_HOME``, then ``~/.local/share``.
    """
    for var in ("SNAP_USER_COMMON", "XDG_DATA_HOME"):
        value = os.environ.get(var)
        if value:
            return Path(value)
    return Path.home() / ".local" / "share"


def app_dir(app: str = APP_NAME) -> Path:
    """Return ``<data-dir>/<app>``."""
    return data_dir() / app


def cache_path(prefix: str, name: str, app: str = APP_NAME) -> Path:
    """Return the deterministic cache file path for *name*.

    The file name is ``<prefix>_<sha256(name)>.json`` inside :func:`app_dir`.
    """
    digest = hashlib.sha256(name.encode("utf-8")).hexdigest()
    return app_dir(app) / f"{prefix}_{digest}.json"


def read_json(path: Path) -> Any:
    """Read and decode the JSON document at *path*.

    Raises:
        OSError: If the file cannot be read.
        ValueError: If the contents are not valid JSON.
    """
    with path.open("r", encoding="utf-8") as fh:
        return json.load(fh)


def write_json_atomic(path: Path, data: Any) -> None:
    """Atomically replace *path* with the JSON encoding of *data*.

    The parent directory is created with mode ``0700`` when missing; the file
    is written with mode ``0600``.
    """
    path.parent.mkdir(mode=_DIR_MODE, parents=True, exist_ok=True)

    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=path.parent)
    try:
        os.chmod(tmp_name, _FILE_MODE)
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            json.dump(data, fh)
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise

    logger.debug("Wrote cache file %s", path)
