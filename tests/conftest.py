"""Shared pytest configuration and fixtures for zapi tests.

Every test runs with a private data directory, so token and key caches never
touch the real user's files, and with no ``ZVELO_*`` variables from the
calling environment leaking into ``zapi.config.get_settings()``.
"""
from __future__ import annotations

import os
from pathlib import Path
from typing import Iterator

import pytest

from zapi.config import get_settings


@pytest.fixture(autouse=True)
def isolated_environment(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[Path]:
    """Point the data directory at a temporary path and reset settings."""
    for name in list(os.environ):
        if name.upper().startswith("ZVELO_") or name.upper() == "REDIRECT_LIMIT":
            monkeypatch.delenv(name, raising=False)
    monkeypatch.delenv("SNAP_USER_COMMON", raising=False)

    data_dir = tmp_path / "data"
    monkeypatch.setenv("XDG_DATA_HOME", str(data_dir))
    monkeypatch.chdir(tmp_path)

    get_settings.cache_clear()
    yield data_dir
    get_settings.cache_clear()
