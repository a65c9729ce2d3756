"""Run an ASGI application on a Go style listen address inside the event loop.

Listen addresses take the ``host:port`` form, where an empty host (``":8080"``)
means every interface.  Both the OAuth2 user flow and the callback receiver
serve through :class:`Listener`, which wraps :class:`uvicorn.Server` so that
the server can be started as a background task and stopped co-operatively.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import uvicorn

from zapi.core.errors import InputError

logger = logging.getLogger(__name__)


def parse_listen_addr(addr: str) -> tuple[str, int]:
    """Split *addr* into ``(host, port)``.

    Raises:
        InputError: If *addr* has no valid port.
    """
    host, sep, port = addr.rpartition(":")
    if not sep:
        raise InputError(f"invalid listen address: {addr!r}")
    host = host.strip("[]") or "0.0.0.0"
    try:
        port_num = int(port)
    except ValueError:
        raise InputError(f"invalid listen address: {addr!r}") from None
    if not 0 <= port_num <= 65535:
        raise InputError(f"invalid listen address: {addr!r}")
    return host, port_num


class Listener:
    """A uvicorn server bound to *addr* that can run as a background task.

    Args:
        app: The ASGI application to serve.
        addr: Listen address, e.g. ``":8080"`` or ``"127.0.0.1:4445"``.
        debug: Log server access lines when ``True``.
    """

    def __init__(self, app: Any, addr: str, debug: bool = False) -> None:
        host, port = parse_listen_addr(addr)
        self.addr = addr
        config = uvicorn.Config(
            app,
            host=host,
            port=port,
            lifespan="off",
            log_level="debug" if debug else "warning",
            access_log=debug,
        )
        self._server = uvicorn.Server(config)
        self._task: asyncio.Task[None] | None = None

    async def serve(self) -> None:
        """Serve until :meth:`stop` is called or the task is cancelled."""
        logger.info("Listening on %s", self.addr)
        await self._server.serve()

    async def start(self) -> None:
        """Start serving in a background task and wait until bound.

        Raises:
            OSError: If the server exited before it started listening.
        """
        self._task = asyncio.create_task(self.serve())
        while not self._server.started:
            if self._task.done():
                self._task.result()
                raise OSError(f"listener on {self.addr} failed to start")
            await asyncio.sleep(0.01)

    async def stop(self) -> None:
        """Ask the server to exit and wait for the background task."""
        self._server.should_exit = True
        if self._task is not None:
            try:
                await self._task
            finally:
                self._task = None
