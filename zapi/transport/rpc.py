"""gRPC transport to the zvelo API.

One :class:`grpc.aio.Channel` is dialed on first use and shared by every call
of the invocation.  Credentials travel as ``authorization`` metadata, and the
server's ``uber-trace-id`` is read from the initial response metadata.

A stream that fails because the connection dropped is redialed once; any
other error, or a second failure, ends the stream with a
:class:`TransportError`.

Usage::

    transport = GRPCTransport("api.zvelo.com:443", token_source)
    result = await transport.result("R1")
    await transport.close()
"""

from __future__ import annotations

import asyncio
import logging
import ssl
from typing import Any, AsyncIterator

import grpc
from grpc import aio

from zapi.core.errors import TransportError
from zapi.core.tracing import SERVER_TRACE_HEADER
from zapi.schemas import query as schemas
from zapi.tokens.base import TokenSource
from zapi.transport import pb
from zapi.transport.base import CallOptions, StreamingTransport, authorization

logger = logging.getLogger(__name__)

#: Maximum seconds to wait for a single unary call.
_RPC_TIMEOUT = 30.0

# Status codes after which a stream is redialed.
_REDIAL_CODES = frozenset({grpc.StatusCode.UNAVAILABLE})


def _rpc_error(exc: aio.AioRpcError) -> TransportError:
    code = exc.code()
    return TransportError(
        f"rpc error: code = {code.name} desc = {exc.details()}",
        code=code.value[0],
    )


def _split_target(target: str, default_port: int) -> tuple[str, int]:
    host, sep, port = target.rpartition(":")
    if not sep or "]" in port:
        return target.strip("[]"), default_port
    return host.strip("[]"), int(port)


class GRPCTransport(StreamingTransport):
    """zvelo API client over gRPC.

    Args:
        target: ``host:port`` of the API.
        token_source: Provides bearer tokens; ``None`` sends no credentials.
        tls: Use TLS.
        insecure_skip_verify: Trust whatever certificate the server presents.
    """

    def __init__(
        self,
        target: str,
        token_source: TokenSource | None = None,
        tls: bool = True,
        insecure_skip_verify: bool = False,
    ) -> None:
        self.target = target
        self._token_source = token_source
        self._tls = tls
        self._insecure_skip_verify = insecure_skip_verify
        self._channel: aio.Channel | None = None
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Connection
    # ------------------------------------------------------------------

    async def _credentials(self) -> grpc.ChannelCredentials:
        if not self._insecure_skip_verify:
            return grpc.ssl_channel_credentials()

        host, port = _split_target(self.target, 443)
        pem = await asyncio.to_thread(ssl.get_server_certificate, (host, port))
        logger.warning("Skipping TLS verification for %s", self.target)
        return grpc.ssl_channel_credentials(root_certificates=pem.encode("ascii"))

    async def channel(self) -> aio.Channel:
        """Return the shared channel, dialing it on first use."""
        if self._channel is not None:
            return self._channel

        async with self._lock:
            if self._channel is None:
                logger.debug("Dialing %s (tls=%s)", self.target, self._tls)
                if self._tls:
                    self._channel = aio.secure_channel(self.target, await self._credentials())
                else:
                    self._channel = aio.insecure_channel(self.target)
            return self._channel

    async def _reset(self) -> None:
        async with self._lock:
            channel, self._channel = self._channel, None
        if channel is not None:
            await channel.close()

    async def close(self) -> None:
        await self._reset()

    # ------------------------------------------------------------------
    # Calls
    # ------------------------------------------------------------------

    async def _metadata(self, opts: CallOptions) -> list[tuple[str, str]]:
        metadata: list[tuple[str, str]] = []
        auth = await authorization(self._token_source)
        if auth:
            metadata.append(("authorization", auth))
        metadata.extend(opts.outgoing())
        return metadata

    @staticmethod
    async def _report_trace_id(call: Any, opts: CallOptions) -> None:
        initial = await call.initial_metadata()
        if initial is None:
            return
        for key, value in initial:
            if key == SERVER_TRACE_HEADER:
                opts.report_trace_id(value)
                return

    async def _unary(
        self,
        method: str,
        request: Any,
        response_class: Any,
        opts: CallOptions | None,
    ) -> Any:
        opts = opts or CallOptions()
        channel = await self.channel()
        stub = channel.unary_unary(
            pb.method_path(method),
            request_serializer=type(request).SerializeToString,
            response_deserializer=response_class.FromString,
        )
        try:
            call = stub(request, metadata=await self._metadata(opts), timeout=_RPC_TIMEOUT)
            response = await call
            await self._report_trace_id(call, opts)
        except aio.AioRpcError as exc:
            raise _rpc_error(exc) from exc
        return response

    async def query(
        self, requests: schemas.QueryRequests, opts: CallOptions | None = None
    ) -> schemas.QueryReplies:
        response = await self._unary(
            "Query", pb.to_message(requests, pb.QueryRequests), pb.QueryReplies, opts
        )
        return pb.from_message(response, schemas.QueryReplies)

    async def result(
        self, request_id: str, opts: CallOptions | None = None
    ) -> schemas.QueryResult:
        response = await self._unary(
            "Result", pb.RequestID(request_id=request_id), pb.QueryResult, opts
        )
        return pb.from_message(response, schemas.QueryResult)

    async def suggest(
        self, suggestion: schemas.Suggestion, opts: CallOptions | None = None
    ) -> None:
        await self._unary("Suggest", pb.to_message(suggestion, pb.Suggestion), pb.Empty, opts)

    async def stream(
        self, opts: CallOptions | None = None
    ) -> AsyncIterator[schemas.QueryResult]:
        opts = opts or CallOptions()
        redialed = False

        while True:
            channel = await self.channel()
            stub = channel.unary_stream(
                pb.method_path("Stream"),
                request_serializer=pb.Empty.SerializeToString,
                response_deserializer=pb.QueryResult.FromString,
            )
            call = stub(pb.Empty(), metadata=await self._metadata(opts))
            try:
                await self._report_trace_id(call, opts)
                async for message in call:
                    yield pb.from_message(message, schemas.QueryResult)
                return
            except aio.AioRpcError as exc:
                if redialed or exc.code() not in _REDIAL_CODES:
                    raise _rpc_error(exc) from exc
                logger.info("Stream interrupted (%s), redialing %s", exc.code().name, self.target)
                redialed = True
                await self._reset()
            finally:
                call.cancel()
