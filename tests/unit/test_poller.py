"""Unit tests for zapi/core/poller.py.

Coverage targets:
* Incomplete results are polled again until complete.
* ``once`` performs exactly one pass.
* Failed fetches keep the request pending.
* Requests returned by the handler join the next pass; their labels replace
  those of entries still pending under the same id.
* The handler receives the server trace id through Fetch.
* Cancelling the polling task stops it.
"""

from __future__ import annotations

import asyncio
from typing import Any
from unittest.mock import AsyncMock

import pytest

from zapi.core.errors import TransportError
from zapi.core.poller import Fetch, Poller
from zapi.schemas.query import QueryResult
from zapi.transport.base import CallOptions, Transport


def _result(request_id: str, complete: bool = True) -> QueryResult:
    return QueryResult.model_validate(
        {"request_id": request_id, "query_status": {"complete": complete}}
    )


def _make_transport(*outcomes: Any) -> AsyncMock:
    transport = AsyncMock(spec=Transport)
    transport.result.side_effect = list(outcomes)
    return transport


class _Recorder:
    def __init__(self, spawn: dict[str, dict[str, str]] | None = None) -> None:
        self.seen: list[tuple[str, bool]] = []
        self.fetches: list[Fetch] = []
        self._spawn = spawn or {}

    async def __call__(self, result: QueryResult, fetch: Fetch) -> dict[str, str] | None:
        complete = result.query_status is not None and result.query_status.complete
        self.seen.append((result.request_id, complete))
        self.fetches.append(fetch)
        if complete:
            return self._spawn.get(result.request_id)
        return None


class TestPoller:
    @pytest.mark.asyncio
    async def test_polls_until_complete(self) -> None:
        transport = _make_transport(_result("R1", False), _result("R1", False), _result("R1"))
        handler = _Recorder()

        await Poller(transport, interval=0).poll({"R1": "http://a.com"}, handler)

        assert handler.seen == [("R1", False), ("R1", False), ("R1", True)]
        assert transport.result.await_count == 3

    @pytest.mark.asyncio
    async def test_once_single_pass(self) -> None:
        transport = _make_transport(_result("R1", False))
        handler = _Recorder()

        await Poller(transport, interval=0, once=True).poll({"R1": "a"}, handler)

        assert handler.seen == [("R1", False)]

    @pytest.mark.asyncio
    async def test_empty_mapping(self) -> None:
        transport = _make_transport()
        await Poller(transport).poll({}, _Recorder())
        transport.result.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_error_keeps_request_pending(self, caplog: pytest.LogCaptureFixture) -> None:
        transport = _make_transport(TransportError("http error: 503"), _result("R1"))
        handler = _Recorder()

        await Poller(transport, interval=0).poll({"R1": "http://a.com"}, handler)

        assert handler.seen == [("R1", True)]
        assert "Error polling R1 (http://a.com)" in caplog.text

    @pytest.mark.asyncio
    async def test_spawned_requests_polled(self) -> None:
        transport = _make_transport(_result("R1"), _result("R2"))
        handler = _Recorder(spawn={"R1": {"R2": "http://b.com"}})

        await Poller(transport, interval=0).poll({"R1": "http://a.com"}, handler)

        assert handler.seen == [("R1", True), ("R2", True)]
        assert [c.args[0] for c in transport.result.await_args_list] == ["R1", "R2"]

    @pytest.mark.asyncio
    async def test_handler_label_replaces_pending(self, caplog: pytest.LogCaptureFixture) -> None:
        transport = _make_transport(
            _result("R1", False), TransportError("http error: 503"), _result("R1")
        )

        async def handler(result: QueryResult, fetch: Fetch) -> dict[str, str] | None:
            if result.query_status is not None and result.query_status.complete:
                return None
            return {"R1": "new-label"}

        await Poller(transport, interval=0).poll({"R1": "old-label"}, handler)

        assert [c.args[0] for c in transport.result.await_args_list] == ["R1", "R1", "R1"]
        assert "Error polling R1 (new-label)" in caplog.text
        assert "old-label" not in caplog.text

    @pytest.mark.asyncio
    async def test_handler_label_wins_over_other_pending_entry(
        self, caplog: pytest.LogCaptureFixture
    ) -> None:
        r2_outcomes = iter([_result("R2", False), TransportError("http error: 503"), _result("R2")])

        async def result(request_id: str, opts: CallOptions) -> QueryResult:
            if request_id == "R1":
                return _result("R1")
            outcome = next(r2_outcomes)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome

        transport = AsyncMock(spec=Transport)
        transport.result.side_effect = result
        handler = _Recorder(spawn={"R1": {"R2": "from-R1"}})

        await Poller(transport, interval=0).poll({"R1": "a", "R2": "b"}, handler)

        assert [c.args[0] for c in transport.result.await_args_list] == ["R1", "R2", "R2", "R2"]
        assert "Error polling R2 (from-R1)" in caplog.text

    @pytest.mark.asyncio
    async def test_call_options_and_trace_id(self) -> None:
        async def result(request_id: str, opts: CallOptions) -> QueryResult:
            assert opts.trace is True
            assert opts.headers == {"zvelo-mock-fetch-code": "200"}
            opts.report_trace_id("abc:1:0:1")
            return _result(request_id)

        transport = AsyncMock(spec=Transport)
        transport.result.side_effect = result
        handler = _Recorder()

        await Poller(transport, trace=True, headers={"zvelo-mock-fetch-code": "200"}).poll(
            {"R1": "a"}, handler
        )

        assert handler.fetches[0].trace_id == "abc:1:0:1"
        assert handler.fetches[0].started > 0

    @pytest.mark.asyncio
    async def test_cancellation(self) -> None:
        transport = AsyncMock(spec=Transport)
        transport.result.return_value = _result("R1", False)
        task = asyncio.create_task(Poller(transport, interval=0.01).poll({"R1": "a"}, _Recorder()))

        await asyncio.sleep(0.05)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        assert transport.result.await_count >= 1

    @pytest.mark.asyncio
    async def test_cancelled_before_first_pass(self) -> None:
        transport = AsyncMock(spec=Transport)
        task = asyncio.create_task(Poller(transport).poll({"R1": "a"}, _Recorder()))
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        transport.result.assert_not_awaited()
