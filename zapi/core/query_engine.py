"""Execution of one user query from submission to the last result.

:class:`QueryEngine` submits the query, then acquires the results either by
polling (the default) or by listening for the service to POST them to a
callback URL.  Completed results that are HTTP redirects are followed by
submitting a new query for the redirect location, up to a configured
number of hops per chain.

Every acknowledged request and every followed redirect takes one slot in a
:class:`RequestTracker`.  A slot is released exactly once, when its result
completes (or after the only pass of a ``once`` poll).  The engine returns
when every slot is released or the timeout expires, whichever is first.

Usage::

    engine = QueryEngine(transport, QueryOptions(timeout=60))
    cause = await engine.run(["example.com"])
    if cause is not None:
        ...  # timed out
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from dataclasses import dataclass, field
from urllib.parse import urljoin

from zapi.callback.receiver import create_receiver_app
from zapi.core.errors import InputError, ZapiError
from zapi.core.inputs import content_label, normalize_url
from zapi.core.listener import Listener
from zapi.core.poller import Fetch, Poller, Requests
from zapi.core.presenter import Presenter, error_code
from zapi.httpsig.middleware import KeyGetter
from zapi.schemas.dataset import DatasetType
from zapi.schemas.query import QueryRequests, QueryResult, QueryStatus, URLContent, is_complete
from zapi.transport.base import CallOptions, Transport

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 15 * 60.0


# ---------------------------------------------------------------------------
# Request tracking
# ---------------------------------------------------------------------------


@dataclass
class _Tracked:
    request_id: str
    label: str
    start: float
    redirect_from: str | None = None
    done: bool = False


class RequestTracker:
    """Wait group over the requests issued by one query.

    Each :meth:`add` takes a slot that the matching :meth:`done` releases;
    :meth:`wait` returns once no slot is held.  The tracker also records the
    redirect chain behind each request and when each request was submitted.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._requests: dict[str, _Tracked] = {}
        self._held = 0
        self._drained = asyncio.Event()
        self._drained.set()

    def add(self, request_id: str, label: str, start: float | None = None) -> None:
        with self._lock:
            if request_id in self._requests:
                logger.debug("Request %s is already tracked", request_id)
                return
            self._requests[request_id] = _Tracked(
                request_id=request_id,
                label=label,
                start=time.monotonic() if start is None else start,
            )
            self._held += 1
            self._drained.clear()

    def set_redirect(self, request_id: str, from_request_id: str) -> None:
        """Record that *request_id* follows a redirect of *from_request_id*."""
        with self._lock:
            if request_id not in self._requests or from_request_id not in self._requests:
                logger.debug("Untracked redirect %s -> %s", from_request_id, request_id)
                return
            self._requests[request_id].redirect_from = from_request_id

    def num_redirects(self, request_id: str) -> int:
        """Number of redirects followed to reach *request_id*."""
        with self._lock:
            count = 0
            current = self._requests.get(request_id)
            while current is not None and current.redirect_from is not None:
                count += 1
                current = self._requests.get(current.redirect_from)
            return count

    def start_time(self, request_id: str) -> float | None:
        with self._lock:
            tracked = self._requests.get(request_id)
            return tracked.start if tracked is not None else None

    def done(self, request_id: str) -> bool:
        """Release the slot of *request_id*.

        Returns ``False`` if *request_id* is unknown or was already released.
        """
        with self._lock:
            tracked = self._requests.get(request_id)
            if tracked is None:
                logger.debug("Ignoring result for untracked request %s", request_id)
                return False
            if tracked.done:
                return False
            tracked.done = True
            self._held -= 1
            if self._held == 0:
                self._drained.set()
            return True

    @property
    def held(self) -> int:
        with self._lock:
            return self._held

    async def wait(self) -> None:
        await self._drained.wait()


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


@dataclass
class QueryOptions:
    """How a query is submitted and how its results are acquired.

    Args:
        datasets: Dataset kinds to request.
        callback: Public URL the service POSTs results to.  Disables
            polling and starts a receiver on ``listen``.
        listen: Listen address of the callback receiver.
        no_poll: Submit only; do not acquire results.
        no_follow_redirects: Print redirect results instead of following them.
        redirect_limit: Maximum redirect hops per chain.
        timeout: Seconds to wait for all results.
        poll_interval: Seconds between poll passes.
        once: Poll a single pass only.
        trace: Request a trace for every call.
        debug: Print every result received, complete or not.
        headers: Extra headers sent with every call (e.g. mock hints).
    """

    datasets: list[DatasetType] = field(default_factory=lambda: [DatasetType.CATEGORIZATION])
    callback: str = ""
    listen: str = ":8080"
    no_poll: bool = False
    no_follow_redirects: bool = False
    redirect_limit: int = 10
    timeout: float = DEFAULT_TIMEOUT
    poll_interval: float = 1.0
    once: bool = False
    trace: bool = False
    debug: bool = False
    headers: dict[str, str | list[str]] = field(default_factory=dict)


def build_requests(
    urls: list[str],
    contents: list[URLContent],
    options: QueryOptions,
) -> QueryRequests:
    """Validate and normalise the submission of a query.

    Raises:
        InputError: If there is nothing to submit or no dataset requested.
    """
    urls = [normalize_url(u) for u in urls if u]
    if not urls and not contents:
        raise InputError("at least one url or content is required")
    if not options.datasets:
        raise InputError("at least one valid dataset is required")

    return QueryRequests(
        url=urls,
        content=contents,
        dataset=options.datasets,
        callback=normalize_url(options.callback) if options.callback else "",
    )


class QueryEngine:
    """Runs one query end to end.

    Args:
        transport: Used for ``Query`` and ``Result`` calls.
        options: Submission and acquisition settings.
        presenter: Output sink; defaults to the terminal.
        key_getter: Verifies callback signatures; ``None`` accepts unsigned
            callbacks.
    """

    def __init__(
        self,
        transport: Transport,
        options: QueryOptions | None = None,
        presenter: Presenter | None = None,
        key_getter: KeyGetter | None = None,
    ) -> None:
        self._transport = transport
        self.options = options or QueryOptions()
        self.presenter = presenter or Presenter()
        self._key_getter = key_getter
        self.tracker = RequestTracker()
        self._callback = normalize_url(self.options.callback) if self.options.callback else ""

    @property
    def listening(self) -> bool:
        return bool(self.options.callback)

    @property
    def polling(self) -> bool:
        return not self.options.no_poll and not self.listening

    @property
    def tracking(self) -> bool:
        return self.polling or self.listening

    async def run(
        self,
        urls: list[str],
        contents: list[URLContent] | None = None,
    ) -> BaseException | None:
        """Submit the query and wait for its results.

        Returns:
            ``None`` when every result arrived (or nothing was to be
            awaited), otherwise the :class:`asyncio.TimeoutError` that ended
            the wait.

        Raises:
            InputError: If the submission is invalid; nothing is sent.
            ZapiError: If the query itself failed.
        """
        requests = build_requests(urls, list(contents or []), self.options)

        try:
            await asyncio.wait_for(self._run(requests), self.options.timeout)
        except asyncio.TimeoutError as exc:
            logger.debug("Query timed out after %ss", self.options.timeout)
            return exc
        return None

    async def _run(self, requests: QueryRequests) -> None:
        listener: Listener | None = None
        poll_task: asyncio.Task[None] | None = None

        try:
            if self.listening:
                app = create_receiver_app(self.handle_callback, key_getter=self._key_getter)
                listener = Listener(app, self.options.listen, debug=self.options.debug)
                self.presenter.notice(f"listening for callbacks at {self.options.listen}")
                await listener.start()

            pending = await self.query(requests)

            if not self.tracking:
                return

            if self.polling:
                poller = Poller(
                    self._transport,
                    interval=self.options.poll_interval,
                    once=self.options.once,
                    trace=self.options.trace,
                    headers=self.options.headers,
                )
                poll_task = asyncio.create_task(poller.poll(pending, self.handle_result))

            await self._wait(poll_task)
        finally:
            if poll_task is not None and not poll_task.done():
                poll_task.cancel()
                await asyncio.gather(poll_task, return_exceptions=True)
            if listener is not None:
                await listener.stop()

    async def _wait(self, poll_task: asyncio.Task[None] | None) -> None:
        drained = asyncio.create_task(self.tracker.wait())
        waiting: set[asyncio.Task[None]] = {drained}
        if poll_task is not None:
            waiting.add(poll_task)

        try:
            finished, _ = await asyncio.wait(waiting, return_when=asyncio.FIRST_COMPLETED)
            if poll_task in finished:
                # Surfaces handler failures.
                poll_task.result()
        finally:
            drained.cancel()

    def _call_options(self) -> CallOptions:
        return CallOptions(
            trace=self.options.trace,
            headers=self.options.headers,
            on_trace_id=self.presenter.trace_id,
        )

    async def query(self, requests: QueryRequests) -> Requests:
        """Submit *requests* and return the acknowledged ``request id → label``.

        Acknowledged requests are tracked when results will be awaited.
        Entries the service rejected are reported and not returned.
        """
        start = time.monotonic()
        replies = await self._transport.query(requests, self._call_options())

        pending: Requests = {}
        rows: list[tuple[str, str]] = []
        for i, reply in enumerate(replies.reply):
            if i < len(requests.url):
                label = requests.url[i]
            elif i - len(requests.url) < len(requests.content):
                content = requests.content[i - len(requests.url)]
                label = content_label(content.url, content.content)
            else:
                logger.error("Unexpected reply %d: %s", i, reply)
                continue

            if reply.error is not None and reply.error.code:
                self.presenter.error(
                    f"{label}: {error_code(reply.error.code)}: {reply.error.message}"
                )
                continue

            pending[reply.request_id] = label
            rows.append((label, reply.request_id))
            if self.tracking:
                self.tracker.add(reply.request_id, label, start)

        self.presenter.replies(rows, replies)
        return pending

    async def handle_callback(self, result: QueryResult) -> None:
        await self.handle_result(result)

    async def handle_result(self, result: QueryResult, fetch: Fetch | None = None) -> Requests | None:
        """Print *result* and follow it if it is a redirect.

        Returns the request created by following a redirect, if any.
        """
        complete = is_complete(result)
        try:
            return await self._handle_result(result, complete, fetch)
        finally:
            if complete or self.options.once:
                self.tracker.done(result.request_id)

    async def _handle_result(
        self,
        result: QueryResult,
        complete: bool,
        fetch: Fetch | None,
    ) -> Requests | None:
        status = result.query_status or QueryStatus()
        is_redirect = bool(status.location) and 300 <= status.fetch_code < 400

        if self.options.debug or self.options.no_follow_redirects or (complete and not is_redirect):
            self.presenter.result(
                result,
                trace_id=fetch.trace_id if fetch is not None else "",
                poll_start=fetch.started if fetch is not None else None,
                start=self.tracker.start_time(result.request_id),
            )

        if self.options.no_follow_redirects or not complete or not is_redirect:
            return None

        location = status.location
        if location.startswith("/"):
            location = urljoin(result.url, location)

        if location == result.url:
            logger.warning("Not redirecting %s to the same url", result.request_id)
            self.presenter.notice("\nnot redirecting to the same url")
            return None

        hop = self.tracker.num_redirects(result.request_id) + 1
        if hop >= self.options.redirect_limit:
            self.presenter.notice(f"\ntoo many redirects ({hop}): {result.url} → {location}")
            return None

        self.presenter.notice(f"\nfollowing redirect #{hop}: {result.url} → {location}")

        try:
            spawned = await self.query(
                QueryRequests(
                    url=[location],
                    dataset=self.options.datasets,
                    callback=self._callback,
                )
            )
        except ZapiError as exc:
            logger.error("Query error following redirect to %s: %s", location, exc)
            return None

        if self.tracking:
            for request_id in spawned:
                self.tracker.set_redirect(request_id, result.request_id)
        return spawned
