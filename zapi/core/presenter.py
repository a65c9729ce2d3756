"""Rendering of replies and results for the terminal.

Results go to standard output as a text block (or as JSON with
``--json``)::

    URL/Content:        http://example.com
    Request ID:         R1
    Poll Duration:      12.3ms
    Complete:           true (1.2s)
    Categories:         BLOG NEWS
    Fetch Status:       OK (200)

Acknowledgements, trace ids and notices go to standard error so that
standard output carries only results.
"""

from __future__ import annotations

import http
import sys
import time
from typing import Iterable, TextIO

import grpc

from zapi.core.tracing import trace_id_string
from zapi.schemas.dataset import Dataset, Status
from zapi.schemas.query import QueryReplies, QueryResult, QueryStatus, is_complete

_LABEL_WIDTH = 20

_GRPC_CODES = {code.value[0]: code.name for code in grpc.StatusCode}


def format_duration(seconds: float) -> str:
    """Format *seconds* the way durations are shown to the user."""
    if seconds < 0.001:
        return f"{seconds * 1_000_000:.0f}µs"
    if seconds < 1:
        return f"{seconds * 1000:.1f}ms"
    if seconds < 60:
        return f"{seconds:.3f}s"
    minutes, secs = divmod(seconds, 60)
    return f"{int(minutes)}m{secs:.3f}s"


def http_status(code: int) -> str:
    """``"OK (200)"`` style description of an HTTP status code."""
    try:
        phrase = http.HTTPStatus(code).phrase
    except ValueError:
        phrase = ""
    return f"{phrase} ({code})".lstrip()


def error_code(code: int) -> str:
    """``"NOT_FOUND (5)"`` style description of an RPC status code."""
    return f"{_GRPC_CODES.get(code, 'UNKNOWN')} ({code})"


def _line(label: str, value: object) -> str:
    return f"{label + ':':<{_LABEL_WIDTH}}{value}"


def _error_lines(error: Status) -> list[str]:
    lines = [_line("Error Code", error_code(error.code))]
    if error.message:
        lines.append(_line("Error Message", error.message))
    return lines


def _dataset_lines(dataset: Dataset) -> list[str]:
    lines: list[str] = []

    if dataset.categorization is not None:
        names = " ".join(str(c) for c in dataset.categorization.value)
        lines.append(_line("Categories", names))
        if dataset.categorization.error is not None:
            lines.extend(_error_lines(dataset.categorization.error))

    if dataset.malicious is not None:
        lines.append(_line("Malicious", dataset.malicious.describe()))
        if dataset.malicious.error is not None:
            lines.extend(_error_lines(dataset.malicious.error))

    if dataset.echo is not None:
        lines.append(_line("Echo", dataset.echo.url))
        if dataset.echo.error is not None:
            lines.extend(_error_lines(dataset.echo.error))

    if dataset.language is not None:
        lines.append(_line("Language", dataset.language.code))
        if dataset.language.error is not None:
            lines.extend(_error_lines(dataset.language.error))

    return lines


def _status_lines(status: QueryStatus) -> list[str]:
    lines: list[str] = []
    if status.fetch_code:
        lines.append(_line("Fetch Status", http_status(status.fetch_code)))
    if status.location:
        lines.append(_line("Redirect Location", status.location))
    if status.error is not None:
        lines.extend(_error_lines(status.error))
    return lines


def render_result(
    result: QueryResult,
    poll_start: float | None = None,
    start: float | None = None,
    now: float | None = None,
) -> str:
    """Return the text block for *result*.

    Args:
        result: The result to render.
        poll_start: Monotonic time the fetch that produced *result* began.
        start: Monotonic time the request was submitted.
        now: Monotonic "now"; defaults to :func:`time.monotonic`.
    """
    now = time.monotonic() if now is None else now
    lines: list[str] = []

    if result.url:
        lines.append(_line("URL/Content", result.url))
    if result.request_id:
        lines.append(_line("Request ID", result.request_id))
    if poll_start is not None:
        lines.append(_line("Poll Duration", format_duration(now - poll_start)))

    if not is_complete(result):
        lines.append(_line("Complete", "false"))
    elif start is not None:
        lines.append(_line("Complete", f"true ({format_duration(now - start)})"))
    else:
        lines.append(_line("Complete", "true"))

    if result.response_dataset is not None:
        lines.extend(_dataset_lines(result.response_dataset))
    if result.query_status is not None:
        lines.extend(_status_lines(result.query_status))

    return "\n".join(lines) + "\n"


class Presenter:
    """Writes replies, results and notices to the terminal streams.

    Args:
        json_output: Print raw JSON instead of text blocks.
        out: Stream for results; defaults to ``sys.stdout``.
        err: Stream for diagnostics; defaults to ``sys.stderr``.
    """

    def __init__(
        self,
        json_output: bool = False,
        out: TextIO | None = None,
        err: TextIO | None = None,
    ) -> None:
        self.json_output = json_output
        self._out = out
        self._err = err

    @property
    def out(self) -> TextIO:
        return self._out or sys.stdout

    @property
    def err(self) -> TextIO:
        return self._err or sys.stderr

    def replies(self, rows: Iterable[tuple[str, str]], replies: QueryReplies) -> None:
        """Print the ``label: request id`` acknowledgement of a query."""
        if self.json_output:
            print(replies.model_dump_json(exclude_none=True), file=self.out)
            return

        rows = list(rows)
        width = max((len(label) for label, _ in rows), default=0) + 2
        for label, request_id in rows:
            print(f"{label + ':':<{width}}{request_id}", file=self.err)
        self.err.flush()

    def result(
        self,
        result: QueryResult,
        trace_id: str = "",
        poll_start: float | None = None,
        start: float | None = None,
    ) -> None:
        print("\nreceived result", file=self.err)
        if trace_id:
            self.trace_id(trace_id)

        if self.json_output:
            print(result.model_dump_json(exclude_none=True), file=self.out)
        else:
            self.out.write(render_result(result, poll_start=poll_start, start=start))
        self.out.flush()

    def trace_id(self, trace_id: str) -> None:
        print(_line("Trace ID", trace_id_string(trace_id)), file=self.err)

    def notice(self, message: str) -> None:
        print(message, file=self.err)

    def error(self, message: str) -> None:
        print(f"error: {message}", file=self.err)
