"""Command-line entrypoint for zapi.

Every option defaults from :class:`~zapi.config.Settings`, so each can also
be given as a ``ZVELO_<SCREAMING_SNAKE>`` environment variable.  Examples::

    zapi query example.com
    zapi query --rest --dataset categorization --dataset malicious example.com
    zapi query --content @page.html
    zapi query --callback https://public.example.com/cb --listen :8080 example.com
    zapi poll 5Q1T0DWV2CMB1RE0MCWW2MTZ42
    zapi suggest --url example.com --category NEWS
    zapi token --scope "zvelo.dataset openid"
    eval "$(zapi complete)"

Results are printed to standard output; acknowledgements, trace ids and
logs go to standard error.  The exit code is ``0`` on success and ``1`` on
any error, timeouts included.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from typing import Any, Awaitable, Callable, Sequence

from pydantic import ValidationError

from zapi import APP_NAME, __version__
from zapi.callback.keycache import FileKeyCache
from zapi.callback.keygetter import KeyGetter
from zapi.callback.receiver import create_receiver_app
from zapi.config import Settings, get_settings, parse_duration
from zapi.core.errors import InputError, ZapiError
from zapi.core.inputs import load_content, normalize_url
from zapi.core.listener import Listener
from zapi.core.poller import Fetch, Poller
from zapi.core.presenter import Presenter, format_duration
from zapi.core.query_engine import QueryEngine, QueryOptions
from zapi.schemas.dataset import (
    Categorization,
    Category,
    Dataset,
    DatasetType,
    Malicious,
    Verdict,
)
from zapi.schemas.query import QueryResult, Suggestion, URLContent, is_complete
from zapi.tokens.base import TokenSource
from zapi.tokens.factory import build_token_source, wants_id_token
from zapi.tokens.oidc import OIDCVerifier
from zapi.transport import build_transport, rest_base_url
from zapi.transport.base import (
    MOCK_CATEGORY_HEADER,
    MOCK_COMPLETE_AFTER_HEADER,
    MOCK_ERROR_CODE_HEADER,
    MOCK_ERROR_MESSAGE_HEADER,
    MOCK_FETCH_CODE_HEADER,
    MOCK_LOCATION_HEADER,
    MOCK_MALICIOUS_CATEGORY_HEADER,
    CallOptions,
)
from zapi.transport.rest import RESTTransport

logger = logging.getLogger(__name__)

Command = Callable[[argparse.Namespace, Settings], Awaitable[int]]


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------


def _duration(value: str) -> float:
    try:
        return parse_duration(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from exc


def _common_parser(settings: Settings) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(add_help=False)

    output = parser.add_argument_group("output")
    output.add_argument("--debug", action="store_true", default=settings.debug, help="Enable debug logging")
    output.add_argument(
        "--trace",
        action="store_true",
        default=settings.trace,
        help="Request a trace to be generated for each request",
    )
    output.add_argument(
        "--json",
        dest="json_output",
        action="store_true",
        default=settings.json_output,
        help="Print raw JSON responses",
    )
    output.add_argument(
        "--timeout",
        type=_duration,
        default=settings.timeout,
        help="Maximum time to wait, e.g. 30s or 15m (default: %s)" % format_duration(settings.timeout),
    )

    transport = parser.add_argument_group("transport")
    transport.add_argument(
        "--rest",
        action="store_true",
        default=settings.rest,
        help="Use REST instead of gRPC for API requests",
    )
    transport.add_argument("--addr", default=settings.addr, help="Address of the zvelo API")
    transport.add_argument(
        "--rest-base-url",
        default=settings.rest_base_url,
        help="Base URL for REST requests (default: derived from --addr)",
    )
    transport.add_argument(
        "--grpc-target",
        default=settings.grpc_target,
        help="host:port for gRPC requests (default: --addr)",
    )
    transport.add_argument("--no-tls", action="store_true", default=settings.no_tls, help="Disable TLS")
    transport.add_argument(
        "--tls-insecure-skip-verify",
        action="store_true",
        default=settings.tls_insecure_skip_verify,
        help="Accept any certificate presented by the server. Only for testing.",
    )

    auth = parser.add_argument_group("credentials")
    auth.add_argument("--client-id", default=settings.client_id, help="OAuth2 client id")
    auth.add_argument("--client-secret", default=settings.client_secret, help="OAuth2 client secret")
    auth.add_argument("--access-token", default=settings.access_token, help="Use this access token")
    auth.add_argument(
        "--use-user-credentials",
        action="store_true",
        default=settings.use_user_credentials,
        help="Authenticate as a user through the browser",
    )
    auth.add_argument(
        "--scope",
        action="append",
        default=None,
        help="OAuth2 scope to request, may be repeated (default: %s)" % settings.scope,
    )
    auth.add_argument(
        "--no-cache-token",
        action="store_true",
        default=settings.no_cache_token,
        help="Do not cache tokens on disk",
    )
    auth.add_argument(
        "--oauth2-callback-url",
        default=settings.oauth2_callback_url,
        help="Redirect URL for the user flow",
    )
    auth.add_argument(
        "--oauth2-callback-addr",
        default=settings.oauth2_callback_addr,
        help="Address to listen on for the user flow redirect",
    )
    auth.add_argument(
        "--oauth2-no-open-in-browser",
        action="store_true",
        default=settings.oauth2_no_open_in_browser,
        help="Print the authorization URL instead of opening a browser",
    )
    auth.add_argument(
        "--mock-no-credentials",
        action="store_true",
        default=settings.mock_no_credentials,
        help="Send no credentials (mock servers only)",
    )

    return parser


def _poller_parser(settings: Settings) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(add_help=False)
    group = parser.add_argument_group("polling")
    group.add_argument(
        "--poll-interval",
        type=_duration,
        default=settings.poll_interval,
        help="Time between polls (default: %s)" % format_duration(settings.poll_interval),
    )
    group.add_argument("--once", action="store_true", default=settings.once, help="Poll only once")
    return parser


def _callback_parser(settings: Settings) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(add_help=False)
    group = parser.add_argument_group("callbacks")
    group.add_argument(
        "--listen",
        default=settings.listen,
        help="Address and port to listen for callbacks (default: %(default)s)",
    )
    group.add_argument(
        "--no-validate-callback",
        action="store_true",
        default=settings.no_validate_callback,
        help="Do not validate callback signatures",
    )
    group.add_argument(
        "--no-key-cache",
        action="store_true",
        default=settings.no_key_cache,
        help="Do not cache public keys used to validate callbacks",
    )
    return parser


def build_parser(settings: Settings | None = None) -> argparse.ArgumentParser:
    """Return the ``zapi`` argument parser with defaults from *settings*."""
    settings = settings or get_settings()
    common = _common_parser(settings)
    polling = _poller_parser(settings)
    callbacks = _callback_parser(settings)

    parser = argparse.ArgumentParser(prog=APP_NAME, description="zvelo API client")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    sub = parser.add_subparsers(dest="command", metavar="command", required=True)

    query = sub.add_parser(
        "query",
        parents=[common, polling, callbacks],
        help="Query datasets for URLs or content",
    )
    query.add_argument("urls", nargs="*", metavar="url")
    query.add_argument(
        "--content",
        action="append",
        default=[],
        help="Query datasets for this content instead of fetching a URL. "
        "@path reads a file, @- reads stdin. May be repeated.",
    )
    query.add_argument(
        "--dataset",
        action="append",
        default=None,
        help="Dataset to retrieve, may be repeated (available: %s; default: CATEGORIZATION)"
        % ", ".join(d.name for d in DatasetType.available()),
    )
    query.add_argument(
        "--callback",
        default=settings.callback,
        help="Public URL that routes to --listen; results are posted there instead of polled",
    )
    query.add_argument(
        "--no-poll",
        action="store_true",
        default=settings.no_poll,
        help="Do not poll for results",
    )
    query.add_argument(
        "--no-follow-redirects",
        action="store_true",
        default=settings.no_follow_redirects,
        help="Print redirect results instead of following them",
    )
    query.add_argument(
        "--redirect-limit",
        type=int,
        default=settings.redirect_limit,
        help="Maximum number of redirects to follow per request (default: %(default)s)",
    )
    mock = query.add_argument_group("mock server hints")
    mock.add_argument("--mock-category", action="append", default=[], help="Expect this category")
    mock.add_argument(
        "--mock-malicious-category",
        action="append",
        default=[],
        help="Expect this malicious category and a MALICIOUS verdict",
    )
    mock.add_argument(
        "--mock-complete-after",
        type=_duration,
        default=0.0,
        help="Do not complete results until this much time has passed",
    )
    mock.add_argument("--mock-fetch-code", type=int, default=0, help="Expect this fetch code")
    mock.add_argument("--mock-location", default="", help="Expect this redirect location")
    mock.add_argument("--mock-error-code", type=int, default=0, help="Expect this error code")
    mock.add_argument("--mock-error-message", default="", help="Expect this error message")
    query.set_defaults(func=cmd_query)

    poll = sub.add_parser("poll", parents=[common, polling], help="Poll for results by request id")
    poll.add_argument("request_ids", nargs="+", metavar="request_id")
    poll.set_defaults(func=cmd_poll)

    stream = sub.add_parser("stream", parents=[common], help="Stream results as they complete")
    stream.set_defaults(func=cmd_stream)

    suggest = sub.add_parser("suggest", parents=[common], help="Suggest datasets for a URL")
    suggest.add_argument("--url", required=True, help="URL the suggestion is for")
    suggest.add_argument(
        "--category",
        action="append",
        default=[],
        help="Category id or name, may be repeated",
    )
    suggest.add_argument("--malicious-category", default="", help="Malicious category id or name")
    suggest.add_argument("--not-malicious", action="store_true", help="Suggest a CLEAN verdict")
    suggest.set_defaults(func=cmd_suggest)

    graphql = sub.add_parser("graphql", parents=[common], help="Run a GraphQL query")
    graphql.add_argument(
        "--content",
        required=True,
        help="The GraphQL document. @path reads a file, @- reads stdin.",
    )
    graphql.set_defaults(func=cmd_graphql)

    token = sub.add_parser("token", parents=[common], help="Print the current access token")
    token.set_defaults(func=cmd_token)

    receiver = sub.add_parser(
        "receiver",
        parents=[common, callbacks],
        help="Listen for callbacks and print the results",
    )
    receiver.set_defaults(func=cmd_receiver)

    complete = sub.add_parser("complete", help="Print a shell completion script")
    complete.set_defaults(func=cmd_complete)

    return parser


def apply_args(settings: Settings, args: argparse.Namespace) -> Settings:
    """Return *settings* updated with the options given in *args*."""
    updates: dict[str, Any] = {
        name: getattr(args, name)
        for name in type(settings).model_fields
        if name != "scope" and hasattr(args, name)
    }
    if getattr(args, "scope", None):
        updates["scope"] = " ".join(args.scope)
    return settings.model_copy(update=updates)


# ---------------------------------------------------------------------------
# Shared construction
# ---------------------------------------------------------------------------


def _presenter(settings: Settings) -> Presenter:
    return Presenter(json_output=settings.json_output)


def _key_getter(settings: Settings) -> KeyGetter | None:
    if settings.no_validate_callback:
        return None
    return KeyGetter(cache=None if settings.no_key_cache else FileKeyCache(APP_NAME))


def mock_headers(args: argparse.Namespace) -> dict[str, str | list[str]]:
    """Per-call headers carrying the ``--mock-*`` hints.

    Raises:
        InputError: If a category is not recognised.
    """
    headers: dict[str, str | list[str]] = {}
    if args.mock_category:
        headers[MOCK_CATEGORY_HEADER] = [Category.parse(c).name for c in args.mock_category]
    if args.mock_malicious_category:
        headers[MOCK_MALICIOUS_CATEGORY_HEADER] = [
            Category.parse(c).name for c in args.mock_malicious_category
        ]
    if args.mock_complete_after > 0:
        headers[MOCK_COMPLETE_AFTER_HEADER] = f"{args.mock_complete_after}s"
    if args.mock_fetch_code:
        headers[MOCK_FETCH_CODE_HEADER] = str(args.mock_fetch_code)
    if args.mock_location:
        headers[MOCK_LOCATION_HEADER] = args.mock_location
    if args.mock_error_code or args.mock_error_message:
        headers[MOCK_ERROR_CODE_HEADER] = str(args.mock_error_code)
        headers[MOCK_ERROR_MESSAGE_HEADER] = args.mock_error_message
    return headers


def parse_datasets(names: Sequence[str] | None) -> list[DatasetType]:
    """Parse ``--dataset`` values, defaulting to categorization.

    Unknown names are reported and skipped.

    Raises:
        InputError: If no valid dataset remains.
    """
    datasets: list[DatasetType] = []
    for name in names or [DatasetType.CATEGORIZATION.name]:
        try:
            datasets.append(DatasetType.parse(name.strip()))
        except InputError:
            logger.error("invalid dataset type: %s", name)
    if not datasets:
        raise InputError("at least one valid dataset is required")
    return datasets


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


async def cmd_query(args: argparse.Namespace, settings: Settings) -> int:
    options = QueryOptions(
        datasets=parse_datasets(args.dataset),
        callback=settings.callback,
        listen=settings.listen,
        no_poll=settings.no_poll,
        no_follow_redirects=settings.no_follow_redirects,
        redirect_limit=settings.redirect_limit,
        timeout=settings.timeout,
        poll_interval=settings.poll_interval,
        once=settings.once,
        trace=settings.trace,
        debug=settings.debug,
        headers=mock_headers(args),
    )
    contents = [URLContent(content=load_content(value)) for value in args.content]
    if not args.urls and not contents:
        raise InputError("at least one url or content is required")

    transport = build_transport(settings, build_token_source(settings))
    engine = QueryEngine(
        transport,
        options,
        presenter=_presenter(settings),
        key_getter=_key_getter(settings),
    )
    try:
        cause = await engine.run(args.urls, contents)
    finally:
        await transport.close()

    if cause is not None:
        logger.error("timed out after %s waiting for results", format_duration(settings.timeout))
        return 1
    return 0


async def cmd_poll(args: argparse.Namespace, settings: Settings) -> int:
    presenter = _presenter(settings)

    async def handler(result: QueryResult, fetch: Fetch) -> None:
        if is_complete(result) or settings.debug:
            presenter.result(result, trace_id=fetch.trace_id, poll_start=fetch.started)

    transport = build_transport(settings, build_token_source(settings))
    poller = Poller(
        transport,
        interval=settings.poll_interval,
        once=settings.once,
        trace=settings.trace,
    )
    try:
        await asyncio.wait_for(
            poller.poll({request_id: "" for request_id in args.request_ids}, handler),
            settings.timeout,
        )
    finally:
        await transport.close()
    return 0


async def cmd_stream(args: argparse.Namespace, settings: Settings) -> int:
    presenter = _presenter(settings)
    transport = build_transport(settings, build_token_source(settings))
    opts = CallOptions(trace=settings.trace, on_trace_id=presenter.trace_id)

    async def consume() -> None:
        async for result in transport.stream(opts):
            presenter.result(result)

    try:
        await asyncio.wait_for(consume(), settings.timeout)
    finally:
        await transport.close()
    return 0


def build_suggestion(args: argparse.Namespace) -> Suggestion:
    """Build the suggestion described by the ``suggest`` options.

    Raises:
        InputError: If the options are contradictory or name unknown categories.
    """
    if args.malicious_category and args.not_malicious:
        raise InputError("--malicious-category and --not-malicious are mutually exclusive")

    dataset = Dataset()
    if args.category:
        dataset.categorization = Categorization(value=[Category.parse(c) for c in args.category])
    if args.malicious_category:
        dataset.malicious = Malicious(
            category=Category.parse(args.malicious_category),
            verdict=Verdict.VERDICT_MALICIOUS,
        )
    elif args.not_malicious:
        dataset.malicious = Malicious(verdict=Verdict.VERDICT_CLEAN)

    if dataset.categorization is None and dataset.malicious is None:
        raise InputError("at least one of --category, --malicious-category or --not-malicious is required")

    return Suggestion(url=normalize_url(args.url), dataset=dataset)


async def cmd_suggest(args: argparse.Namespace, settings: Settings) -> int:
    suggestion = build_suggestion(args)
    presenter = _presenter(settings)
    transport = build_transport(settings, build_token_source(settings))
    opts = CallOptions(trace=settings.trace, on_trace_id=presenter.trace_id)
    try:
        await asyncio.wait_for(transport.suggest(suggestion, opts), settings.timeout)
    finally:
        await transport.close()
    presenter.notice(f"suggestion submitted for {suggestion.url}")
    return 0


async def cmd_graphql(args: argparse.Namespace, settings: Settings) -> int:
    document = load_content(args.content)
    presenter = _presenter(settings)
    transport = RESTTransport(
        rest_base_url(settings),
        build_token_source(settings),
        verify=not settings.tls_insecure_skip_verify,
    )
    opts = CallOptions(trace=settings.trace, on_trace_id=presenter.trace_id)
    try:
        body = await asyncio.wait_for(transport.graphql(document, opts), settings.timeout)
    finally:
        await transport.close()
    print(body)
    return 0


def _print_token_claims(claims: dict[str, Any]) -> None:
    audience = claims.get("aud", "")
    if isinstance(audience, list):
        audience = ", ".join(audience)
    print(f"Issuer:        {claims.get('iss', '')}")
    print(f"Audience:      {audience}")
    print(f"Subject:       {claims.get('sub', '')}")
    print(f"Issued At:     {claims.get('iat', '')}")
    print("Claims:")
    print("  " + json.dumps(claims, indent=2, sort_keys=True).replace("\n", "\n  "))


async def cmd_token(args: argparse.Namespace, settings: Settings) -> int:
    source: TokenSource | None = build_token_source(settings)
    if source is None:
        return 0

    token = await source.token()
    if token.access_token:
        print(f"Access Token:  {token.access_token}")
    if token.refresh_token:
        print(f"Refresh Token: {token.refresh_token}")
    if token.expiry is not None:
        print(f"Expires At:    {token.expiry.isoformat()}")
    if token.id_token:
        print(f"ID Token:      {token.id_token}")

    if wants_id_token(settings.scopes) and token.id_token:
        verifier = await OIDCVerifier.discover(settings.oidc_issuer, settings.client_id)
        _print_token_claims(verifier.verify(token.id_token))
    return 0


async def cmd_receiver(args: argparse.Namespace, settings: Settings) -> int:
    presenter = _presenter(settings)

    def handler(result: QueryResult) -> None:
        presenter.result(result)

    app = create_receiver_app(handler, key_getter=_key_getter(settings))
    presenter.notice(f"listening for callbacks at {settings.listen}")
    await Listener(app, settings.listen, debug=settings.debug).serve()
    return 0


_BASH_COMPLETION = """\
_{app}_autocomplete() {{
    local cur cmd
    COMPREPLY=()
    cur="${{COMP_WORDS[COMP_CWORD]}}"
    cmd="${{COMP_WORDS[1]}}"
    if [ "$COMP_CWORD" -eq 1 ]; then
        COMPREPLY=( $(compgen -W "{commands}" -- "$cur") )
        return 0
    fi
    case "$cmd" in
{cases}
    esac
    return 0
}}

complete -F _{app}_autocomplete {app}
"""

_ZSH_PREAMBLE = """\
autoload -U compinit && compinit
autoload -U bashcompinit && bashcompinit

"""


def completion_script(shell: str, parser: argparse.ArgumentParser | None = None) -> str:
    """Return a completion script for *shell* (``bash`` or ``zsh``).

    Raises:
        InputError: For any other shell.
    """
    if shell not in ("bash", "zsh"):
        raise InputError(f"unsupported shell: {shell}")

    parser = parser or build_parser()
    subparsers = next(
        action for action in parser._actions if isinstance(action, argparse._SubParsersAction)
    )

    cases = []
    for name, sub in subparsers.choices.items():
        options = sorted(
            option
            for action in sub._actions
            for option in action.option_strings
            if option.startswith("--")
        )
        cases.append(
            f'        {name}) COMPREPLY=( $(compgen -W "{" ".join(options)}" -- "$cur") ) ;;'
        )

    script = _BASH_COMPLETION.format(
        app=APP_NAME,
        commands=" ".join(subparsers.choices),
        cases="\n".join(cases),
    )
    if shell == "zsh":
        script = _ZSH_PREAMBLE + script
    else:
        script = "#!/bin/bash\n" + script
    return script


async def cmd_complete(args: argparse.Namespace, settings: Settings) -> int:
    shell = os.path.basename(os.environ.get("SHELL", ""))
    print(completion_script(shell), end="")
    return 0


# ---------------------------------------------------------------------------
# Entrypoint
# ---------------------------------------------------------------------------


def configure_logging(debug: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(message)s",
        stream=sys.stderr,
    )


def main(argv: Sequence[str] | None = None) -> int:
    """Run the ``zapi`` command line and return the exit code."""
    try:
        base = get_settings()
    except ValidationError as exc:
        print(f"invalid configuration: {exc}", file=sys.stderr)
        return 1

    args = build_parser(base).parse_args(argv)
    settings = apply_args(base, args)
    configure_logging(settings.debug)

    command: Command = args.func
    try:
        return asyncio.run(command(args, settings))
    except KeyboardInterrupt:
        return 0
    except asyncio.TimeoutError:
        logger.error("timed out after %s", format_duration(settings.timeout))
        return 1
    except (ZapiError, OSError) as exc:
        logger.error("%s", exc)
        return 1


if __name__ == "__main__":
    sys.exit(main())
