"""Normalisation of user supplied query input.

URLs without a scheme are treated as ``http://`` URLs, content arguments may
name a file (``@path``) or standard input (``@-``), and content bodies are
given short display labels for the pending set.
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import TextIO
from urllib.parse import urlsplit

from zapi.core.errors import InputError

#: Label shown for content bodies that are empty.
EMPTY_CONTENT_LABEL = "<CONTENT_REQUEST>"

_LABEL_MAX = 23


def normalize_url(url: str) -> str:
    """Prefix ``http://`` to *url* when it carries no scheme."""
    if "://" not in url:
        return "http://" + url
    return url


def load_content(value: str, stdin: TextIO | None = None) -> str:
    """Resolve a content argument to the content itself.

    * ``"@-"`` reads standard input until EOF;
    * ``"@<path>"`` reads the named file;
    * anything else is used verbatim.

    Raises:
        InputError: If *value* is empty or is a bare ``"@"``, or if the named
            content cannot be read or is not UTF-8.
    """
    if not value:
        raise InputError("empty content")

    if not value.startswith("@"):
        return value

    if value == "@":
        raise InputError("invalid content: '@' must be followed by a path or '-'")

    if value == "@-":
        try:
            return (stdin or sys.stdin).read()
        except UnicodeDecodeError as exc:
            raise InputError(f"could not read content from standard input: {exc}") from exc

    path = Path(value[1:])
    try:
        return path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise InputError(f"could not read content from {path}: {exc}") from exc


def content_label(url: str, content: str) -> str:
    """Display label for a content submission.

    The content's URL is used when it has a host; otherwise the content
    itself, truncated to 23 characters.
    """
    if url and urlsplit(url).netloc:
        return url
    if len(content) > _LABEL_MAX:
        return content[:_LABEL_MAX] + "..."
    if content:
        return content
    return EMPTY_CONTENT_LABEL
