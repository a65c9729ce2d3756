"""Exception hierarchy shared across zapi.

Every error raised deliberately by zapi derives from :class:`ZapiError` so
that the command-line entry point can report it uniformly and exit non-zero.
Component specific subclasses live next to the code that raises them and
derive from the classes defined here.
"""

from __future__ import annotations


class ZapiError(Exception):
    """Base class for all zapi errors."""


class InputError(ZapiError, ValueError):
    """Raised for invalid user input (missing arguments, bad names, etc).

    These are detected before any network call is made.  Deriving from
    :class:`ValueError` lets argparse ``type=`` callables and pydantic
    validators report them as ordinary validation failures.
    """


class TransportError(ZapiError):
    """Raised when a call to the zvelo API fails.

    Attributes:
        status: HTTP status code (REST) or gRPC status code value, when known.
        code: Service supplied error code, when the response carried one.
    """

    def __init__(self, message: str, status: int | None = None, code: int | None = None) -> None:
        super().__init__(message)
        self.status = status
        self.code = code
