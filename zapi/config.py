"""Application configuration via Pydantic Settings.

Every command-line option has an environment variable alias of the form
``ZVELO_<SCREAMING_SNAKE>``; the CLI reads its defaults from the settings
object so that either source can be used.

Usage::

    from zapi.config import get_settings

    settings = get_settings()
    print(settings.addr)

The ``get_settings`` function is cached with ``functools.lru_cache``. To override
settings in tests, set the relevant environment variables and call
``get_settings.cache_clear()``.
"""
from __future__ import annotations

import functools
import re

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# ---------------------------------------------------------------------------
# Service defaults
# ---------------------------------------------------------------------------

DEFAULT_ADDR = "api.zvelo.com"
DEFAULT_SCOPE = "zvelo.dataset"
DEFAULT_AUTH_URL = "https://auth.zvelo.com/oauth2/auth"
DEFAULT_TOKEN_URL = "https://auth.zvelo.com/oauth2/token"
DEFAULT_ISSUER = "https://auth.zvelo.com"
DEFAULT_OAUTH2_CALLBACK_ADDR = ":4445"
DEFAULT_OAUTH2_REDIRECT_URL = "http://localhost:4445/callback"
DEFAULT_LISTEN = ":8080"
DEFAULT_REDIRECT_LIMIT = 10

_DURATION_RE = re.compile(r"(\d+(?:\.\d+)?)(ns|us|µs|ms|s|m|h)")

_DURATION_UNITS: dict[str, float] = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}


def parse_duration(value: str | float | int) -> float:
    """Parse a duration into seconds.

    Accepts bare numbers (seconds) and compound unit strings such as
    ``"100ms"``, ``"15m"`` or ``"1h30m"``.

    Raises:
        ValueError: If *value* is not a valid duration.
    """
    if isinstance(value, (int, float)):
        return float(value)

    text = value.strip()
    if not text:
        raise ValueError("empty duration")

    try:
        return float(text)
    except ValueError:
        pass

    pos = 0
    total = 0.0
    for match in _DURATION_RE.finditer(text):
        if match.start() != pos:
            break
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()

    if pos != len(text):
        raise ValueError(f"invalid duration: {value!r}")

    return total


class Settings(BaseSettings):
    """zapi settings.

    Environment variables are read case-insensitively with the ``ZVELO_``
    prefix. A ``.env`` file in the working directory is loaded automatically
    when present.
    """

    model_config = SettingsConfigDict(
        env_prefix="ZVELO_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Output
    debug: bool = Field(default=False, description="Enable debug logging and result output")
    trace: bool = Field(default=False, description="Request a server side trace")
    json_output: bool = Field(
        default=False,
        validation_alias=AliasChoices("ZVELO_JSON", "ZVELO_JSON_OUTPUT"),
        description="Print results as JSON instead of text",
    )

    # Transport
    addr: str = Field(default=DEFAULT_ADDR, description="Address of the zvelo API")
    rest: bool = Field(default=False, description="Use the JSON/HTTP transport instead of gRPC")
    rest_base_url: str = Field(default="", description="Base URL for the JSON/HTTP transport")
    grpc_target: str = Field(default="", description="Target (host:port) for the gRPC transport")
    no_tls: bool = Field(default=False, description="Disable TLS")
    tls_insecure_skip_verify: bool = Field(
        default=False,
        description="Accept any certificate presented by the server",
    )
    timeout: float = Field(
        default=15 * 60.0,
        gt=0,
        description="Overall timeout for a single invocation, in seconds",
    )

    # Credentials
    client_id: str = Field(default="", description="OAuth2 client id")
    client_secret: str = Field(default="", description="OAuth2 client secret")
    access_token: str = Field(default="", description="Use this access token verbatim")
    use_user_credentials: bool = Field(
        default=False,
        description="Obtain a token through the three-legged user flow",
    )
    scope: str = Field(
        default=DEFAULT_SCOPE,
        description="Space or comma separated OAuth2 scopes to request",
    )
    no_cache_token: bool = Field(default=False, description="Do not cache tokens on disk")
    mock_no_credentials: bool = Field(
        default=False,
        description="Send requests without credentials (mock servers only)",
    )
    auth_url: str = Field(default=DEFAULT_AUTH_URL, description="OAuth2 authorization URL")
    token_url: str = Field(default=DEFAULT_TOKEN_URL, description="OAuth2 token URL")
    oidc_issuer: str = Field(default=DEFAULT_ISSUER, description="OpenID Connect issuer URL")
    oauth2_callback_url: str = Field(
        default=DEFAULT_OAUTH2_REDIRECT_URL,
        description="Redirect URL registered for the user flow",
    )
    oauth2_callback_addr: str = Field(
        default=DEFAULT_OAUTH2_CALLBACK_ADDR,
        description="Address the user flow listener binds to",
    )
    oauth2_no_open_in_browser: bool = Field(
        default=False,
        description="Print the authorization URL instead of opening a browser",
    )

    # Polling
    poll_interval: float = Field(default=1.0, gt=0, description="Poll interval in seconds")
    once: bool = Field(default=False, description="Poll only once")

    # Query
    callback: str = Field(default="", description="Public URL results are posted to instead of polled")
    no_poll: bool = Field(default=False, description="Do not poll for results")
    no_follow_redirects: bool = Field(default=False, description="Do not follow redirect results")

    # Callback
    listen: str = Field(default=DEFAULT_LISTEN, description="Callback listener address")
    no_validate_callback: bool = Field(
        default=False,
        description="Do not verify callback signatures",
    )
    no_key_cache: bool = Field(default=False, description="Do not cache callback keys")

    # Redirects
    redirect_limit: int = Field(
        default=DEFAULT_REDIRECT_LIMIT,
        ge=0,
        validation_alias=AliasChoices("ZVELO_REDIRECT_LIMIT", "REDIRECT_LIMIT"),
        description="Maximum number of redirects to follow",
    )

    @field_validator("timeout", "poll_interval", mode="before")
    @classmethod
    def _parse_duration(cls, v: object) -> object:
        if isinstance(v, str):
            return parse_duration(v)
        return v

    @property
    def scopes(self) -> list[str]:
        """The configured scopes as a list."""
        return self.scope.replace(",", " ").split()


@functools.lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the cached application settings instance.

    The settings are loaded once from environment variables (and ``.env`` if
    present) and reused for the lifetime of the process.
    """
    return Settings()
