"""zapi: command-line client for the zvelo URL categorization API."""

__version__ = "0.1.0"

#: Application name used for the per-user data directory and user agents.
APP_NAME = "zapi"
