"""F-Prot SDK: Python client for the F-Prot scanning daemon (fpscand)."""

from fprot_sdk.client import FprotClient
from fprot_sdk.exceptions import (
    FprotConfigurationError,
    FprotConnectionError,
    FprotError,
    FprotProtocolError,
    FprotScanError,
    FprotTimeoutError,
)
from fprot_sdk.models import Command, Info, Response, StatusCode

__all__ = [
    "FprotClient",
    "AsyncFprotClient",
    "Command",
    "StatusCode",
    "Response",
    "Info",
    "FprotError",
    "FprotConfigurationError",
    "FprotConnectionError",
    "FprotTimeoutError",
    "FprotProtocolError",
    "FprotScanError",
]


def __getattr__(name: str) -> object:
    """Lazy-import the async client, as it is only needed by asyncio callers."""
    if name == "AsyncFprotClient":
        from fprot_sdk.async_client import AsyncFprotClient

        return AsyncFprotClient
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
