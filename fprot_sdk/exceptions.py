"""Exception hierarchy for the F-Prot SDK."""

from __future__ import annotations

from typing import TYPE_CHECKING, Sequence

if TYPE_CHECKING:
    from fprot_sdk.models import Response


class FprotError(Exception):
    """Base exception for all F-Prot SDK errors."""


class FprotConfigurationError(FprotError, ValueError):
    """Raised for invalid client configuration or call arguments.

    Always detected before any network activity, e.g. a malformed address,
    an empty path list or a stream whose length cannot be determined.
    """


class FprotConnectionError(FprotError):
    """Raised when the daemon cannot be reached or the socket fails."""


class FprotTimeoutError(FprotError):
    """Raised when a command exceeds its deadline.

    The connection is left in an indeterminate state; close the client and
    create a new one.
    """


class FprotProtocolError(FprotError):
    """Raised when the daemon sends a line that does not match the protocol."""


class FprotScanError(FprotError):
    """Raised when at least one scanned item reports an error status.

    Every parsed response is still available on :attr:`responses`, and the
    first one carrying an error bit on :attr:`response`.
    """

    def __init__(self, response: Response, responses: Sequence[Response]) -> None:
        super().__init__(f"ERROR: {response.status}")
        self.response = response
        self.responses = list(responses)
