"""TCP connection to the F-Prot daemon.

``dial`` opens the socket, retrying only when the attempt timed out, and
:class:`Connection` wraps it in a small line oriented read/write interface.
Every exchange runs inside :meth:`Connection.deadline`, which bounds each
blocking read and write by the command timeout and clears it afterwards.
"""

from __future__ import annotations

import contextlib
import logging
import socket
import time
from typing import BinaryIO, Iterator

from fprot_sdk.exceptions import (
    FprotConfigurationError,
    FprotConnectionError,
    FprotProtocolError,
    FprotTimeoutError,
)

logger = logging.getLogger(__name__)

DEFAULT_ADDRESS = "127.0.0.1:10200"


def parse_address(address: str | None) -> tuple[str, int]:
    """Split a ``host:port`` address.

    IPv6 literals are not supported: the address must contain exactly one
    colon.

    Raises:
        FprotConfigurationError: If the address is malformed.
    """
    if not address:
        address = DEFAULT_ADDRESS
    if address.count(":") != 1:
        raise FprotConfigurationError("The supplied address is invalid")

    host, _, port_str = address.partition(":")
    try:
        port = int(port_str)
    except ValueError:
        raise FprotConfigurationError("The supplied address is invalid") from None
    if not 0 < port < 65536:
        raise FprotConfigurationError("The supplied address is invalid")
    return host, port


def dial(host: str, port: int, timeout: float, retries: int = 0, sleep: float = 1.0) -> socket.socket:
    """Connect to the daemon over IPv4 TCP.

    A connection attempt that times out is retried up to *retries* more
    times, sleeping *sleep* seconds in between. Any other failure is raised
    straight away.

    Raises:
        FprotConnectionError: If no connection could be established.
    """
    last_exc: OSError | None = None
    for attempt in range(retries + 1):
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.settimeout(timeout)
        logger.debug("Connecting to %s:%d (attempt %d/%d)", host, port, attempt + 1, retries + 1)
        try:
            sock.connect((host, port))
        except socket.timeout as exc:
            sock.close()
            last_exc = exc
            if attempt < retries:
                logger.warning("Connection to %s:%d timed out, retrying in %ss", host, port, sleep)
                time.sleep(sleep)
            continue
        except OSError as exc:
            sock.close()
            raise FprotConnectionError(f"Unable to connect to {host}:{port}: {exc}") from exc

        sock.settimeout(None)
        return sock

    raise FprotConnectionError(
        f"Unable to connect to {host}:{port}: timed out after {retries + 1} attempt(s)"
    ) from last_exc


class Connection:
    """Line oriented wrapper around a connected daemon socket.

    Socket errors are raised as :class:`FprotTimeoutError` or
    :class:`FprotConnectionError`.

    Args:
        sock: A connected stream socket; the connection takes ownership.
    """

    def __init__(self, sock: socket.socket) -> None:
        self._sock = sock
        self._rfile = sock.makefile("rb")
        self._timeout: float | None = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @contextlib.contextmanager
    def deadline(self, timeout: float | None) -> Iterator[None]:
        """Bound every blocking operation in the block by *timeout* seconds.

        The timeout is cleared on exit, including on errors.

        Raises:
            FprotConfigurationError: If *timeout* is zero or negative.
        """
        if timeout is not None and timeout <= 0:
            raise FprotConfigurationError(f"The timeout must be positive, got {timeout!r}")
        self._set_timeout(timeout)
        try:
            yield
        finally:
            if not self._closed:
                self._set_timeout(None)

    def send_line(self, line: bytes) -> None:
        logger.debug("Sending command: %r", line)
        with self._io():
            self._sock.sendall(line)

    def send_bytes(self, data: bytes) -> None:
        with self._io():
            self._sock.sendall(data)

    def send_stream(self, source: BinaryIO, size: int, chunk_size: int) -> None:
        """Copy exactly *size* bytes from *source* to the socket.

        Raises:
            FprotProtocolError: If *source* ends before *size* bytes were read.
        """
        remaining = size
        while remaining > 0:
            chunk = source.read(min(chunk_size, remaining))
            if not chunk:
                raise FprotProtocolError(
                    f"Stream ended after {size - remaining} of {size} declared bytes"
                )
            self.send_bytes(chunk)
            remaining -= len(chunk)

    def read_line(self) -> bytes:
        """Read one line, or ``b""`` once the daemon closed the stream."""
        with self._io():
            line = self._rfile.readline()
        logger.debug("Received line: %r", line)
        return line

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self._rfile.close()
        finally:
            self._sock.close()

    def _set_timeout(self, timeout: float | None) -> None:
        self._timeout = timeout
        with self._io():
            self._sock.settimeout(timeout)

    @contextlib.contextmanager
    def _io(self) -> Iterator[None]:
        try:
            yield
        except socket.timeout as exc:
            raise FprotTimeoutError(f"Command timed out after {self._timeout}s") from exc
        except OSError as exc:
            raise FprotConnectionError(str(exc)) from exc
